"""
Configuration Client

Keeps a live copy of one application's configuration:
- Loads the local file, or creates it from the defaults
- Subscribes to ConfigurationChanged on the broker
- Runs the periodic worker until SIGINT/SIGTERM

The application name is the base name of the configuration file.
"""

import argparse
import signal
import sys
import threading
from typing import Any, Callable

from confmanager.bus.naming import (
    APPLICATION_SIGNAL,
    application_interface,
    application_path,
    normalize_application_name,
)
from confmanager.bus.proxy import BusProxy, Subscription
from confmanager.common.exceptions import ConfManagerError
from confmanager.common.logging_setup import configure_service_loggers, get_service_logger
from confmanager.common.settings import (
    DEFAULT_APP_NAME,
    DEFAULT_CONFIG_DIR,
    DEFAULT_PHRASE,
    DEFAULT_TIMEOUT_MS,
    ClientSettings,
)

from .cache import ClientConfigCache, decode_wire_snapshot, load_client_cache
from .worker import PeriodicWorker

logger = get_service_logger("client")


class ConfigurationClient:
    """Client application following its configuration on the bus"""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        proxy: BusProxy | None = None,
        output: Callable[[str], None] | None = None,
    ):
        self.settings = settings or ClientSettings()
        self.application = normalize_application_name(self.settings.path.stem)
        self.proxy = proxy or BusProxy(
            self.settings.service_name,
            application_path(self.application, self.settings.service_name),
            application_interface(self.settings.service_name),
            self.settings.bus_address,
        )
        self._output = output

        self.cache: ClientConfigCache | None = None
        self.worker: PeriodicWorker | None = None
        self._subscription: Subscription | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """
        Load the configuration, connect and start the worker.

        Raises:
            ConfigDirError: local file could not be created
            IpcConnectionError: broker not reachable
        """
        logger.debug(f"Using configuration path: {self.settings.path}")
        self.cache = load_client_cache(
            self.settings.path,
            self.settings.timeout_ms,
            self.settings.phrase,
            self.settings.force_create,
        )

        health = self.proxy.ping()
        if self.application not in health.get("applications", [self.application]):
            logger.warning(
                f"Broker does not serve application {self.application}; "
                f"updates arrive only after the broker restarts",
                extra={"application": self.application},
            )

        self._subscription = self.proxy.subscribe(
            APPLICATION_SIGNAL,
            self._on_configuration_changed,
            on_reconnect=self.resync,
        )
        logger.debug(f"Subscribed to {APPLICATION_SIGNAL} on {self.proxy.object_path}")

        self.worker = PeriodicWorker(self.cache, self._output)
        self.worker.start()

        logger.info(
            f"Client started for {self.application}",
            extra={"application": self.application},
        )

    def run(self, install_signal_handlers: bool = True) -> None:
        """Start, then block until a stop is requested"""
        if install_signal_handlers:
            self._setup_signal_handlers()
        self.start()
        try:
            self._stop_event.wait()
        finally:
            self.stop()

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop(self) -> None:
        """Cancel the subscription, then stop and join the worker"""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self.worker is not None:
            self.worker.stop()
            self.worker = None
        logger.info("Client stopped")

    def resync(self) -> None:
        """Fetch the full configuration, e.g. after missing signals"""
        wire_map = self.proxy.call("GetConfiguration")
        self._apply(wire_map)

    def _on_configuration_changed(self, wire_map: Any) -> None:
        logger.info("Configuration change received")
        self._apply(wire_map)

    def _apply(self, wire_map: Any) -> None:
        if self.cache is None:
            return
        self.cache.apply_snapshot(decode_wire_snapshot(wire_map))
        timeout_ms, phrase = self.cache.snapshot()
        logger.info(f"New configuration applied: Timeout={timeout_ms}ms, Phrase={phrase!r}")

    def _setup_signal_handlers(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info(f"Received signal: {signal.Signals(signum).name}")
        self.request_stop()


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{text!r} is not an integer") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive number")
    return value


def main(argv: list[str] | None = None) -> None:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog="confmanager-client",
        description="Configuration client: prints a phrase every timeout, following live updates",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_int,
        default=DEFAULT_TIMEOUT_MS,
        help=f"Timeout in milliseconds (default: {DEFAULT_TIMEOUT_MS})",
    )
    parser.add_argument(
        "--phrase",
        default=DEFAULT_PHRASE,
        help=f"Timeout message (default: {DEFAULT_PHRASE})",
    )
    parser.add_argument(
        "--config-path",
        default="",
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_DIR}{DEFAULT_APP_NAME}.json)",
    )
    parser.add_argument(
        "--create-config",
        action="store_true",
        help="Force creation of a new configuration file from the defaults",
    )
    parser.add_argument(
        "--bus-address",
        default="",
        help="Bus socket path (default: $XDG_RUNTIME_DIR/<service-name>.sock)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    args = parser.parse_args(argv)

    if args.verbose:
        configure_service_loggers("DEBUG", json_format=False)
        logger.debug("Verbose logging enabled")

    logger.info(f"Starting with configuration - timeout: {args.timeout}ms, phrase: {args.phrase!r}")

    client = ConfigurationClient(ClientSettings(
        config_path=args.config_path,
        timeout_ms=args.timeout,
        phrase=args.phrase,
        force_create=args.create_config,
        bus_address=args.bus_address,
    ))

    try:
        client.run()
    except ConfManagerError as e:
        logger.critical(f"Application failed: {e}")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
