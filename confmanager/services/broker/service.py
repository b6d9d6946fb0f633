"""
Configuration Broker

Responsible for:
- Scanning the configuration directory once at startup
- Registering one ApplicationEndpoint per discovered file
- Owning the bus connection and serving calls until shutdown

States: UNINITIALIZED -> SCANNING_CONFIG_DIR -> REGISTERING -> RUNNING
        -> SHUTTING_DOWN -> STOPPED (FAILED when startup aborts)
"""

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from confmanager.bus.naming import (
    manager_interface,
    normalize_application_name,
    service_path,
)
from confmanager.bus.server import BusObject, BusServer
from confmanager.common.exceptions import (
    ConfigDirError,
    ConfManagerError,
    IpcConnectionError,
    NoConfigsFoundError,
    ServiceError,
)
from confmanager.common.logging_setup import configure_service_loggers, get_service_logger
from confmanager.common.settings import (
    CONFIG_EXTENSION,
    DEFAULT_CONFIG_DIR,
    BrokerSettings,
    load_broker_settings,
)

from .endpoint import ApplicationEndpoint, Bus

logger = get_service_logger("broker")


class BrokerState(str, Enum):
    """Broker lifecycle states"""
    UNINITIALIZED = "uninitialized"
    SCANNING_CONFIG_DIR = "scanning_config_dir"
    REGISTERING = "registering"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    FAILED = "failed"


class ConfigurationBroker:
    """
    Configuration Broker

    One instance owns the service name for the session. Construct it
    explicitly; tests pass their own bus and settings.
    """

    def __init__(
        self,
        settings: BrokerSettings | None = None,
        bus: Bus | None = None,
    ):
        self.settings = settings or BrokerSettings()
        self.bus = bus or BusServer(
            self.settings.service_name,
            self.settings.bus_address,
            health_info=self._health_info,
        )

        self.state = BrokerState.UNINITIALIZED
        self._applications: dict[str, ApplicationEndpoint] = {}
        self._manager_registered = False
        self._start_time = datetime.now(timezone.utc)
        self._shutdown_event: asyncio.Event | None = None

    @property
    def application_names(self) -> list[str]:
        return sorted(self._applications)

    def get_application(self, name: str) -> ApplicationEndpoint | None:
        return self._applications.get(name)

    def _set_state(self, state: BrokerState) -> None:
        logger.debug(f"Broker state: {self.state.value} -> {state.value}")
        self.state = state

    # Startup

    def scan_config_dir(self) -> list[tuple[Path, str]]:
        """
        Find application configuration files (single directory level).

        Entries are visited in file name order; when two files normalize to
        the same application name the first one wins.

        Returns:
            List of (file path, application name)

        Raises:
            ConfigDirError: directory missing or unreadable
            NoConfigsFoundError: no eligible files
        """
        self._set_state(BrokerState.SCANNING_CONFIG_DIR)
        config_dir = self.settings.config_path
        logger.debug(f"Scanning config directory: {config_dir}")

        try:
            if not config_dir.is_dir():
                raise ConfigDirError(f"not a directory: {config_dir}", str(config_dir))
            entries = sorted(config_dir.iterdir(), key=lambda entry: entry.name)
        except OSError as e:
            raise ConfigDirError(
                f"error accessing config directory {config_dir}: {e}", str(config_dir)
            ) from e

        discovered: dict[str, Path] = {}
        for entry in entries:
            if entry.suffix != CONFIG_EXTENSION or not entry.is_file():
                continue

            name = normalize_application_name(entry.stem)
            if name in discovered:
                logger.warning(
                    f"Skipping {entry.name}: application name {name} already "
                    f"provided by {discovered[name].name}",
                    extra={"application": name},
                )
                continue
            discovered[name] = entry

        if not discovered:
            raise NoConfigsFoundError(str(config_dir))

        logger.info(f"Found {len(discovered)} application configs in {config_dir}")
        return [(path, name) for name, path in discovered.items()]

    def initialize(self) -> None:
        """
        Scan and register every application, all or nothing.

        Raises:
            ConfigDirError / NoConfigsFoundError: scan failed
            ServiceError: an application could not be registered
        """
        try:
            discovered = self.scan_config_dir()
        except ConfManagerError:
            self._set_state(BrokerState.FAILED)
            raise

        self._set_state(BrokerState.REGISTERING)
        for index, (path, name) in enumerate(discovered, 1):
            logger.debug(f"Registering application {index}/{len(discovered)}: {name}")
            try:
                self._applications[name] = ApplicationEndpoint(
                    name,
                    path,
                    self.bus,
                    service_name=self.settings.service_name,
                    persist_changes=self.settings.persist_changes,
                )
            except ConfManagerError as e:
                logger.error(f"Failed to create endpoint for {path}: {e}")
                self._close_applications()
                self._set_state(BrokerState.FAILED)
                raise ServiceError(
                    f"application {name} could not be registered: {e}", "broker"
                ) from e

        self._register_manager_object()

    def _register_manager_object(self) -> None:
        self.bus.register_object(BusObject(
            path=service_path(self.settings.service_name),
            interface=manager_interface(self.settings.service_name),
            methods={"ListApplications": lambda: self.application_names},
        ))
        self._manager_registered = True

    async def start(self, install_signal_handlers: bool = True) -> None:
        """Initialize, claim the bus name and serve until shutdown is requested"""
        logger.info(f"Starting configuration broker (config dir: {self.settings.config_dir})")
        self._shutdown_event = asyncio.Event()
        self._start_time = datetime.now(timezone.utc)

        self.initialize()

        try:
            await self.bus.start()
        except IpcConnectionError:
            self._close_applications()
            self._set_state(BrokerState.FAILED)
            raise

        self._set_state(BrokerState.RUNNING)
        if install_signal_handlers:
            self._setup_signal_handlers()

        logger.info(
            f"Configuration broker running with {len(self._applications)} applications",
            extra={"applications": self.application_names},
        )

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Release the bus name, stop dispatching and drop the endpoints"""
        if self.state is BrokerState.STOPPED:
            return
        if self.state is not BrokerState.FAILED:
            self._set_state(BrokerState.SHUTTING_DOWN)
            logger.info("Stopping configuration broker")

        await self.bus.stop()
        self._close_applications()

        self._set_state(BrokerState.STOPPED)
        logger.info("Configuration broker stopped")

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def _close_applications(self) -> None:
        for endpoint in self._applications.values():
            endpoint.close()
        self._applications.clear()

        if self._manager_registered:
            self.bus.unregister_object(
                service_path(self.settings.service_name),
                manager_interface(self.settings.service_name),
            )
            self._manager_registered = False

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown, sig)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(self._handle_shutdown, s))

    def _handle_shutdown(self, sig: int) -> None:
        logger.info(f"Received signal: {signal.Signals(sig).name}")
        self.request_shutdown()

    def _health_info(self) -> dict:
        return {
            "state": self.state.value,
            "applications": self.application_names,
            "started_at": self._start_time.isoformat(),
        }


async def run_broker(settings: BrokerSettings) -> int:
    """Run a broker until shutdown; returns the process exit code"""
    broker = ConfigurationBroker(settings)
    try:
        await broker.start()
    except ConfManagerError as e:
        logger.critical(f"Fatal error: {e}")
        return 1
    finally:
        await broker.stop()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog="confmanager-broker",
        description="Configuration broker: serves one configuration per application on the bus",
    )
    parser.add_argument(
        "--config-dir",
        default=None,
        help=f"Configuration directory (default: {DEFAULT_CONFIG_DIR})",
    )
    parser.add_argument(
        "--settings",
        default=None,
        help="YAML settings file with a 'broker' section",
    )
    parser.add_argument(
        "--bus-address",
        default=None,
        help="Bus socket path (default: $XDG_RUNTIME_DIR/<service-name>.sock)",
    )
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Keep changes in memory only, do not rewrite configuration files",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    args = parser.parse_args(argv)

    try:
        settings = load_broker_settings(
            args.settings,
            overrides={
                "config_dir": args.config_dir,
                "bus_address": args.bus_address,
                "persist_changes": False if args.no_persist else None,
            },
        )
    except ConfManagerError as e:
        logger.critical(f"Fatal error: {e}")
        sys.exit(1)

    if args.verbose:
        settings.log_level = "DEBUG"
        settings.json_logs = False
    configure_service_loggers(settings.log_level, settings.json_logs)
    logger.debug("Verbose logging enabled")

    sys.exit(asyncio.run(run_broker(settings)))


if __name__ == "__main__":
    main()
