"""
Bus Proxy

Client-side view of one remote object: blocking method calls and signal
subscriptions. Subscriptions run on their own delivery thread and reconnect
with backoff when the stream drops.
"""

import json
import socket
import threading
from typing import Any, Callable, Iterator

import httpx

from confmanager.common.exceptions import (
    WIRE_ERRORS,
    BusCallError,
    ConfManagerError,
    IpcConnectionError,
)
from confmanager.common.logging_setup import get_service_logger
from .naming import short_error_name
from .server import BUS_BASE_URL, SIGNAL_KEEPALIVE_S

logger = get_service_logger("bus.proxy")

CALL_TIMEOUT_S = 5.0
# A stream with no line (not even a keepalive) for this long is dead
SIGNAL_READ_TIMEOUT_S = SIGNAL_KEEPALIVE_S * 3
RECONNECT_BACKOFF_S = [1, 2, 4, 8, 16]


def error_from_reply(name: str, message: str) -> ConfManagerError:
    """Map a bus error name back to the matching exception class"""
    cls = WIRE_ERRORS.get(short_error_name(name))
    if cls is None:
        return BusCallError(name or "Failed", message)
    return cls.from_wire(message)


class BusProxy:
    """
    Proxy for one (service, object path, interface).

    A transport can be injected (e.g. httpx.MockTransport in tests); otherwise
    every request opens the unix socket at `address`.
    """

    def __init__(
        self,
        service_name: str,
        object_path: str,
        interface: str,
        address: str,
        transport: httpx.BaseTransport | None = None,
        timeout: float = CALL_TIMEOUT_S,
    ):
        self.service_name = service_name
        self.object_path = object_path
        self.interface = interface
        self.address = address
        self.timeout = timeout
        self._transport = transport

    def _client(self, timeout: float | httpx.Timeout | None = None) -> httpx.Client:
        transport = self._transport or httpx.HTTPTransport(uds=self.address)
        return httpx.Client(
            transport=transport,
            base_url=BUS_BASE_URL,
            timeout=timeout if timeout is not None else self.timeout,
        )

    def ping(self) -> dict:
        """
        Check that the service name has a live owner.

        Returns:
            The broker health payload

        Raises:
            IpcConnectionError: nobody answers on the bus
        """
        try:
            with self._client() as client:
                response = client.get("/health")
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise IpcConnectionError(
                f"{self.service_name} is not reachable: {e}", self.address
            ) from e

    def call(self, member: str, *args: Any) -> Any:
        """
        Invoke a remote method.

        Raises:
            IpcConnectionError: transport failure
            ConfManagerError subclass: the remote method failed
        """
        payload = {
            "path": self.object_path,
            "interface": self.interface,
            "member": member,
            "args": list(args),
        }
        try:
            with self._client() as client:
                response = client.post("/call", json=payload)
        except httpx.HTTPError as e:
            raise IpcConnectionError(f"call {member} failed: {e}", self.address) from e

        try:
            data = response.json()
        except ValueError:
            raise IpcConnectionError(
                f"malformed reply to {member} (HTTP {response.status_code})", self.address
            ) from None

        if response.status_code != 200 or "error" in data:
            error = data.get("error") or {}
            raise error_from_reply(error.get("name", ""), error.get("message", ""))

        return data.get("result")

    def subscribe(
        self,
        member: str,
        handler: Callable[..., None],
        on_reconnect: Callable[[], None] | None = None,
    ) -> "Subscription":
        """Start delivering `member` signals to handler; returns the handle"""
        subscription = Subscription(self, member, handler, on_reconnect)
        subscription.start()
        return subscription


class Subscription:
    """
    Cancellable signal subscription.

    The handler runs on the subscription's delivery thread and must not block.
    on_reconnect runs after the stream is re-established, so the owner can
    resynchronize state it may have missed.
    """

    def __init__(
        self,
        proxy: BusProxy,
        member: str,
        handler: Callable[..., None],
        on_reconnect: Callable[[], None] | None = None,
        reconnect_backoff: list[float] | None = None,
    ):
        self.proxy = proxy
        self.member = member
        self._handler = handler
        self._on_reconnect = on_reconnect
        self._reconnect_backoff = reconnect_backoff or RECONNECT_BACKOFF_S

        self._stop_event = threading.Event()
        self._subscribed = threading.Event()
        self._client: httpx.Client | None = None
        self._response: httpx.Response | None = None
        self._stream_lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run,
            name=f"signal-{member}",
            daemon=True,
        )

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    @property
    def delivery_running(self) -> bool:
        """True until the delivery thread has exited"""
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def wait_subscribed(self, timeout: float | None = None) -> bool:
        """Block until the first stream is established"""
        return self._subscribed.wait(timeout)

    def cancel(self, timeout: float = 2.0) -> None:
        """Stop delivery; no handler call starts after this returns"""
        self._stop_event.set()
        self._interrupt_stream()

        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.debug(f"Subscription to {self.member} cancelled")

    def _run(self) -> None:
        attempt = 0
        connected_before = False

        while not self._stop_event.is_set():
            try:
                for message in self._stream():
                    kind = message.get("type")
                    if kind == "subscribed":
                        if connected_before:
                            logger.info(f"Signal stream for {self.member} re-established")
                            self._resync()
                        connected_before = True
                        attempt = 0
                        self._subscribed.set()
                    elif kind == "signal" and message.get("member") == self.member:
                        self._deliver(message.get("args", []))
            except (httpx.HTTPError, httpx.StreamError, IpcConnectionError) as e:
                if self._stop_event.is_set():
                    break
                logger.warning(f"Signal stream for {self.member} lost: {e}")

            if self._stop_event.is_set():
                break

            delay = self._reconnect_backoff[min(attempt, len(self._reconnect_backoff) - 1)]
            attempt += 1
            logger.debug(f"Reconnecting signal stream in {delay}s (attempt {attempt})")
            self._stop_event.wait(delay)

    def _stream(self) -> Iterator[dict]:
        timeout = httpx.Timeout(self.proxy.timeout, read=SIGNAL_READ_TIMEOUT_S)
        params = {
            "path": self.proxy.object_path,
            "interface": self.proxy.interface,
            "member": self.member,
        }
        with self.proxy._client(timeout) as client:
            # cancel() sets the stop event before taking the lock, so either it
            # sees this client/response or the checks below see the event
            with self._stream_lock:
                self._client = client
            try:
                if self._stop_event.is_set():
                    return
                with client.stream("GET", "/signals", params=params) as response:
                    if response.status_code != 200:
                        raise IpcConnectionError(
                            f"subscription refused (HTTP {response.status_code})",
                            self.proxy.address,
                        )
                    with self._stream_lock:
                        self._response = response
                    if self._stop_event.is_set():
                        return
                    for line in response.iter_lines():
                        if self._stop_event.is_set():
                            return
                        if not line.strip():
                            continue
                        try:
                            message = json.loads(line)
                        except json.JSONDecodeError:
                            logger.warning(f"Malformed signal line skipped: {line[:80]!r}")
                            continue
                        if isinstance(message, dict):
                            yield message
            finally:
                with self._stream_lock:
                    self._client = None
                    self._response = None

    def _interrupt_stream(self) -> None:
        """
        Unblock a delivery thread waiting on the stream.

        Closing the client alone does not wake a blocked socket read, so the
        socket under the response is shut down first.
        """
        with self._stream_lock:
            client, response = self._client, self._response

        if response is not None:
            network_stream = response.extensions.get("network_stream")
            sock = network_stream.get_extra_info("socket") if network_stream is not None else None
            if sock is not None:
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError as e:
                    logger.debug(f"Error shutting down signal socket: {e}")

        if client is not None:
            try:
                client.close()
            except (httpx.HTTPError, OSError, RuntimeError) as e:
                logger.debug(f"Error closing signal stream: {e}")

    def _deliver(self, args: list) -> None:
        if self._stop_event.is_set():
            return
        try:
            self._handler(*args)
        except Exception as e:
            logger.error(f"Signal handler for {self.member} failed: {e}", exc_info=True)

    def _resync(self) -> None:
        if not self._on_reconnect:
            return
        try:
            self._on_reconnect()
        except Exception as e:
            logger.error(f"Resync after reconnect failed: {e}")
