"""
Bus Server

Local IPC substrate for the broker: an aiohttp application served on a unix
socket. Owning the socket is owning the service name.

Routes:
- POST /call     - invoke a method on a registered object
- GET  /signals  - newline-delimited JSON stream of one signal
- GET  /health   - liveness and broker status
- GET  /objects  - registered objects (introspection)

Method bodies are plain blocking callables. Each call runs in the default
thread pool, so objects guard their own state.
"""

import asyncio
import functools
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
from aiohttp import web

from confmanager.common.exceptions import (
    ConfManagerError,
    InvalidArgumentError,
    IpcConnectionError,
    NameTakenError,
    ServiceError,
    UnknownObjectError,
)
from confmanager.common.logging_setup import get_service_logger
from .naming import error_name

logger = get_service_logger("bus.server")

# Host part is ignored on a unix socket but httpx needs one
BUS_BASE_URL = "http://confmanager.bus"
# Keepalive line interval on signal streams
SIGNAL_KEEPALIVE_S = 10
# Timeout when probing an existing socket for a live owner
NAME_PROBE_TIMEOUT_S = 2.0


@dataclass
class BusObject:
    """One interface exported at an object path"""
    path: str
    interface: str
    methods: dict[str, Callable[..., Any]] = field(default_factory=dict)
    signals: tuple[str, ...] = ()

    def describe(self) -> dict:
        return {
            "path": self.path,
            "interface": self.interface,
            "methods": sorted(self.methods),
            "signals": list(self.signals),
        }


class BusServer:
    """
    Service-side bus connection.

    Holds the object registry and the signal subscribers, and serves both over
    a unix socket once started.
    """

    def __init__(
        self,
        service_name: str,
        address: str,
        health_info: Callable[[], dict] | None = None,
    ):
        self.service_name = service_name
        self.address = address
        self._health_info = health_info

        self._objects: dict[tuple[str, str], BusObject] = {}
        self._subscribers: dict[tuple[str, str, str], set[asyncio.Queue]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._start_time = datetime.now(timezone.utc)

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._owns_socket = False

    # Object registry

    def register_object(self, bus_object: BusObject) -> None:
        key = (bus_object.path, bus_object.interface)
        if key in self._objects:
            raise ServiceError(
                f"object {bus_object.path} already exports {bus_object.interface}",
                "bus",
            )
        self._objects[key] = bus_object
        logger.debug(f"Registered object {bus_object.path} ({bus_object.interface})")

    def unregister_object(self, path: str, interface: str) -> None:
        if self._objects.pop((path, interface), None) is not None:
            logger.debug(f"Unregistered object {path} ({interface})")

    def objects(self) -> list[BusObject]:
        return list(self._objects.values())

    # Signals

    def emit_signal(self, path: str, interface: str, member: str, *args: Any) -> None:
        """
        Queue a signal for every subscriber of (path, interface, member).

        Safe to call from any thread; delivery order follows emission order.
        """
        message = {
            "type": "signal",
            "path": path,
            "interface": interface,
            "member": member,
            "args": list(args),
        }
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"Bus not running, dropped signal {member} on {path}")
            return
        try:
            loop.call_soon_threadsafe(self._fan_out, (path, interface, member), message)
        except RuntimeError:
            # Loop closed between the check and the call
            logger.debug(f"Bus stopped, dropped signal {member} on {path}")

    def _fan_out(self, key: tuple[str, str, str], message: dict | None) -> None:
        for queue in list(self._subscribers.get(key, ())):
            queue.put_nowait(message)

    def subscriber_count(self, path: str, interface: str, member: str) -> int:
        return len(self._subscribers.get((path, interface, member), ()))

    # Lifecycle

    def build_app(self) -> web.Application:
        """Create the aiohttp application serving this bus"""
        app = web.Application()
        app.router.add_post("/call", self._call_handler)
        app.router.add_get("/signals", self._signals_handler)
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/objects", self._objects_handler)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self) -> None:
        """Claim the service name and start serving"""
        await self._claim_name()

        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.UnixSite(self._runner, self.address)
        try:
            await site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            raise IpcConnectionError(f"cannot bind bus socket: {e}", self.address) from e

        self._owns_socket = True
        logger.info(f"Bus server listening on {self.address} as {self.service_name}")

    async def stop(self) -> None:
        """Close signal streams, stop serving and release the name"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self._owns_socket:
            try:
                Path(self.address).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove bus socket {self.address}: {e}")
            self._owns_socket = False
            logger.info(f"Released service name {self.service_name}")

    async def _on_startup(self, app: web.Application) -> None:
        self._loop = asyncio.get_running_loop()
        self._start_time = datetime.now(timezone.utc)

    async def _on_shutdown(self, app: web.Application) -> None:
        # None tells each stream handler to finish
        for queues in self._subscribers.values():
            for queue in queues:
                queue.put_nowait(None)
        self._loop = None

    async def _claim_name(self) -> None:
        socket_path = Path(self.address)
        try:
            socket_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IpcConnectionError(f"cannot create bus directory: {e}", self.address) from e

        if socket_path.exists():
            if await self._name_has_owner():
                raise NameTakenError(self.service_name, self.address)
            logger.warning(f"Removing stale bus socket {socket_path}")
            socket_path.unlink()

    async def _name_has_owner(self) -> bool:
        transport = httpx.AsyncHTTPTransport(uds=self.address)
        try:
            async with httpx.AsyncClient(
                transport=transport,
                base_url=BUS_BASE_URL,
                timeout=NAME_PROBE_TIMEOUT_S,
            ) as client:
                response = await client.get("/health")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    # Handlers

    def _error_response(self, exc: ConfManagerError, status: int) -> web.Response:
        return web.json_response(
            {
                "error": {
                    "name": error_name(self.service_name, exc.error_name),
                    "message": str(exc),
                }
            },
            status=status,
        )

    async def _call_handler(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return self._error_response(InvalidArgumentError("request body is not JSON"), 400)

        if not isinstance(body, dict):
            return self._error_response(InvalidArgumentError("request body must be an object"), 400)

        path = body.get("path", "")
        interface = body.get("interface", "")
        member = body.get("member", "")
        args = body.get("args", [])
        if not isinstance(args, list):
            return self._error_response(InvalidArgumentError("args must be a list"), 400)

        bus_object = self._objects.get((path, interface))
        if bus_object is None:
            return self._error_response(
                UnknownObjectError(f"No object {path} with interface {interface}"), 404
            )
        method = bus_object.methods.get(member)
        if method is None:
            return self._error_response(
                UnknownObjectError(f"No method {member} on {interface}"), 404
            )

        logger.debug(f"Call {interface}.{member} on {path}")
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, functools.partial(method, *args))
        except ConfManagerError as e:
            logger.warning(f"Call {member} on {path} failed: {e}")
            return self._error_response(e, 400)
        except TypeError as e:
            # Wrong argument count or shape
            return self._error_response(InvalidArgumentError(str(e)), 400)
        except Exception as e:
            logger.error(f"Unhandled error in {member} on {path}: {e}", exc_info=True)
            return self._error_response(ConfManagerError(str(e)), 500)

        return web.json_response({"result": result})

    async def _signals_handler(self, request: web.Request) -> web.StreamResponse:
        path = request.query.get("path", "")
        interface = request.query.get("interface", "")
        member = request.query.get("member", "")
        if not (path and interface and member):
            return self._error_response(
                InvalidArgumentError("path, interface and member are required"), 400
            )

        response = web.StreamResponse(headers={"Content-Type": "application/x-ndjson"})
        await response.prepare(request)

        key = (path, interface, member)
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(key, set()).add(queue)
        logger.debug(f"Subscriber added for {member} on {path}")

        try:
            await self._write_line(response, {"type": "subscribed"})
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=SIGNAL_KEEPALIVE_S)
                except asyncio.TimeoutError:
                    message = {"type": "keepalive"}
                if message is None:
                    break
                await self._write_line(response, message)
        except ConnectionResetError:
            logger.debug(f"Subscriber for {member} on {path} disconnected")
        finally:
            subscribers = self._subscribers.get(key)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[key]

        return response

    @staticmethod
    async def _write_line(response: web.StreamResponse, message: dict) -> None:
        await response.write(json.dumps(message).encode("utf-8") + b"\n")

    async def _health_handler(self, request: web.Request) -> web.Response:
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        payload = {
            "status": "healthy",
            "service": self.service_name,
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "objects": len(self._objects),
        }
        if self._health_info:
            payload.update(self._health_info())
        return web.json_response(payload)

    async def _objects_handler(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"objects": [bus_object.describe() for bus_object in self.objects()]}
        )
