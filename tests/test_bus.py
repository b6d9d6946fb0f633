import asyncio
import json
import threading
import time

import httpx
import pytest
from aiohttp.test_utils import TestClient, TestServer

from confmanager.bus.naming import APPLICATION_SIGNAL, application_interface, application_path
from confmanager.bus.proxy import BusProxy, Subscription, error_from_reply
from confmanager.bus.server import BusObject, BusServer
from confmanager.common.exceptions import (
    BusCallError,
    ConfigNotFoundError,
    InvalidArgumentError,
    IpcConnectionError,
    ServiceError,
    ValueTypeError,
)
from confmanager.services.broker.endpoint import ApplicationEndpoint

SERVICE = "com.system.configurationManager"
ALPHA_PATH = application_path("alpha", SERVICE)
INTERFACE = application_interface(SERVICE)


def _call_body(member, *args, path=ALPHA_PATH, interface=INTERFACE):
    return {"path": path, "interface": interface, "member": member, "args": list(args)}


def _serve(bus, scenario):
    """Run scenario(client) against the bus application"""

    async def runner():
        client = TestClient(TestServer(bus.build_app()))
        await client.start_server()
        try:
            await scenario(client)
        finally:
            await client.close()

    asyncio.run(runner())


@pytest.fixture
def bus_with_alpha(config_dir):
    bus = BusServer(SERVICE, "/tmp/unused.sock", health_info=lambda: {"applications": ["alpha"]})
    ApplicationEndpoint("alpha", config_dir / "alpha.json", bus, SERVICE)
    return bus


def test_register_duplicate_object_fails():
    bus = BusServer(SERVICE, "/tmp/unused.sock")
    bus.register_object(BusObject(ALPHA_PATH, INTERFACE))
    with pytest.raises(ServiceError):
        bus.register_object(BusObject(ALPHA_PATH, INTERFACE))
    bus.unregister_object(ALPHA_PATH, INTERFACE)
    assert bus.objects() == []


def test_emit_without_running_loop_is_dropped():
    bus = BusServer(SERVICE, "/tmp/unused.sock")
    bus.emit_signal(ALPHA_PATH, INTERFACE, APPLICATION_SIGNAL, {})


def test_call_get_and_change(bus_with_alpha):
    async def scenario(client):
        response = await client.post("/call", json=_call_body(
            "ChangeConfiguration", "Timeout", {"type": "x", "value": 500}
        ))
        assert response.status == 200
        assert (await response.json()) == {"result": None}

        response = await client.post("/call", json=_call_body("GetConfiguration"))
        data = await response.json()
        assert data["result"]["Timeout"] == {"type": "x", "value": 500}

    _serve(bus_with_alpha, scenario)


def test_call_errors_carry_error_names(bus_with_alpha):
    async def scenario(client):
        response = await client.post("/call", json=_call_body(
            "ChangeConfiguration", "", {"type": "x", "value": 1}
        ))
        assert response.status == 400
        error = (await response.json())["error"]
        assert error["name"] == f"{SERVICE}.Error.InvalidArgument"

        response = await client.post("/call", json=_call_body(
            "ChangeConfiguration", "Timeout", {"type": "a", "value": [1]}
        ))
        assert (await response.json())["error"]["name"] == f"{SERVICE}.Error.TypeError"

        response = await client.post("/call", json=_call_body("GetConfiguration", "extra"))
        assert response.status == 400

        response = await client.post("/call", json=_call_body("Nope"))
        assert response.status == 404
        assert (await response.json())["error"]["name"] == f"{SERVICE}.Error.UnknownObject"

        response = await client.post("/call", json=_call_body(
            "GetConfiguration", path=application_path("ghost", SERVICE)
        ))
        assert response.status == 404

        response = await client.post("/call", data=b"not json")
        assert response.status == 400

    _serve(bus_with_alpha, scenario)


def test_signal_stream_delivers_change(bus_with_alpha):
    async def scenario(client):
        params = {"path": ALPHA_PATH, "interface": INTERFACE, "member": APPLICATION_SIGNAL}
        stream = await client.get("/signals", params=params)
        assert stream.status == 200
        assert json.loads(await stream.content.readline()) == {"type": "subscribed"}
        assert bus_with_alpha.subscriber_count(ALPHA_PATH, INTERFACE, APPLICATION_SIGNAL) == 1

        await client.post("/call", json=_call_body(
            "ChangeConfiguration", "TimeoutPhrase", {"type": "s", "value": "Please stop me"}
        ))

        message = json.loads(await asyncio.wait_for(stream.content.readline(), 2))
        assert message["type"] == "signal"
        assert message["member"] == APPLICATION_SIGNAL
        assert message["args"][0]["TimeoutPhrase"] == {"type": "s", "value": "Please stop me"}
        stream.close()

    _serve(bus_with_alpha, scenario)


def test_signal_stream_requires_target(bus_with_alpha):
    async def scenario(client):
        response = await client.get("/signals", params={"path": ALPHA_PATH})
        assert response.status == 400

    _serve(bus_with_alpha, scenario)


def test_health_and_objects(bus_with_alpha):
    async def scenario(client):
        health = await (await client.get("/health")).json()
        assert health["status"] == "healthy"
        assert health["service"] == SERVICE
        assert health["applications"] == ["alpha"]

        objects = (await (await client.get("/objects")).json())["objects"]
        assert objects[0]["path"] == ALPHA_PATH
        assert objects[0]["signals"] == [APPLICATION_SIGNAL]

    _serve(bus_with_alpha, scenario)


# Proxy side


def _proxy(handler):
    return BusProxy(SERVICE, ALPHA_PATH, INTERFACE, "/tmp/unused.sock", transport=httpx.MockTransport(handler))


def test_proxy_call_sends_payload_and_returns_result():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"result": {"Timeout": {"type": "x", "value": 1000}}})

    result = _proxy(handler).call("GetConfiguration")

    assert seen == _call_body("GetConfiguration")
    assert result["Timeout"]["value"] == 1000


@pytest.mark.parametrize("short_name, expected", [
    ("InvalidArgument", InvalidArgumentError),
    ("TypeError", ValueTypeError),
    ("NotFound", ConfigNotFoundError),
])
def test_proxy_maps_error_names(short_name, expected):
    def handler(request):
        return httpx.Response(400, json={"error": {"name": f"{SERVICE}.Error.{short_name}", "message": "bad"}})

    with pytest.raises(expected) as excinfo:
        _proxy(handler).call("ChangeConfiguration", "", None)
    assert str(excinfo.value) == "bad"


def test_unknown_error_name_becomes_bus_call_error():
    error = error_from_reply("org.other.Error.Weird", "odd")
    assert isinstance(error, BusCallError)
    assert error.name == "org.other.Error.Weird"


def test_proxy_transport_failure():
    def handler(request):
        raise httpx.ConnectError("no socket", request=request)

    proxy = _proxy(handler)
    with pytest.raises(IpcConnectionError):
        proxy.call("GetConfiguration")
    with pytest.raises(IpcConnectionError):
        proxy.ping()


def test_proxy_ping_returns_health():
    def handler(request):
        assert request.url.path == "/health"
        return httpx.Response(200, json={"status": "healthy", "applications": ["alpha"]})

    assert _proxy(handler).ping()["applications"] == ["alpha"]


def _stream_body(*messages):
    return b"".join(json.dumps(message).encode("utf-8") + b"\n" for message in messages)


def test_subscription_delivers_signals_and_resyncs():
    connections = []
    received = []
    resynced = threading.Event()
    signal_message = {
        "type": "signal",
        "path": ALPHA_PATH,
        "interface": INTERFACE,
        "member": APPLICATION_SIGNAL,
        "args": [{"Timeout": {"type": "x", "value": 500}}],
    }

    def handler(request):
        assert request.url.path == "/signals"
        assert request.url.params["member"] == APPLICATION_SIGNAL
        connections.append(request)
        if len(connections) == 1:
            body = _stream_body({"type": "subscribed"}, {"type": "keepalive"}, signal_message)
        else:
            body = _stream_body({"type": "subscribed"})
        return httpx.Response(200, content=body)

    subscription = Subscription(
        _proxy(handler),
        APPLICATION_SIGNAL,
        received.append,
        on_reconnect=resynced.set,
        reconnect_backoff=[0.01],
    )
    subscription.start()
    try:
        assert subscription.wait_subscribed(2)
        assert resynced.wait(2)
    finally:
        subscription.cancel()

    assert received == [{"Timeout": {"type": "x", "value": 500}}]
    assert len(connections) >= 2
    assert not subscription.active


def test_subscription_handler_errors_do_not_stop_delivery():
    received = []

    def handler_fn(snapshot):
        received.append(snapshot)
        if len(received) == 1:
            raise RuntimeError("boom")

    def handler(request):
        signal = {"type": "signal", "member": APPLICATION_SIGNAL, "args": [{}]}
        return httpx.Response(200, content=_stream_body({"type": "subscribed"}, signal, signal))

    subscription = Subscription(_proxy(handler), APPLICATION_SIGNAL, handler_fn, reconnect_backoff=[0.01])
    subscription.start()
    try:
        assert subscription.wait_subscribed(2)
        for _ in range(200):
            if len(received) >= 2:
                break
            time.sleep(0.01)
    finally:
        subscription.cancel()

    assert len(received) >= 2
