import os
import socket
import threading
import time

import pytest

from confmanager.bus.naming import APPLICATION_SIGNAL, application_interface, application_path
from confmanager.bus.proxy import BusProxy
from confmanager.bus.server import BusServer
from confmanager.common.exceptions import NameTakenError
from confmanager.services.broker.endpoint import ApplicationEndpoint

SERVICE = "com.system.configurationManager"
ALPHA_PATH = application_path("alpha", SERVICE)
INTERFACE = application_interface(SERVICE)


def test_second_owner_is_refused(loop_thread, bus_address):
    first = BusServer(SERVICE, bus_address)
    loop_thread.run(first.start())
    try:
        second = BusServer(SERVICE, bus_address)
        with pytest.raises(NameTakenError):
            loop_thread.run(second.start())
        assert os.path.exists(bus_address)
    finally:
        loop_thread.run(first.stop())

    assert not os.path.exists(bus_address)


def test_stale_socket_is_replaced(loop_thread, bus_address):
    stale = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    stale.bind(bus_address)
    stale.close()
    assert os.path.exists(bus_address)

    bus = BusServer(SERVICE, bus_address, health_info=lambda: {"applications": []})
    loop_thread.run(bus.start())
    try:
        health = BusProxy(SERVICE, ALPHA_PATH, INTERFACE, bus_address).ping()
        assert health["status"] == "healthy"
        assert health["service"] == SERVICE
    finally:
        loop_thread.run(bus.stop())

    assert not os.path.exists(bus_address)


def test_change_over_socket_then_prompt_cancel(loop_thread, bus_address, config_dir):
    bus = BusServer(SERVICE, bus_address)
    ApplicationEndpoint("alpha", config_dir / "alpha.json", bus, SERVICE)
    loop_thread.run(bus.start())

    received = []
    delivered = threading.Event()

    def on_changed(snapshot):
        received.append(snapshot)
        delivered.set()

    proxy = BusProxy(SERVICE, ALPHA_PATH, INTERFACE, bus_address)
    subscription = proxy.subscribe(APPLICATION_SIGNAL, on_changed)
    try:
        assert subscription.wait_subscribed(2)
        assert proxy.call("ChangeConfiguration", "Timeout", {"type": "x", "value": 500}) is None
        assert delivered.wait(2)
        assert received[0]["Timeout"] == {"type": "x", "value": 500}
        assert proxy.call("GetConfiguration")["Timeout"] == {"type": "x", "value": 500}

        started = time.monotonic()
        subscription.cancel(timeout=5)
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert not subscription.delivery_running
    finally:
        subscription.cancel()
        loop_thread.run(bus.stop())
