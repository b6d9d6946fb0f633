import asyncio
import json
import shutil
import tempfile
import threading
from pathlib import Path

import pytest

from confmanager.common.exceptions import ServiceError


class FakeBus:
    """In-memory stand-in for BusServer"""

    def __init__(self):
        self.objects = {}
        self.signals = []
        self.started = False
        self.stopped = False

    def register_object(self, bus_object):
        key = (bus_object.path, bus_object.interface)
        if key in self.objects:
            raise ServiceError(f"duplicate object {bus_object.path}", "bus")
        self.objects[key] = bus_object

    def unregister_object(self, path, interface):
        self.objects.pop((path, interface), None)

    def emit_signal(self, path, interface, member, *args):
        self.signals.append((path, interface, member, args))

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    def call(self, path, interface, member, *args):
        return self.objects[(path, interface)].methods[member](*args)


@pytest.fixture
def fake_bus():
    return FakeBus()


def write_config(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def config_dir(tmp_path):
    directory = tmp_path / "configs"
    directory.mkdir()
    write_config(directory / "alpha.json", {"Timeout": 1000, "TimeoutPhrase": "Hey"})
    return directory


@pytest.fixture
def bus_address():
    """Socket path short enough for AF_UNIX (tmp_path can exceed the limit)"""
    directory = tempfile.mkdtemp(prefix="cm-", dir="/tmp")
    yield str(Path(directory) / "bus.sock")
    shutil.rmtree(directory, ignore_errors=True)


class LoopThread:
    """Event loop on a background thread, for driving BusServer from sync tests"""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, daemon=True)
        self._thread.start()

    def run(self, coro, timeout=5):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def close(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(5)
        self.loop.close()


@pytest.fixture
def loop_thread():
    runner = LoopThread()
    yield runner
    runner.close()
