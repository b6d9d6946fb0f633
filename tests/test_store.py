import threading

import pytest

from confmanager.common.exceptions import InvalidArgumentError
from confmanager.common.values import ConfigValue
from confmanager.services.broker.store import ConfigStore


def _store():
    return ConfigStore({
        "Timeout": ConfigValue.int64(1000),
        "TimeoutPhrase": ConfigValue.string("Hey"),
    })


def test_set_then_get_all_contains_pair():
    store = _store()
    store.set("Timeout", ConfigValue.int64(500))
    store.set("NewKey", ConfigValue.boolean(True))

    config = store.get_all()
    assert config["Timeout"] == ConfigValue.int64(500)
    assert config["NewKey"] == ConfigValue.boolean(True)
    assert store.get("TimeoutPhrase") == ConfigValue.string("Hey")


def test_get_all_returns_independent_copy():
    store = _store()
    snapshot = store.get_all()
    snapshot["Timeout"] = ConfigValue.int64(1)
    snapshot["Injected"] = ConfigValue.string("x")

    assert store.get("Timeout") == ConfigValue.int64(1000)
    assert "Injected" not in store.get_all()


def test_later_writes_not_visible_in_earlier_snapshot():
    store = _store()
    snapshot = store.get_all()
    store.set("Timeout", ConfigValue.int64(5))
    assert snapshot["Timeout"] == ConfigValue.int64(1000)


def test_empty_key_rejected():
    store = _store()
    with pytest.raises(InvalidArgumentError):
        store.set("", ConfigValue.int64(1))


def test_missing_value_rejected():
    store = _store()
    with pytest.raises(InvalidArgumentError):
        store.set("Timeout", None)
    assert store.get("Timeout") == ConfigValue.int64(1000)


def test_no_semantic_validation():
    store = _store()
    store.set("Timeout", ConfigValue.int64(-5))
    assert store.get("Timeout") == ConfigValue.int64(-5)

    # Type changes are allowed as well
    store.set("Timeout", ConfigValue.string("soon"))
    assert store.get("Timeout") == ConfigValue.string("soon")


def test_listeners_receive_snapshots_in_order():
    store = _store()
    seen = []
    store.add_listener(lambda snapshot: seen.append(("first", snapshot["Timeout"].value)))
    store.add_listener(lambda snapshot: seen.append(("second", snapshot["Timeout"].value)))

    store.set("Timeout", ConfigValue.int64(1))
    store.set("Timeout", ConfigValue.int64(2))

    assert seen == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]


def test_listener_snapshot_is_a_copy():
    store = _store()
    captured = []
    store.add_listener(captured.append)
    store.set("Timeout", ConfigValue.int64(1))

    captured[0]["Timeout"] = ConfigValue.int64(99)
    assert store.get("Timeout") == ConfigValue.int64(1)


def test_listener_failure_propagates_without_rollback():
    store = _store()

    def failing(snapshot):
        raise RuntimeError("bus down")

    store.add_listener(failing)
    with pytest.raises(RuntimeError):
        store.set("Timeout", ConfigValue.int64(42))
    assert store.get("Timeout") == ConfigValue.int64(42)


def test_concurrent_writers_lose_no_keys():
    store = ConfigStore()

    def writer(prefix):
        for i in range(200):
            store.set(f"{prefix}-{i}", ConfigValue.int64(i))

    threads = [threading.Thread(target=writer, args=(f"t{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store) == 800
