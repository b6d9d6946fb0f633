"""
Configuration Store

Typed key/value map for one application, guarded by one lock.
"""

import threading
from typing import Callable

from confmanager.common.exceptions import InvalidArgumentError
from confmanager.common.values import ConfigMap, ConfigValue

ChangeListener = Callable[[ConfigMap], None]


class ConfigStore:
    """
    Lock-guarded configuration map.

    Change listeners run under the lock with a snapshot of the new map, so
    listeners see changes in the order they were applied.
    """

    def __init__(self, initial: ConfigMap | None = None):
        self._values: ConfigMap = dict(initial or {})
        self._lock = threading.Lock()
        self._listeners: list[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def get_all(self) -> ConfigMap:
        """Independent copy of every key/value pair"""
        with self._lock:
            return dict(self._values)

    def get(self, key: str) -> ConfigValue | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: ConfigValue | None) -> None:
        """
        Insert or replace one entry and run the change listeners.

        The entry is not rolled back if a listener raises; the listener's
        error propagates to the caller.

        Raises:
            InvalidArgumentError: empty key or missing value
        """
        if not key:
            raise InvalidArgumentError("Key cannot be empty")
        if value is None:
            raise InvalidArgumentError("Value cannot be empty")

        with self._lock:
            self._values[key] = value
            snapshot = dict(self._values)
            for listener in self._listeners:
                listener(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
