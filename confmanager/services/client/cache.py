"""
Client Configuration Cache

The client's local copy of its own configuration. The signal handler writes
it and the periodic worker reads it, both under one lock.
"""

import threading
from pathlib import Path
from typing import Any

from confmanager.common.exceptions import ConfManagerError, InvalidArgumentError, ValueTypeError
from confmanager.common.logging_setup import get_service_logger
from confmanager.common.persistence import load_or_create
from confmanager.common.settings import (
    DEFAULT_PHRASE,
    DEFAULT_TIMEOUT_MS,
    PHRASE_KEY,
    TIMEOUT_KEY,
)
from confmanager.common.values import ConfigMap, ConfigValue, ValueKind

logger = get_service_logger("client.cache")


def _parse_timeout(value: ConfigValue) -> int:
    if value.kind is not ValueKind.INT64:
        raise ValueTypeError(f"expected int64, got '{value.kind.value}'", TIMEOUT_KEY)
    if value.value <= 0:
        raise InvalidArgumentError(f"{TIMEOUT_KEY} must be positive, got {value.value}")
    return value.value


def _parse_phrase(value: ConfigValue) -> str:
    if value.kind is not ValueKind.STRING:
        raise ValueTypeError(f"expected string, got '{value.kind.value}'", PHRASE_KEY)
    return value.value


class ClientConfigCache:
    """Timeout and phrase guarded by one lock; no I/O happens under it"""

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS, phrase: str = DEFAULT_PHRASE):
        if timeout_ms <= 0:
            raise InvalidArgumentError(f"timeout must be positive, got {timeout_ms}")
        self._timeout_ms = timeout_ms
        self._phrase = phrase
        self._lock = threading.Lock()

    @property
    def timeout_ms(self) -> int:
        with self._lock:
            return self._timeout_ms

    @property
    def phrase(self) -> str:
        with self._lock:
            return self._phrase

    def snapshot(self) -> tuple[int, str]:
        with self._lock:
            return self._timeout_ms, self._phrase

    def apply_snapshot(self, config_map: ConfigMap) -> list[str]:
        """
        Adopt the recognised keys of a full configuration snapshot.

        Each key is parsed on its own: a malformed value is logged and leaves
        that field unchanged without affecting the other one. Applying the
        same snapshot again changes nothing.

        Returns:
            Keys whose value was taken from the snapshot
        """
        timeout: int | None = None
        phrase: str | None = None

        if TIMEOUT_KEY in config_map:
            try:
                timeout = _parse_timeout(config_map[TIMEOUT_KEY])
            except ConfManagerError as e:
                logger.error(f"Failed to get {TIMEOUT_KEY}: {e}")

        if PHRASE_KEY in config_map:
            try:
                phrase = _parse_phrase(config_map[PHRASE_KEY])
            except ConfManagerError as e:
                logger.error(f"Failed to get {PHRASE_KEY}: {e}")

        applied = []
        with self._lock:
            if timeout is not None:
                self._timeout_ms = timeout
                applied.append(TIMEOUT_KEY)
            if phrase is not None:
                self._phrase = phrase
                applied.append(PHRASE_KEY)

        if timeout is not None:
            logger.debug(f"Updated {TIMEOUT_KEY} to {timeout}")
        if phrase is not None:
            logger.debug(f"Updated {PHRASE_KEY} to {phrase!r}")
        return applied


def decode_wire_snapshot(wire_map: Any) -> ConfigMap:
    """
    Decode a ConfigurationChanged payload entry by entry.

    Entries that fail to decode are logged and dropped, the rest are kept.
    """
    if not isinstance(wire_map, dict):
        logger.error(f"Ignoring configuration snapshot of type {type(wire_map).__name__}")
        return {}

    config_map: ConfigMap = {}
    for key, payload in wire_map.items():
        try:
            config_map[key] = ConfigValue.from_wire(payload)
        except ConfManagerError as e:
            logger.error(f"Failed to decode {key}: {e}")
    return config_map


def load_client_cache(
    path: str | Path,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    phrase: str = DEFAULT_PHRASE,
    force_create: bool = False,
) -> ClientConfigCache:
    """
    Build the cache from the local file, or create the file from the defaults.

    Raises:
        ConfigDirError: the file or its directory could not be created
        ConfigParseError / ValueTypeError: the existing file is unusable
    """
    logger.debug(f"Loading configuration with default timeout {timeout_ms} and phrase {phrase!r}")
    defaults: ConfigMap = {
        TIMEOUT_KEY: ConfigValue.int64(timeout_ms),
        PHRASE_KEY: ConfigValue.string(phrase),
    }
    config_map, created = load_or_create(path, defaults, force_create)

    cache = ClientConfigCache(timeout_ms, phrase)
    if created:
        logger.info(f"Created configuration: Timeout={timeout_ms}ms, Phrase={phrase!r}")
        return cache

    cache.apply_snapshot(config_map)
    current_timeout, current_phrase = cache.snapshot()
    logger.info(f"Loaded configuration: Timeout={current_timeout}ms, Phrase={current_phrase!r}")
    return cache
