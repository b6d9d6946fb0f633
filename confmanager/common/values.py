"""
Typed Configuration Values

A configuration value is one of four scalar types, tagged with the bus
signature letter of its type:

    s  string
    x  64-bit signed integer
    d  double
    b  boolean

Arrays, objects and null are rejected at every boundary (file, bus, CLI).
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import InvalidArgumentError, ValueTypeError

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class ValueKind(str, Enum):
    """Supported value types (bus signature letters)"""
    STRING = "s"
    INT64 = "x"
    DOUBLE = "d"
    BOOLEAN = "b"


@dataclass(frozen=True)
class ConfigValue:
    """Immutable tagged scalar"""
    kind: ValueKind
    value: str | int | float | bool

    def __post_init__(self):
        if not _matches_kind(self.kind, self.value):
            raise ValueTypeError(
                f"{type(self.value).__name__} value does not match type '{self.kind.value}'"
            )

    @classmethod
    def string(cls, value: str) -> "ConfigValue":
        return cls(ValueKind.STRING, value)

    @classmethod
    def int64(cls, value: int) -> "ConfigValue":
        return cls(ValueKind.INT64, value)

    @classmethod
    def double(cls, value: float) -> "ConfigValue":
        return cls(ValueKind.DOUBLE, float(value))

    @classmethod
    def boolean(cls, value: bool) -> "ConfigValue":
        return cls(ValueKind.BOOLEAN, value)

    @classmethod
    def from_json(cls, raw: Any, key: str | None = None) -> "ConfigValue":
        """
        Convert a decoded JSON scalar to a tagged value.

        bool is checked before int since bool is an int subclass.

        Raises:
            ValueTypeError: for arrays, objects, null and out-of-range integers
        """
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, int):
            if not INT64_MIN <= raw <= INT64_MAX:
                raise ValueTypeError(f"integer {raw} outside int64 range", key)
            return cls(ValueKind.INT64, raw)
        if isinstance(raw, float):
            return cls(ValueKind.DOUBLE, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)

        type_name = "null" if raw is None else type(raw).__name__
        raise ValueTypeError(f"unsupported value type {type_name}", key)

    def to_json(self) -> str | int | float | bool:
        return self.value

    @classmethod
    def from_wire(cls, payload: Any) -> "ConfigValue":
        """
        Decode the bus encoding {"type": <letter>, "value": <scalar>}.

        Raises:
            InvalidArgumentError: payload is missing or has no value
            ValueTypeError: unknown type letter or value not of that type
        """
        if payload is None:
            raise InvalidArgumentError("Value cannot be empty")
        if not isinstance(payload, dict):
            raise ValueTypeError("value must be an object with 'type' and 'value'")
        if payload.get("value") is None:
            raise InvalidArgumentError("Value cannot be empty")

        try:
            kind = ValueKind(payload.get("type"))
        except ValueError:
            raise ValueTypeError(f"unsupported value type {payload.get('type')!r}") from None

        raw = payload["value"]
        if kind is ValueKind.DOUBLE and isinstance(raw, int) and not isinstance(raw, bool):
            raw = float(raw)
        return cls(kind, raw)

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.kind.value, "value": self.value}

    @classmethod
    def parse_literal(cls, text: str, kind: ValueKind | None = None) -> "ConfigValue":
        """
        Parse command line text.

        With an explicit kind the text is converted to that type; without one
        booleans, integers and doubles are recognised and anything else is a
        string.
        """
        if kind is ValueKind.STRING:
            return cls.string(text)
        if kind is ValueKind.BOOLEAN or (kind is None and text.lower() in ("true", "false")):
            lowered = text.lower()
            if lowered not in ("true", "false"):
                raise ValueTypeError(f"{text!r} is not a boolean")
            return cls.boolean(lowered == "true")
        if kind is ValueKind.INT64:
            try:
                return cls.from_json(int(text))
            except ValueError:
                raise ValueTypeError(f"{text!r} is not an integer") from None
        if kind is ValueKind.DOUBLE:
            try:
                return cls.double(float(text))
            except ValueError:
                raise ValueTypeError(f"{text!r} is not a double") from None

        try:
            return cls.from_json(int(text))
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return cls.string(text)
        if math.isfinite(number):
            return cls.double(number)
        return cls.string(text)

    def __str__(self) -> str:
        return str(self.value)


ConfigMap = dict[str, ConfigValue]


def _matches_kind(kind: ValueKind, value: Any) -> bool:
    if kind is ValueKind.BOOLEAN:
        return isinstance(value, bool)
    if kind is ValueKind.INT64:
        return isinstance(value, int) and not isinstance(value, bool) and INT64_MIN <= value <= INT64_MAX
    if kind is ValueKind.DOUBLE:
        return isinstance(value, float)
    if kind is ValueKind.STRING:
        return isinstance(value, str)
    return False


def config_map_from_json(data: Any) -> ConfigMap:
    """Convert a decoded JSON object into a ConfigMap"""
    if not isinstance(data, dict):
        raise ValueTypeError(f"expected an object, got {type(data).__name__}")
    return {key: ConfigValue.from_json(raw, key) for key, raw in data.items()}


def config_map_to_json(config_map: ConfigMap) -> dict[str, Any]:
    return {key: value.to_json() for key, value in config_map.items()}


def config_map_from_wire(data: Any) -> ConfigMap:
    """Decode a wire-encoded map as carried by GetConfiguration and signals"""
    if not isinstance(data, dict):
        raise ValueTypeError(f"expected an object, got {type(data).__name__}")
    return {key: ConfigValue.from_wire(payload) for key, payload in data.items()}


def config_map_to_wire(config_map: ConfigMap) -> dict[str, dict[str, Any]]:
    return {key: value.to_wire() for key, value in config_map.items()}
