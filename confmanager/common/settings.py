"""
Settings Dataclasses

Runtime settings for the broker and the client, plus the well-known names
shared by both sides. Values come from (lowest to highest priority):
defaults, an optional YAML settings file, environment variables, CLI options.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigParseError

SERVICE_NAME = "com.system.configurationManager"
CONFIG_EXTENSION = ".json"
DEFAULT_CONFIG_DIR = "~/com.system.configurationManager/"
DEFAULT_APP_NAME = "confManagerApplication1"

# Client defaults
DEFAULT_TIMEOUT_MS = 1000
DEFAULT_PHRASE = "Hey"
TIMEOUT_KEY = "Timeout"
PHRASE_KEY = "TimeoutPhrase"


def default_bus_address(service_name: str = SERVICE_NAME) -> str:
    """
    Socket path for the session bus.

    CONFMANAGER_BUS_ADDRESS wins; otherwise the per-user runtime directory,
    otherwise /tmp with the uid in the name.
    """
    env_address = os.environ.get("CONFMANAGER_BUS_ADDRESS")
    if env_address:
        return env_address

    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return str(Path(runtime_dir) / f"{service_name}.sock")

    uid = os.getuid() if hasattr(os, "getuid") else 0
    return f"/tmp/{service_name}-{uid}.sock"


def expand_path(path: str | Path) -> Path:
    """Expand ~ in a user supplied path"""
    return Path(path).expanduser()


@dataclass
class BrokerSettings:
    """Broker runtime configuration"""
    config_dir: str = DEFAULT_CONFIG_DIR
    service_name: str = SERVICE_NAME
    bus_address: str = ""
    persist_changes: bool = True
    log_level: str = "INFO"
    json_logs: bool = True

    def __post_init__(self):
        if not self.bus_address:
            self.bus_address = default_bus_address(self.service_name)

    @property
    def config_path(self) -> Path:
        return expand_path(self.config_dir)


@dataclass
class ClientSettings:
    """Client runtime configuration"""
    config_path: str = ""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    phrase: str = DEFAULT_PHRASE
    force_create: bool = False
    service_name: str = SERVICE_NAME
    bus_address: str = ""

    def __post_init__(self):
        if not self.config_path:
            self.config_path = str(
                Path(DEFAULT_CONFIG_DIR) / f"{DEFAULT_APP_NAME}{CONFIG_EXTENSION}"
            )
        if not self.bus_address:
            self.bus_address = default_bus_address(self.service_name)

    @property
    def path(self) -> Path:
        return expand_path(self.config_path)


def load_settings_file(path: str | Path) -> dict:
    """
    Load a YAML settings file.

    Returns:
        Settings dictionary (empty for an empty file)

    Raises:
        ConfigParseError: file unreadable or not a mapping
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigParseError(f"cannot read settings file: {e}", str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigParseError(f"invalid YAML: {e}", str(path)) from e

    if not isinstance(data, dict):
        raise ConfigParseError("settings file must contain a mapping", str(path))
    return data


def load_broker_settings(
    settings_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> BrokerSettings:
    """Build BrokerSettings from a settings file, environment and overrides"""
    data: dict[str, Any] = {}
    if settings_path:
        data.update(load_settings_file(settings_path).get("broker", {}) or {})

    env_level = os.environ.get("CONFMANAGER_LOG_LEVEL")
    if env_level:
        data["log_level"] = env_level
    env_format = os.environ.get("CONFMANAGER_LOG_FORMAT")
    if env_format:
        data["json_logs"] = env_format.lower() == "json"

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    known = set(BrokerSettings.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise ConfigParseError(f"unknown broker settings: {', '.join(sorted(unknown))}", settings_path)

    return BrokerSettings(**data)
