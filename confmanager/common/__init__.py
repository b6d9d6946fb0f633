"""
Common Utilities

Shared modules used by the broker, the client and the bus:
- values.py - typed configuration values
- persistence.py - JSON configuration files
- settings.py - settings dataclasses and well-known names
- exceptions.py - custom exception classes
- logging_setup.py - structured logging setup
"""

from .exceptions import (
    ConfManagerError,
    ConfigNotFoundError,
    ConfigParseError,
    ValueTypeError,
    InvalidArgumentError,
    ConfigDirError,
    NoConfigsFoundError,
    IpcConnectionError,
    NameTakenError,
    UnknownObjectError,
    BusCallError,
    ServiceError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    configure_service_loggers,
    log_config_change,
)
from .persistence import (
    load_config_map,
    save_config_map,
    load_or_create,
    ensure_directory,
)
from .settings import (
    BrokerSettings,
    ClientSettings,
    load_broker_settings,
    SERVICE_NAME,
)
from .values import (
    ConfigMap,
    ConfigValue,
    ValueKind,
)

__all__ = [
    # Exceptions
    "ConfManagerError",
    "ConfigNotFoundError",
    "ConfigParseError",
    "ValueTypeError",
    "InvalidArgumentError",
    "ConfigDirError",
    "NoConfigsFoundError",
    "IpcConnectionError",
    "NameTakenError",
    "UnknownObjectError",
    "BusCallError",
    "ServiceError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "configure_service_loggers",
    "log_config_change",
    # Persistence
    "load_config_map",
    "save_config_map",
    "load_or_create",
    "ensure_directory",
    # Settings
    "BrokerSettings",
    "ClientSettings",
    "load_broker_settings",
    "SERVICE_NAME",
    # Values
    "ConfigMap",
    "ConfigValue",
    "ValueKind",
]
