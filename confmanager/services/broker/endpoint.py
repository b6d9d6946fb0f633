"""
Application Endpoint

Exports one application's ConfigStore on the bus:
- GetConfiguration() -> map
- ChangeConfiguration(key, value)
- ConfigurationChanged(map) signal, full snapshot after every change
"""

from pathlib import Path
from typing import Any, Protocol

from confmanager.bus.naming import (
    APPLICATION_SIGNAL,
    application_interface,
    application_path,
)
from confmanager.bus.server import BusObject
from confmanager.common.exceptions import InvalidArgumentError
from confmanager.common.logging_setup import get_service_logger, log_config_change
from confmanager.common.persistence import load_config_map, save_config_map
from confmanager.common.settings import SERVICE_NAME
from confmanager.common.values import (
    ConfigMap,
    ConfigValue,
    config_map_to_wire,
)

from .store import ConfigStore

logger = get_service_logger("broker.endpoint")


class Bus(Protocol):
    """What an endpoint needs from the bus connection"""

    def register_object(self, bus_object: BusObject) -> None: ...

    def unregister_object(self, path: str, interface: str) -> None: ...

    def emit_signal(self, path: str, interface: str, member: str, *args: Any) -> None: ...


class ApplicationEndpoint:
    """One application's configuration, addressable on the bus"""

    def __init__(
        self,
        name: str,
        config_path: str | Path,
        bus: Bus,
        service_name: str = SERVICE_NAME,
        persist_changes: bool = True,
    ):
        self.name = name
        self.config_path = Path(config_path)
        self.object_path = application_path(name, service_name)
        self.interface = application_interface(service_name)
        self.persist_changes = persist_changes
        self._bus = bus

        logger.debug(f"Creating endpoint for {self.config_path}")
        self.store = ConfigStore(load_config_map(self.config_path))
        if persist_changes:
            self.store.add_listener(self._persist)
        self.store.add_listener(self._emit_changed)

        bus.register_object(BusObject(
            path=self.object_path,
            interface=self.interface,
            methods={
                "GetConfiguration": self._get_configuration_call,
                "ChangeConfiguration": self._change_configuration_call,
            },
            signals=(APPLICATION_SIGNAL,),
        ))
        self._registered = True

        logger.info(
            f"Registered application {name} at {self.object_path} ({len(self.store)} keys)",
            extra={"application": name},
        )

    def get_configuration(self) -> ConfigMap:
        return self.store.get_all()

    def change_configuration(self, key: str, value: ConfigValue | None) -> None:
        logger.debug(f"Changing configuration key {key!r} on {self.name}")
        try:
            self.store.set(key, value)
        except InvalidArgumentError:
            log_config_change(logger, self.name, key, value, success=False)
            raise
        log_config_change(logger, self.name, key, value.to_json())

    def close(self) -> None:
        """Remove the object from the bus"""
        if self._registered:
            self._bus.unregister_object(self.object_path, self.interface)
            self._registered = False

    # Bus method adapters (wire encoding in and out)

    def _get_configuration_call(self) -> dict:
        return config_map_to_wire(self.get_configuration())

    def _change_configuration_call(self, key: Any, value: Any) -> None:
        if not isinstance(key, str):
            raise InvalidArgumentError("Key must be a string")
        self.change_configuration(key, ConfigValue.from_wire(value) if value is not None else None)

    # Store listeners (run under the store lock)

    def _persist(self, snapshot: ConfigMap) -> None:
        save_config_map(self.config_path, snapshot)

    def _emit_changed(self, snapshot: ConfigMap) -> None:
        self._bus.emit_signal(
            self.object_path,
            self.interface,
            APPLICATION_SIGNAL,
            config_map_to_wire(snapshot),
        )
