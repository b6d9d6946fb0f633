"""
Custom Exception Classes for confmanager

Hierarchical exception structure shared by the broker, the client and the bus.
Every class carries a short error name; the bus sends it as
"<service-name>.Error.<name>" so proxies can raise the matching class.
"""


class ConfManagerError(Exception):
    """Base exception for all confmanager errors"""

    error_name = "Failed"

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)

    @classmethod
    def from_wire(cls, message: str) -> "ConfManagerError":
        """Rebuild an error received over the bus (message already formatted)"""
        exc = cls.__new__(cls)
        ConfManagerError.__init__(exc, message)
        return exc


class ConfigNotFoundError(ConfManagerError):
    """Configuration file does not exist"""

    error_name = "NotFound"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Config file not found: {path}", recoverable=False)


class ConfigParseError(ConfManagerError):
    """Configuration file is not a valid key/value document"""

    error_name = "ParseError"

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        prefix = f"{path}: " if path else ""
        super().__init__(f"Parse Error: {prefix}{message}", recoverable=False)


class ValueTypeError(ConfManagerError, TypeError):
    """Value type is not one of string, int64, double, boolean"""

    error_name = "TypeError"

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        prefix = f"{key}: " if key else ""
        super().__init__(f"Type Error: {prefix}{message}")


class InvalidArgumentError(ConfManagerError, ValueError):
    """Bad arguments on a configuration change"""

    error_name = "InvalidArgument"

    def __init__(self, message: str):
        super().__init__(f"Invalid Argument: {message}")


class ConfigDirError(ConfManagerError):
    """Configuration directory cannot be read or created"""

    error_name = "ConfigDirError"

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"Config Dir Error: {message}", recoverable=False)


class NoConfigsFoundError(ConfManagerError):
    """Broker found no application configuration files"""

    error_name = "NoConfigsFound"

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"No valid configuration files found in {path}",
            recoverable=False,
        )


class IpcConnectionError(ConfManagerError):
    """Bus is unavailable or the connection dropped"""

    error_name = "IpcConnectionError"

    def __init__(self, message: str, address: str | None = None):
        self.address = address
        super().__init__(f"IPC Error: {message}", recoverable=True)


class NameTakenError(IpcConnectionError):
    """Another broker already owns the service name"""

    error_name = "NameTaken"

    def __init__(self, service_name: str, address: str):
        self.service_name = service_name
        super().__init__(f"Service name {service_name} already owned", address)
        self.recoverable = False


class UnknownObjectError(ConfManagerError):
    """No object/method registered for a call"""

    error_name = "UnknownObject"

    def __init__(self, message: str):
        super().__init__(message)


class BusCallError(ConfManagerError):
    """Remote call failed with an error name this side does not map"""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(f"{name}: {message}")


class ServiceError(ConfManagerError):
    """Service lifecycle errors"""

    error_name = "ServiceError"

    def __init__(self, message: str, service_name: str, recoverable: bool = False):
        self.service_name = service_name
        super().__init__(f"Service [{service_name}]: {message}", recoverable)


# Classes that may be raised by method bodies and travel over the bus
WIRE_ERRORS: dict[str, type[ConfManagerError]] = {
    cls.error_name: cls
    for cls in (
        ConfigNotFoundError,
        ConfigParseError,
        ValueTypeError,
        InvalidArgumentError,
        ConfigDirError,
        NoConfigsFoundError,
        UnknownObjectError,
        ServiceError,
    )
}
