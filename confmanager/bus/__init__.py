"""
Bus Substrate

Unix-socket IPC used between the broker and its clients:
- server.py - object registry, method dispatch, signal streams (aiohttp)
- proxy.py - method calls and cancellable subscriptions (httpx)
- naming.py - object paths, interface and error names
"""

from .naming import (
    APPLICATION_SIGNAL,
    application_interface,
    application_path,
    manager_interface,
    normalize_application_name,
    service_path,
)
from .proxy import BusProxy, Subscription
from .server import BusObject, BusServer

__all__ = [
    "APPLICATION_SIGNAL",
    "BusObject",
    "BusProxy",
    "BusServer",
    "Subscription",
    "application_interface",
    "application_path",
    "manager_interface",
    "normalize_application_name",
    "service_path",
]
