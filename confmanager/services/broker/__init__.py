"""
Configuration Broker

Responsibilities:
- Discover one configuration file per application at startup
- Serve GetConfiguration / ChangeConfiguration per application
- Emit ConfigurationChanged snapshots and persist changes
"""

from .endpoint import ApplicationEndpoint
from .service import BrokerState, ConfigurationBroker
from .store import ConfigStore

__all__ = ["ApplicationEndpoint", "BrokerState", "ConfigStore", "ConfigurationBroker"]
