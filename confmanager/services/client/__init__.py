"""
Configuration Client

Responsibilities:
- Load or create the local configuration file
- Follow ConfigurationChanged signals for its application
- Print the configured phrase every configured timeout
"""

from .cache import ClientConfigCache, load_client_cache
from .service import ConfigurationClient
from .worker import PeriodicWorker

__all__ = ["ClientConfigCache", "ConfigurationClient", "PeriodicWorker", "load_client_cache"]
