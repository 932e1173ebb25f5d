"""Multi-engine database connection manager with a REST API."""

from importlib.metadata import version

from ._app import create_app
from ._cache import MetadataCache
from ._config import Settings, load_settings
from ._connections import ConnectionRegistry, RegistryEntry, connection_key
from ._manager import ConnectionManager
from ._models import ConnectionConfig, EngineType
from ._sweeper import ExpirySweeper

__version__ = version("devquery-rest")
__all__ = [
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionRegistry",
    "EngineType",
    "ExpirySweeper",
    "MetadataCache",
    "RegistryEntry",
    "Settings",
    "connection_key",
    "create_app",
    "load_settings",
]
