"""Engine adapters behind one capability contract."""

from __future__ import annotations

from .._config import Settings
from .._models import EngineType
from ._base import Connection, EngineAdapter, Parameters, normalize_value
from ._mongodb import MongoConnection, MongoDBAdapter
from ._relational import (
    MySQLAdapter,
    OracleAdapter,
    PostgreSQLAdapter,
    SqlAlchemyAdapter,
    SqlAlchemyConnection,
    SQLiteAdapter,
    SQLServerAdapter,
)


def default_adapters(settings: Settings | None = None) -> dict[EngineType, EngineAdapter]:
    """Build the adapter for every supported engine type."""
    settings = settings or Settings()
    return {
        EngineType.POSTGRESQL: PostgreSQLAdapter(pool_size=settings.pool_size),
        EngineType.MYSQL: MySQLAdapter(pool_size=settings.pool_size),
        EngineType.ORACLE: OracleAdapter(pool_size=settings.pool_size),
        EngineType.SQLSERVER: SQLServerAdapter(odbc_driver=settings.odbc_driver),
        EngineType.SQLITE: SQLiteAdapter(),
        EngineType.MONGODB: MongoDBAdapter(),
    }


__all__ = [
    "Connection",
    "EngineAdapter",
    "MongoConnection",
    "MongoDBAdapter",
    "MySQLAdapter",
    "OracleAdapter",
    "Parameters",
    "PostgreSQLAdapter",
    "SQLServerAdapter",
    "SQLiteAdapter",
    "SqlAlchemyAdapter",
    "SqlAlchemyConnection",
    "default_adapters",
    "normalize_value",
]
