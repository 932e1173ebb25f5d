"""SQLAlchemy-backed adapters for the relational engines."""

from __future__ import annotations

import math
import time
from typing import Any, ClassVar, Mapping

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import URL, Connection as SAConnection, CursorResult
from sqlalchemy.exc import NoSuchModuleError, ProgrammingError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .._errors import DatabaseConnectionError, QueryError, SchemaError
from .._models import ConnectionTarget, EngineType, ResultSet, SchemaDescription
from .._schema import get_relational_tables
from ._base import (
    Connection,
    EngineAdapter,
    Parameters,
    classify_connect_error,
    driver_message,
    normalize_value,
)


def classify_query_error(exc: SQLAlchemyError) -> str:
    """Map a statement failure to a query error reason."""
    message = driver_message(exc).lower()
    if isinstance(exc, ProgrammingError) or "syntax" in message:
        return "syntax"
    if "timeout" in message or "timed out" in message:
        return "timeout"
    return "engine_rejected"


class SqlAlchemyConnection(Connection):
    """A live SQLAlchemy engine bound to one registry entry."""

    def __init__(self, engine_type: EngineType, engine: Engine, database: str | None = None):
        self.engine_type = engine_type
        self.database = database
        self._engine: Engine | None = engine

    @property
    def closed(self) -> bool:
        return self._engine is None

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise QueryError("engine_rejected", "Connection is closed")
        return self._engine

    def execute(
        self,
        statement: str,
        parameters: Parameters = None,
        row_limit: int | None = None,
    ) -> ResultSet:
        engine = self._require_engine()
        start = time.perf_counter()
        columns: list[str] = []
        rows: list[dict[str, Any]] = []
        truncated = False

        try:
            with engine.connect() as conn:
                result = _run(conn, statement, parameters)
                if result.returns_rows:
                    columns = list(result.keys())
                    mappings = result.mappings()
                    if row_limit is None:
                        fetched = mappings.fetchall()
                    else:
                        # One extra row tells us whether the cap cut anything off
                        fetched = mappings.fetchmany(row_limit + 1)
                        truncated = len(fetched) > row_limit
                        fetched = fetched[:row_limit]
                    rows = [
                        {name: normalize_value(value) for name, value in row.items()}
                        for row in fetched
                    ]
                    row_count = len(rows)
                    result.close()
                else:
                    row_count = max(result.rowcount, 0)
                conn.commit()
        except SQLAlchemyError as e:
            raise QueryError(classify_query_error(e), f"Query failed: {driver_message(e)}") from e

        return ResultSet(
            columns=columns,
            rows=rows,
            row_count=row_count,
            execution_time_ms=(time.perf_counter() - start) * 1000,
            truncated=truncated,
        )

    def fetch_schema(self) -> SchemaDescription:
        if self._engine is None:
            raise SchemaError("engine_rejected", "Connection is closed")
        try:
            tables = get_relational_tables(self._engine)
        except SQLAlchemyError as e:
            raise SchemaError(
                "engine_rejected", f"Schema introspection failed: {driver_message(e)}"
            ) from e
        return SchemaDescription(engine_type=self.engine_type, database=self.database, tables=tables)

    def close(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.dispose()


def _run(conn: SAConnection, statement: str, parameters: Parameters) -> CursorResult:
    # Only named parameters go through text() (":name" markers). Everything else
    # reaches the driver verbatim, so ":word" inside literals is left alone.
    if not parameters:
        return conn.exec_driver_sql(statement)
    if isinstance(parameters, Mapping):
        return conn.execute(text(statement), dict(parameters))
    return conn.exec_driver_sql(statement, tuple(parameters))


class SqlAlchemyAdapter(EngineAdapter):
    """Base adapter: build a URL, create an engine, probe it once."""

    drivername: ClassVar[str]
    probe_statement: ClassVar[str] = "SELECT 1"

    def build_url(self, target: ConnectionTarget) -> URL:
        return URL.create(
            self.drivername,
            username=target.username,
            password=target.password,
            host=target.host,
            port=target.port,
            database=target.database,
            query=self.url_query(target),
        )

    def url_query(self, target: ConnectionTarget) -> dict[str, Any]:
        return dict(target.options)

    def connect_args(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        return {}

    def engine_options(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        return {"connect_args": self.connect_args(target, timeout)}

    def connect(self, target: ConnectionTarget, timeout: float) -> SqlAlchemyConnection:
        try:
            engine = create_engine(self.build_url(target), **self.engine_options(target, timeout))
        except (NoSuchModuleError, ImportError) as e:
            raise DatabaseConnectionError(
                "unsupported_engine",
                f"Driver for {self.engine_type.value} is not available: {driver_message(e)}",
            ) from e

        try:
            with engine.connect() as conn:
                conn.execute(text(self.probe_statement)).fetchall()
        except (SQLAlchemyError, ImportError) as e:
            engine.dispose()
            raise DatabaseConnectionError(
                classify_connect_error(e),
                f"Could not connect to {self.engine_type.value}: "
                f"{driver_message(e, target.password)}",
            ) from e

        return SqlAlchemyConnection(self.engine_type, engine, target.database)


class PooledAdapter(SqlAlchemyAdapter):
    """Adapters for servers that hold a bounded pool of sessions."""

    def __init__(self, pool_size: int = 10):
        self.pool_size = pool_size

    def engine_options(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        return {
            "pool_size": self.pool_size,
            "max_overflow": 0,
            "pool_timeout": timeout,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "connect_args": self.connect_args(target, timeout),
        }


class PostgreSQLAdapter(PooledAdapter):
    engine_type = EngineType.POSTGRESQL
    drivername = "postgresql+psycopg2"

    def url_query(self, target: ConnectionTarget) -> dict[str, Any]:
        query = dict(target.options)
        if target.ssl and "sslmode" not in query:
            query["sslmode"] = "require"
        return query

    def connect_args(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        return {
            "connect_timeout": max(1, math.ceil(timeout)),
            "application_name": "devquery",
        }


class MySQLAdapter(PooledAdapter):
    engine_type = EngineType.MYSQL
    drivername = "mysql+pymysql"

    def url_query(self, target: ConnectionTarget) -> dict[str, Any]:
        return {"charset": "utf8mb4", **target.options}

    def connect_args(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        args: dict[str, Any] = {"connect_timeout": max(1, math.ceil(timeout))}
        if target.ssl:
            # Encrypt without CA verification, like sslmode=require
            args["ssl"] = {"check_hostname": False}
        return args


class OracleAdapter(PooledAdapter):
    engine_type = EngineType.ORACLE
    drivername = "oracle+oracledb"
    probe_statement = "SELECT 1 FROM DUAL"

    def build_url(self, target: ConnectionTarget) -> URL:
        # The database field names a service, not a SID
        query = dict(target.options)
        if target.database:
            query.setdefault("service_name", target.database)
        return URL.create(
            self.drivername,
            username=target.username,
            password=target.password,
            host=target.host,
            port=target.port,
            query=query,
        )

    def connect_args(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        args: dict[str, Any] = {"tcp_connect_timeout": timeout}
        if target.ssl:
            args["protocol"] = "tcps"
        return args


class SQLServerAdapter(SqlAlchemyAdapter):
    """SQL Server through pyodbc over a single session."""

    engine_type = EngineType.SQLSERVER
    drivername = "mssql+pyodbc"

    def __init__(self, odbc_driver: str = "ODBC Driver 18 for SQL Server"):
        self.odbc_driver = odbc_driver

    def url_query(self, target: ConnectionTarget) -> dict[str, Any]:
        return {
            "driver": self.odbc_driver,
            "Encrypt": "yes",
            "TrustServerCertificate": "no" if target.ssl else "yes",
            **target.options,
        }

    def connect_args(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        return {"timeout": max(1, math.ceil(timeout))}

    def engine_options(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        return {"poolclass": StaticPool, "connect_args": self.connect_args(target, timeout)}


class SQLiteAdapter(SqlAlchemyAdapter):
    """SQLite over one file handle shared by every call on the key."""

    engine_type = EngineType.SQLITE
    drivername = "sqlite"

    def build_url(self, target: ConnectionTarget) -> URL:
        return URL.create(self.drivername, database=target.database, query=dict(target.options))

    def connect_args(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        # Calls arrive from executor threads, serialized per key
        return {"check_same_thread": False, "timeout": timeout}

    def engine_options(self, target: ConnectionTarget, timeout: float) -> dict[str, Any]:
        return {"poolclass": StaticPool, "connect_args": self.connect_args(target, timeout)}
