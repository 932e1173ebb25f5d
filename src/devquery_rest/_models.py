"""Pydantic models: connection configuration, results and API payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


# === Base class for camelCase serialization ===


class CamelModel(BaseModel):
    """Base model that serializes to camelCase."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
    )


def success_envelope(data: CamelModel | None = None) -> dict:
    """Wrap response data in success envelope."""
    if data is None:
        return {"status": "success", "data": None}
    return {"status": "success", "data": data.model_dump(by_alias=True, mode="json")}


# === Engines ===


class EngineType(str, Enum):
    """Supported database engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    MONGODB = "mongodb"
    SQLSERVER = "sqlserver"
    ORACLE = "oracle"


_ENGINE_ALIASES = {
    "postgres": EngineType.POSTGRESQL,
    "mariadb": EngineType.MYSQL,
    "mongo": EngineType.MONGODB,
    "mssql": EngineType.SQLSERVER,
}

DEFAULT_PORTS: dict[EngineType, int] = {
    EngineType.POSTGRESQL: 5432,
    EngineType.MYSQL: 3306,
    EngineType.MONGODB: 27017,
    EngineType.SQLSERVER: 1433,
    EngineType.ORACLE: 1521,
}

# Engines where a login name is mandatory when configured field by field
_USERNAME_REQUIRED = frozenset(
    {EngineType.POSTGRESQL, EngineType.MYSQL, EngineType.SQLSERVER, EngineType.ORACLE}
)


def engine_from_name(name: str) -> EngineType:
    """Resolve an engine name or alias (case-insensitive).

    Raises:
        ValueError: If the name is not a supported engine.
    """
    key = name.strip().lower()
    if key in _ENGINE_ALIASES:
        return _ENGINE_ALIASES[key]
    try:
        return EngineType(key)
    except ValueError:
        raise ValueError(f"Unsupported database type: '{name}'") from None


def engine_from_scheme(scheme: str) -> EngineType:
    """Resolve an engine from a URL scheme such as ``postgresql+psycopg2``."""
    dialect = scheme.split("+")[0]  # e.g. "mongodb+srv" -> "mongodb"
    return engine_from_name(dialect)


# === Connection configuration ===


@dataclass(frozen=True)
class ConnectionTarget:
    """Fully resolved connection parameters handed to an adapter."""

    engine: EngineType
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    ssl: bool = False
    options: dict[str, Any] = field(default_factory=dict)
    uri: str | None = field(default=None, repr=False)


class RedactedConfig(CamelModel):
    """Connection configuration with every secret removed."""

    model_config = ConfigDict(frozen=True)

    engine_type: EngineType
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    ssl: bool = False
    connection_string: str | None = None
    connection_name: str | None = None


class ConnectionConfig(CamelModel):
    """Connection configuration as submitted by a caller.

    Either discrete fields or a raw ``connectionString`` may be given, never both.
    Secrets are held as :class:`~pydantic.SecretStr` so they do not leak through
    ``repr`` or serialization.
    """

    model_config = ConfigDict(frozen=True)

    engine: EngineType | None = Field(default=None, alias="type")
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    database: str | None = None
    username: str | None = None
    password: SecretStr | None = None
    ssl: bool = False
    connection_string: SecretStr | None = None
    connection_name: str | None = Field(default=None, max_length=100)

    @field_validator("engine", mode="before")
    @classmethod
    def _normalize_engine(cls, value: Any) -> Any:
        if isinstance(value, str):
            return engine_from_name(value)
        return value

    @model_validator(mode="after")
    def _check_shape(self) -> ConnectionConfig:
        if self.connection_string is not None:
            given = [
                name
                for name in ("host", "port", "database", "username", "password")
                if getattr(self, name) is not None
            ]
            if given:
                raise ValueError(
                    "connectionString is mutually exclusive with: " + ", ".join(given)
                )
            self.target()
            return self

        if self.engine is None:
            raise ValueError("type is required")
        if not self.database:
            raise ValueError("database is required")
        if self.engine is not EngineType.SQLITE and not self.host:
            raise ValueError(f"host is required for {self.engine.value}")
        if self.engine in _USERNAME_REQUIRED and not self.username:
            raise ValueError(f"username is required for {self.engine.value}")
        return self

    def target(self) -> ConnectionTarget:
        """Resolve this configuration into adapter-ready parameters."""
        if self.connection_string is not None:
            return _target_from_url(
                self.connection_string.get_secret_value(), self.engine, self.ssl
            )

        if self.engine is None:
            raise ValueError("type is required without a connectionString")
        return ConnectionTarget(
            engine=self.engine,
            host=self.host,
            port=self.port or DEFAULT_PORTS.get(self.engine),
            database=self.database,
            username=self.username,
            password=self.password.get_secret_value() if self.password else None,
            ssl=self.ssl,
        )

    def redacted(self) -> RedactedConfig:
        """Return a secret-free copy suitable for caching and logging."""
        target = self.target()
        masked = None
        if self.connection_string is not None:
            masked = make_url(self.connection_string.get_secret_value()).render_as_string(
                hide_password=True
            )
        return RedactedConfig(
            engine_type=target.engine,
            host=target.host,
            port=target.port,
            database=target.database,
            username=target.username,
            ssl=target.ssl,
            connection_string=masked,
            connection_name=self.connection_name,
        )


def _target_from_url(raw: str, engine: EngineType | None, ssl: bool) -> ConnectionTarget:
    # Parse errors from SQLAlchemy echo the URL, so they are replaced wholesale.
    try:
        url = make_url(raw)
    except (ArgumentError, ValueError):
        raise ValueError("connectionString could not be parsed") from None

    detected = engine_from_scheme(url.drivername)
    if engine is not None and engine is not detected:
        raise ValueError(
            f"type '{engine.value}' does not match connectionString scheme '{detected.value}'"
        )

    return ConnectionTarget(
        engine=detected,
        host=url.host,
        port=url.port or DEFAULT_PORTS.get(detected),
        database=url.database,
        username=url.username,
        password=url.password,
        ssl=ssl,
        options=dict(url.query),
        uri=raw,
    )


# === Results ===


class ResultSet(CamelModel):
    """Rows returned by a statement plus execution metadata."""

    columns: list[str]
    rows: list[dict[str, Any]]
    row_count: int
    execution_time_ms: float = 0.0
    truncated: bool = False


class ColumnSchema(CamelModel):
    """Schema for a single column or document field."""

    column_name: str
    data_type: str
    nullable: bool = True
    default: str | None = None


class TableSchema(CamelModel):
    """Schema for a single table or collection."""

    table_name: str
    columns: list[ColumnSchema]


class SchemaDescription(CamelModel):
    """Ordered tables (or collections) of one connection."""

    engine_type: EngineType
    database: str | None = None
    tables: list[TableSchema]


# === Connection metadata ===


class ConnectionSummary(CamelModel):
    """Secret-free description of a live connection."""

    connection_key: str
    owner_id: str
    engine_type: EngineType
    database: str | None = None
    host: str | None = None
    port: int | None = None
    connection_name: str | None = None


class ConnectionInfo(ConnectionSummary):
    """Connection summary with lifecycle timestamps."""

    created_at: datetime
    last_used_at: datetime


class ConnectionStatus(CamelModel):
    """Status of a connection key. Never raises; missing means disconnected."""

    connected: bool
    engine_type: EngineType | None = None
    database: str | None = None
    host: str | None = None
    created_at: datetime | None = None
    last_used_at: datetime | None = None
    message: str | None = None


class ConnectResult(CamelModel):
    """Outcome of a connect call."""

    connection_key: str
    engine_type: EngineType
    database: str | None = None
    connection_name: str | None = None
    reused: bool = False


# === Requests ===


class QueryRequest(CamelModel):
    """Request body for statement execution.

    For document stores ``query`` names the operation (``find``, ``insertOne``...)
    and ``params`` carries the collection and documents.
    """

    query: str = Field(min_length=1, max_length=10000)
    params: list[Any] | dict[str, Any] | None = None
    limit: int | None = Field(default=None, ge=1, le=10000)


# === Responses ===


class ConnectionTestResponse(CamelModel):
    """Response for a throwaway connection test."""

    success: bool
    engine_type: EngineType


class ConnectionsResponse(CamelModel):
    """Response for listing an owner's connections."""

    connections: list[ConnectionInfo]


class DisconnectResponse(CamelModel):
    """Response for a single disconnect."""

    connection_key: str
    disconnected: bool


class DisconnectOwnerResponse(CamelModel):
    """Response for bulk disconnection."""

    owner_id: str
    count: int


class SweepResponse(CamelModel):
    """Response for a manual sweeper pass."""

    evicted: int


# === Errors ===


class ErrorDetail(BaseModel):
    """Error details."""

    message: str
    type: str
    reason: str | None = None


class ErrorResponse(BaseModel):
    """Error response."""

    status: str = "error"
    error: ErrorDetail
