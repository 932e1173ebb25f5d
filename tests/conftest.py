"""Pytest configuration and fixtures."""

from __future__ import annotations

import threading
import time

import anyio
import pytest
from fastapi.testclient import TestClient

from devquery_rest import ConnectionConfig, ConnectionManager, EngineType, Settings, create_app
from devquery_rest._adapters import Connection, EngineAdapter, SQLiteAdapter
from devquery_rest._errors import QueryError
from devquery_rest._models import ColumnSchema, ResultSet, SchemaDescription, TableSchema

SECRET = "s3cret-Pa55word"


class FakeConnection(Connection):
    """In-memory stand-in for a driver connection."""

    def __init__(
        self,
        engine_type: EngineType = EngineType.POSTGRESQL,
        tables: list[TableSchema] | None = None,
        release: threading.Event | None = None,
        close_error: Exception | None = None,
        query_error: Exception | None = None,
    ):
        self.engine_type = engine_type
        self.tables = tables or []
        self.release = release
        self.close_error = close_error
        self.query_error = query_error
        self.closed = False
        self.close_calls = 0
        self.executed: list[tuple] = []

    def execute(self, statement, parameters=None, row_limit=None) -> ResultSet:
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.closed:
            raise QueryError("engine_rejected", "Connection is closed")
        if self.query_error is not None:
            raise self.query_error
        self.executed.append((statement, parameters, row_limit))
        return ResultSet(columns=["n"], rows=[{"n": 1}], row_count=1)

    def fetch_schema(self) -> SchemaDescription:
        return SchemaDescription(engine_type=self.engine_type, database="d", tables=self.tables)

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeAdapter(EngineAdapter):
    """Counts connect calls; optionally slow or failing."""

    engine_type = EngineType.POSTGRESQL

    def __init__(self, delay: float = 0.0, error: Exception | None = None, **connection_kwargs):
        self.delay = delay
        self.error = error
        self.connection_kwargs = connection_kwargs
        self.connections: list[FakeConnection] = []
        self.targets = []
        self._lock = threading.Lock()

    @property
    def connect_calls(self) -> int:
        return len(self.targets)

    def connect(self, target, timeout) -> FakeConnection:
        with self._lock:
            self.targets.append(target)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        connection = FakeConnection(self.engine_type, **self.connection_kwargs)
        with self._lock:
            self.connections.append(connection)
        return connection


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)


def pg_config(database: str = "d", password: str = SECRET, **overrides) -> ConnectionConfig:
    values = {
        "type": "postgresql",
        "host": "h",
        "database": database,
        "username": "a",
        "password": password,
    }
    values.update(overrides)
    return ConnectionConfig(**values)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    """Settings with short deadlines, isolated from any local .env file."""
    return Settings(
        _env_file=None,
        connect_timeout_ms=2000,
        query_timeout_ms=2000,
        schema_timeout_ms=2000,
    )


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def manager(fake_adapter: FakeAdapter, settings: Settings) -> ConnectionManager:
    """Manager with a fake PostgreSQL adapter and the real SQLite one."""
    return ConnectionManager(
        adapters={EngineType.POSTGRESQL: fake_adapter, EngineType.SQLITE: SQLiteAdapter()},
        settings=settings,
    )


@pytest.fixture
def app(manager: ConnectionManager, settings: Settings):
    """Create a test app around the fixture manager."""
    return create_app(manager, settings)


@pytest.fixture
def client(app) -> TestClient:
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def sample_tables() -> list[TableSchema]:
    """Three tables of four columns each, in declaration order."""
    return [
        TableSchema(
            table_name=f"t{i}",
            columns=[
                ColumnSchema(column_name=f"c{i}_{j}", data_type="INTEGER", nullable=j > 0)
                for j in range(4)
            ],
        )
        for i in range(3)
    ]
