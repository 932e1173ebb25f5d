"""Connection manager: the public face of the connection core."""

from __future__ import annotations

import asyncio
import functools
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Mapping

import structlog

from ._adapters import Connection, EngineAdapter, Parameters, default_adapters
from ._cache import MetadataCache
from ._config import Settings
from ._connections import ConnectionRegistry, RegistryEntry, connection_key
from ._errors import (
    ConnectionNotFoundError,
    DatabaseConnectionError,
    OperationTimeoutError,
    QueryError,
    SchemaError,
)
from ._locks import KeyedLocks
from ._models import (
    ConnectionConfig,
    ConnectionInfo,
    ConnectionStatus,
    ConnectionSummary,
    ConnectResult,
    EngineType,
    ResultSet,
    SchemaDescription,
)

log = structlog.get_logger(__name__)


class _Lease:
    """Tracks who releases a key lock: the holder, or a worker it abandoned."""

    def __init__(self, locks: KeyedLocks, key: str):
        self._locks = locks
        self.key = key
        self.handed_off = False

    def hand_off(self, future: asyncio.Future) -> None:
        self.handed_off = True
        future.add_done_callback(lambda _: self._locks.release(self.key))


class ConnectionManager:
    """Opens, reuses, runs and closes connections on behalf of owners.

    Every operation on a connection key is serialized through a per-key lock;
    different keys never wait on each other. Blocking driver calls run in the
    default executor under a deadline.

    Args:
        registry: Live connection store. A fresh one is created if omitted.
        cache: Secret-free summary cache used for status display.
        adapters: Adapter per engine type, selected once at connect time.
        settings: Timeouts and driver options.
    """

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        cache: MetadataCache | None = None,
        adapters: Mapping[EngineType, EngineAdapter] | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings if settings is not None else Settings()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.cache = (
            cache
            if cache is not None
            else MetadataCache(self.settings.cache_ttl_seconds, self.settings.cache_max_entries)
        )
        self.adapters = dict(adapters) if adapters is not None else default_adapters(self.settings)
        self._locks = KeyedLocks()

    # === Lookup helpers ===

    def key_for(self, owner_id: str, config: ConnectionConfig) -> str:
        return connection_key(owner_id, config)

    def has_connection(self, key: str) -> bool:
        return key in self.registry

    def is_busy(self, key: str) -> bool:
        """True while some operation holds the key."""
        return self._locks.locked(key)

    def count_for_owner(self, owner_id: str) -> int:
        return len(self.registry.list_by_owner(owner_id))

    def adapter_for(self, engine: EngineType) -> EngineAdapter:
        adapter = self.adapters.get(engine)
        if adapter is None:
            raise DatabaseConnectionError(
                "unsupported_engine", f"No adapter configured for '{engine.value}'"
            )
        return adapter

    # === Operations ===

    async def connect(
        self, owner_id: str, config: ConnectionConfig, timeout: float | None = None
    ) -> ConnectResult:
        """Open a connection, or reuse the live one for the same key.

        Raises:
            DatabaseConnectionError: If the adapter cannot connect.
            OperationTimeoutError: If connecting exceeds the deadline.
        """
        key = connection_key(owner_id, config)
        redacted = config.redacted()

        async with self._exclusive(key) as lease:
            entry = self.registry.lookup(key)
            if entry is not None:
                entry.touch()
                self.cache.put(key, _summary(key, entry))
                log.info(
                    "connection_reused",
                    connection_key=key,
                    owner_id=owner_id,
                    engine_type=entry.config.engine_type.value,
                )
                return _connect_result(key, entry, reused=True)

            adapter = self.adapter_for(redacted.engine_type)
            timeout = timeout or self.settings.connect_timeout
            connection = await self._call(
                "connect",
                timeout,
                adapter.connect,
                config.target(),
                timeout,
                key=key,
                lease=lease,
                on_late=self._close_late,
            )

            entry = RegistryEntry(owner_id, redacted, connection)
            self.registry.insert(key, entry)
            self.cache.put(key, _summary(key, entry))

        log.info(
            "connection_created",
            connection_key=key,
            owner_id=owner_id,
            engine_type=redacted.engine_type.value,
            database=redacted.database,
        )
        return _connect_result(key, entry, reused=False)

    async def test_connection(self, config: ConnectionConfig, timeout: float | None = None) -> bool:
        """Open a throwaway connection and close it again. Never touches the registry."""
        target = config.target()
        adapter = self.adapter_for(target.engine)
        timeout = timeout or self.settings.connect_timeout
        connection = await self._call(
            "connect", timeout, adapter.connect, target, timeout, on_late=self._close_late
        )
        try:
            await self._call("close", timeout, connection.close)
        except Exception as e:
            log.warning("connection_close_failed", engine_type=target.engine.value, error=str(e))
        log.info("connection_tested", engine_type=target.engine.value)
        return True

    async def execute_query(
        self,
        key: str,
        statement: str,
        parameters: Parameters = None,
        row_limit: int | None = None,
        timeout: float | None = None,
    ) -> ResultSet:
        """Run a statement on a live connection.

        Raises:
            ConnectionNotFoundError: If the key is unknown or expired.
            QueryError: If the engine rejects the statement.
            OperationTimeoutError: If the statement exceeds the deadline.
        """
        async with self._exclusive(key) as lease:
            entry = self._require(key)
            entry.touch()
            timeout = timeout or self.settings.query_timeout
            try:
                result = await self._call(
                    "query",
                    timeout,
                    entry.connection.execute,
                    statement,
                    parameters,
                    row_limit,
                    key=key,
                    lease=lease,
                )
            except QueryError as e:
                log.warning("query_failed", connection_key=key, reason=e.reason, error=e.message)
                raise
            entry.touch()

        log.info(
            "query_executed",
            connection_key=key,
            row_count=result.row_count,
            truncated=result.truncated,
            execution_time_ms=round(result.execution_time_ms, 2),
        )
        return result

    async def fetch_schema(self, key: str, timeout: float | None = None) -> SchemaDescription:
        """Describe the tables or collections behind a live connection.

        Raises:
            ConnectionNotFoundError: If the key is unknown or expired.
            SchemaError: If the catalog cannot be read.
            OperationTimeoutError: If introspection exceeds the deadline.
        """
        async with self._exclusive(key) as lease:
            entry = self._require(key)
            entry.touch()
            timeout = timeout or self.settings.schema_timeout
            try:
                schema = await self._call(
                    "schema", timeout, entry.connection.fetch_schema, key=key, lease=lease
                )
            except SchemaError as e:
                log.warning("schema_failed", connection_key=key, reason=e.reason, error=e.message)
                raise
            entry.touch()

        log.info("schema_fetched", connection_key=key, tables=len(schema.tables))
        return schema

    async def disconnect(self, key: str) -> bool:
        """Remove and close a connection. Idempotent and never raises.

        Returns:
            True if a live entry was removed.
        """
        async with self._exclusive(key) as lease:
            try:
                return await self._evict(key, lease)
            except Exception as e:
                log.error("connection_close_failed", connection_key=key, error=str(e))
                return True

    async def disconnect_owner(self, owner_id: str) -> int:
        """Disconnect every entry of one owner. Failures are logged, not raised."""
        keys = [key for key, _ in self.registry.list_by_owner(owner_id)]
        count = await self._disconnect_many(keys)
        log.info("owner_disconnected", owner_id=owner_id, count=count)
        return count

    async def disconnect_all(self) -> int:
        """Close every live entry; used on shutdown."""
        count = await self._disconnect_many(list(self.registry))
        log.info("all_connections_closed", count=count)
        return count

    async def expire(
        self, key: str, idle_timeout: timedelta, now: datetime | None = None
    ) -> bool:
        """Evict ``key`` if it is still idle once its lock is held.

        Raises:
            Exception: Whatever closing the connection raised; the entry is gone either way.
        """
        async with self._exclusive(key) as lease:
            entry = self.registry.lookup(key)
            if entry is None or not entry.is_expired(idle_timeout, now):
                return False
            log.info(
                "connection_expired",
                connection_key=key,
                idle_seconds=int(entry.idle_for(now).total_seconds()),
            )
            return await self._evict(key, lease)

    def status(self, key: str) -> ConnectionStatus:
        """Report whether ``key`` is live. Never raises."""
        entry = self.registry.lookup(key)
        summary = self.cache.get(key)
        if entry is None or summary is None:
            return ConnectionStatus(connected=False, message="Connection not found or expired")
        return ConnectionStatus(
            connected=True,
            engine_type=summary.engine_type,
            database=summary.database,
            host=summary.host,
            created_at=entry.created_at,
            last_used_at=entry.last_used_at,
        )

    def list_connections(self, owner_id: str) -> list[ConnectionInfo]:
        entries = self.registry.list_by_owner(owner_id)
        return sorted((entry.info(key) for key, entry in entries), key=lambda i: i.created_at)

    # === Internals ===

    def _require(self, key: str) -> RegistryEntry:
        entry = self.registry.lookup(key)
        if entry is None:
            raise ConnectionNotFoundError(key)
        return entry

    @asynccontextmanager
    async def _exclusive(self, key: str) -> AsyncIterator[_Lease]:
        await self._locks.acquire(key)
        lease = _Lease(self._locks, key)
        try:
            yield lease
        finally:
            if not lease.handed_off:
                self._locks.release(key)

    async def _evict(self, key: str, lease: _Lease) -> bool:
        # Caller holds the key lock
        entry = self.registry.remove(key)
        self.cache.discard(key)
        if entry is None:
            return False
        await self._call(
            "close", self.settings.connect_timeout, entry.connection.close, key=key, lease=lease
        )
        log.info("connection_closed", connection_key=key, owner_id=entry.owner_id)
        return True

    async def _disconnect_many(self, keys: list[str]) -> int:
        results = await asyncio.gather(*(self.disconnect(k) for k in keys), return_exceptions=True)
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                log.error("connection_close_failed", connection_key=key, error=str(result))
        return sum(1 for result in results if result is True)

    async def _call(
        self,
        operation: str,
        timeout: float,
        func: Callable[..., Any],
        *args: Any,
        key: str | None = None,
        lease: _Lease | None = None,
        on_late: Callable[[asyncio.Future], None] | None = None,
    ) -> Any:
        """Run a blocking call in the default executor under a deadline.

        A worker thread cannot be interrupted, so on timeout or cancellation the
        call keeps running: the key lock moves to the worker and is released
        when it finishes, and ``on_late`` receives the finished future.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, functools.partial(func, *args))
        try:
            done, _ = await asyncio.wait({future}, timeout=timeout)
        except asyncio.CancelledError:
            self._abandon(future, lease, on_late)
            raise
        if not done:
            self._abandon(future, lease, on_late)
            log.warning("operation_timed_out", operation=operation, connection_key=key, timeout=timeout)
            raise OperationTimeoutError(operation, timeout)
        return future.result()

    def _abandon(
        self,
        future: asyncio.Future,
        lease: _Lease | None,
        on_late: Callable[[asyncio.Future], None] | None,
    ) -> None:
        future.add_done_callback(on_late or _consume)
        if lease is not None:
            lease.hand_off(future)

    def _close_late(self, future: asyncio.Future) -> None:
        """Close a connection whose connect call finished after its deadline."""
        if future.cancelled() or future.exception() is not None:
            return
        connection: Connection = future.result()
        log.warning("late_connection_closed", engine_type=connection.engine_type.value)
        future.get_loop().run_in_executor(None, _close_quietly, connection)


def _consume(future: asyncio.Future) -> None:
    # Retrieve the outcome so abandoned failures are not reported as unhandled
    if not future.cancelled():
        future.exception()


def _close_quietly(connection: Connection) -> None:
    try:
        connection.close()
    except Exception as e:
        log.warning("connection_close_failed", engine_type=connection.engine_type.value, error=str(e))


def _summary(key: str, entry: RegistryEntry) -> ConnectionSummary:
    return ConnectionSummary(
        connection_key=key,
        owner_id=entry.owner_id,
        engine_type=entry.config.engine_type,
        database=entry.config.database,
        host=entry.config.host,
        port=entry.config.port,
        connection_name=entry.config.connection_name,
    )


def _connect_result(key: str, entry: RegistryEntry, reused: bool) -> ConnectResult:
    return ConnectResult(
        connection_key=key,
        engine_type=entry.config.engine_type,
        database=entry.config.database,
        connection_name=entry.config.connection_name,
        reused=reused,
    )
