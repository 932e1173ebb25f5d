"""Tests for idle-connection eviction."""

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from devquery_rest import ConnectionManager, EngineType, ExpirySweeper

from conftest import FakeAdapter, pg_config, wait_until


def _age(manager: ConnectionManager, key: str, seconds: float) -> None:
    entry = manager.registry.lookup(key)
    entry.last_used_at = datetime.now(timezone.utc) - timedelta(seconds=seconds)


@pytest.mark.anyio
async def test_idle_entry_evicted_and_reported_disconnected(manager, fake_adapter):
    key = (await manager.connect("u1", pg_config())).connection_key
    _age(manager, key, 7200)
    sweeper = ExpirySweeper(manager, idle_timeout_seconds=3600)

    assert manager.status(key).connected is True
    assert await sweeper.run_once() == 1

    assert key not in manager.registry
    assert manager.status(key).connected is False
    assert fake_adapter.connections[0].closed


@pytest.mark.anyio
async def test_recent_entry_kept(manager):
    stale = (await manager.connect("u1", pg_config(database="stale"))).connection_key
    fresh = (await manager.connect("u1", pg_config(database="fresh"))).connection_key
    _age(manager, stale, 7200)
    _age(manager, fresh, 60)
    sweeper = ExpirySweeper(manager, idle_timeout_seconds=3600)

    assert await sweeper.run_once() == 1

    assert stale not in manager.registry
    assert fresh in manager.registry


@pytest.mark.anyio
async def test_run_once_uses_given_clock(manager):
    key = (await manager.connect("u1", pg_config())).connection_key
    sweeper = ExpirySweeper(manager, idle_timeout_seconds=3600)
    later = datetime.now(timezone.utc) + timedelta(hours=2)

    assert await sweeper.run_once(now=later) == 1
    assert key not in manager.registry


@pytest.mark.anyio
async def test_busy_key_skipped(settings):
    release = threading.Event()
    adapter = FakeAdapter(release=release)
    manager = ConnectionManager(adapters={EngineType.POSTGRESQL: adapter}, settings=settings)
    key = (await manager.connect("u1", pg_config())).connection_key
    sweeper = ExpirySweeper(manager, idle_timeout_seconds=3600)

    query = asyncio.create_task(manager.execute_query(key, "SELECT 1"))
    try:
        await wait_until(lambda: manager.is_busy(key))
        _age(manager, key, 7200)

        assert await sweeper.run_once() == 0
        assert key in manager.registry
    finally:
        release.set()
    await query


@pytest.mark.anyio
async def test_entry_failure_does_not_halt_sweep(settings):
    adapter = FakeAdapter(close_error=RuntimeError("close failed"))
    manager = ConnectionManager(adapters={EngineType.POSTGRESQL: adapter}, settings=settings)
    keys = [(await manager.connect("u1", pg_config(database=db))).connection_key for db in "ab"]
    for key in keys:
        _age(manager, key, 7200)
    sweeper = ExpirySweeper(manager, idle_timeout_seconds=3600)

    assert await sweeper.run_once() == 0

    # Both were removed even though closing raised
    assert len(manager.registry) == 0
    assert all(c.close_calls == 1 for c in adapter.connections)


@pytest.mark.anyio
async def test_background_task_sweeps(manager):
    key = (await manager.connect("u1", pg_config())).connection_key
    _age(manager, key, 7200)
    sweeper = ExpirySweeper(manager, interval_seconds=0.01, idle_timeout_seconds=3600)

    sweeper.start()
    assert sweeper.running
    try:
        await wait_until(lambda: key not in manager.registry)
    finally:
        await sweeper.stop()

    assert not sweeper.running


@pytest.mark.anyio
async def test_stop_without_start(manager):
    sweeper = ExpirySweeper(manager)
    await sweeper.stop()
    assert not sweeper.running
