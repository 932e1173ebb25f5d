"""Tests for per-key locks."""

import asyncio

import pytest

from devquery_rest._locks import KeyedLocks


@pytest.mark.anyio
async def test_same_key_runs_in_arrival_order():
    locks = KeyedLocks()
    order: list[int] = []

    async def worker(n: int) -> None:
        async with locks.hold("k"):
            order.append(n)
            await asyncio.sleep(0.01)

    await asyncio.gather(*(worker(n) for n in range(5)))

    assert order == [0, 1, 2, 3, 4]


@pytest.mark.anyio
async def test_different_keys_do_not_contend():
    locks = KeyedLocks()
    inside = asyncio.Event()

    async def holder() -> None:
        async with locks.hold("a"):
            await inside.wait()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    assert locks.locked("a")

    async with locks.hold("b"):
        assert locks.locked("b")

    inside.set()
    await task


@pytest.mark.anyio
async def test_locks_dropped_when_unused():
    locks = KeyedLocks()

    async with locks.hold("k"):
        assert len(locks) == 1

    assert len(locks) == 0
    assert not locks.locked("k")


@pytest.mark.anyio
async def test_cancelled_waiter_does_not_leak():
    locks = KeyedLocks()
    await locks.acquire("k")

    waiter = asyncio.create_task(locks.acquire("k"))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    locks.release("k")
    assert len(locks) == 0
