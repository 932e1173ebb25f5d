"""Background eviction of idle connections."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta

import structlog

from ._manager import ConnectionManager

log = structlog.get_logger(__name__)


class ExpirySweeper:
    """Periodically disconnects entries idle longer than the session timeout.

    Each pass snapshots the registry and handles one entry at a time, so no
    lock is held across the scan. Keys that are currently locked are in use and
    are skipped.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        interval_seconds: float = 300,
        idle_timeout_seconds: float = 3600,
    ):
        self.manager = manager
        self.interval_seconds = interval_seconds
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> int:
        """Run one sweep and return the number of evicted connections."""
        evicted = 0
        for key, entry in self.manager.registry.all_entries():
            if self.manager.is_busy(key) or not entry.is_expired(self.idle_timeout, now):
                continue
            try:
                if await self.manager.expire(key, self.idle_timeout, now):
                    evicted += 1
            except Exception as e:
                log.error("sweep_entry_failed", connection_key=key, error=str(e))

        log.info("sweep_completed", evicted=evicted, remaining=len(self.manager.registry))
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                log.exception("sweep_failed")

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())
            log.info("sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.info("sweeper_stopped")
