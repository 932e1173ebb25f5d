"""Short-lived, secret-free cache of connection summaries."""

from __future__ import annotations

import time
from typing import Callable

from cachetools import TTLCache

from ._models import ConnectionSummary


class MetadataCache:
    """Time-bounded key -> :class:`ConnectionSummary` store.

    Used only for status display. A miss while the registry still holds the
    connection is not an error and never affects query execution.
    """

    def __init__(
        self,
        ttl_seconds: float = 1800,
        max_entries: int = 10_000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._cache: TTLCache[str, ConnectionSummary] = TTLCache(
            maxsize=max_entries, ttl=ttl_seconds, timer=timer
        )

    def put(self, key: str, summary: ConnectionSummary) -> None:
        self._cache[key] = summary

    def get(self, key: str) -> ConnectionSummary | None:
        return self._cache.get(key)

    def discard(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)
