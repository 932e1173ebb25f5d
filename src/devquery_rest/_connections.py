"""Connection registry: the single source of truth for live connections."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterator

from ._errors import DuplicateKeyError
from ._models import ConnectionConfig, ConnectionInfo, RedactedConfig

if TYPE_CHECKING:
    from ._adapters import Connection

KEY_DIGEST_LENGTH = 32


def connection_key(owner_id: str, config: ConnectionConfig) -> str:
    """Derive the deterministic key for an owner and configuration.

    Only non-secret fields are hashed, so the same owner connecting with the same
    engine, host, port, database and username always lands on the same key.
    """
    target = config.target()
    fingerprint = json.dumps(
        {
            "type": target.engine.value,
            "host": target.host,
            "port": target.port,
            "database": target.database,
            "username": target.username,
        },
        sort_keys=True,
    )
    digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:KEY_DIGEST_LENGTH]
    return f"{owner_id}_{digest}"


def key_owner(key: str) -> str | None:
    """Owner id encoded in a connection key, or None if the key is malformed.

    Owner ids may themselves contain underscores, so the digest is split off the
    right-hand end.
    """
    owner_id, sep, digest = key.rpartition("_")
    if not sep or not owner_id or len(digest) != KEY_DIGEST_LENGTH:
        return None
    return owner_id


class RegistryEntry:
    """A live connection and its lifecycle metadata."""

    def __init__(self, owner_id: str, config: RedactedConfig, connection: Connection):
        self.owner_id = owner_id
        self.config = config
        self.connection = connection
        self.created_at = datetime.now(timezone.utc)
        self.last_used_at = self.created_at

    def touch(self, now: datetime | None = None) -> None:
        """Update last-used time. Never moves backwards."""
        now = now or datetime.now(timezone.utc)
        if now > self.last_used_at:
            self.last_used_at = now

    def idle_for(self, now: datetime | None = None) -> timedelta:
        return (now or datetime.now(timezone.utc)) - self.last_used_at

    def is_expired(self, timeout: timedelta, now: datetime | None = None) -> bool:
        """Check if the entry has been idle longer than ``timeout``."""
        return self.idle_for(now) > timeout

    def info(self, key: str) -> ConnectionInfo:
        return ConnectionInfo(
            connection_key=key,
            owner_id=self.owner_id,
            engine_type=self.config.engine_type,
            database=self.config.database,
            host=self.config.host,
            port=self.config.port,
            connection_name=self.config.connection_name,
            created_at=self.created_at,
            last_used_at=self.last_used_at,
        )

    def to_dict(self) -> dict:
        """Log-safe serialization. Contains no credentials."""
        return {
            "owner_id": self.owner_id,
            "config": self.config.model_dump(mode="json"),
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
        }


class ConnectionRegistry:
    """In-memory map of connection key to :class:`RegistryEntry`.

    The registry never opens or closes connections; callers do. It is confined to
    the event loop that owns the connection manager.
    """

    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}

    def lookup(self, key: str) -> RegistryEntry | None:
        return self._entries.get(key)

    def insert(self, key: str, entry: RegistryEntry) -> None:
        """Register a new entry.

        Raises:
            DuplicateKeyError: If a live entry already exists for ``key``.
        """
        if key in self._entries:
            raise DuplicateKeyError(key)
        self._entries[key] = entry

    def touch(self, key: str) -> None:
        """Refresh last-used time; no-op for unknown keys."""
        entry = self._entries.get(key)
        if entry is not None:
            entry.touch()

    def remove(self, key: str) -> RegistryEntry | None:
        """Remove and return an entry without closing it."""
        return self._entries.pop(key, None)

    def list_by_owner(self, owner_id: str) -> list[tuple[str, RegistryEntry]]:
        return [(key, entry) for key, entry in self._entries.items() if entry.owner_id == owner_id]

    def all_entries(self) -> list[tuple[str, RegistryEntry]]:
        """Snapshot of every entry, safe to iterate while the registry changes."""
        return list(self._entries.items())

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
