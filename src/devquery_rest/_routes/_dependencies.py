"""Shared FastAPI dependencies for routes."""

import secrets

from fastapi import Depends, Header

from .._config import Settings
from .._connections import key_owner
from .._errors import ConnectionNotFoundError, admin_forbidden
from .._manager import ConnectionManager
from .._sweeper import ExpirySweeper

ANONYMOUS_OWNER = "anonymous"


def get_manager() -> ConnectionManager:
    """Dependency placeholder, overridden by the app factory."""
    raise RuntimeError("ConnectionManager not initialized")


def get_settings() -> Settings:
    """Dependency placeholder, overridden by the app factory."""
    raise RuntimeError("Settings not initialized")


def get_sweeper() -> ExpirySweeper:
    """Dependency placeholder, overridden by the app factory."""
    raise RuntimeError("ExpirySweeper not initialized")


def get_owner_id(x_user_id: str | None = Header(default=None)) -> str:
    """Owner identity, set upstream by the authenticating proxy."""
    owner_id = (x_user_id or "").strip()
    return owner_id or ANONYMOUS_OWNER


def owns_key(manager: ConnectionManager, owner_id: str, connection_key: str) -> bool:
    """True if the key was issued to ``owner_id`` and, when live, is held by it."""
    if key_owner(connection_key) != owner_id:
        return False
    entry = manager.registry.lookup(connection_key)
    return entry is None or entry.owner_id == owner_id


def get_owned_key(
    connection_key: str,
    owner_id: str = Depends(get_owner_id),
    manager: ConnectionManager = Depends(get_manager),
) -> str:
    """Path key, 404 if it belongs to another owner."""
    if not owns_key(manager, owner_id, connection_key):
        raise ConnectionNotFoundError(connection_key)
    return connection_key


def require_admin(
    x_admin_token: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject admin calls unless the configured token is presented."""
    expected = settings.admin_token
    if expected is None or x_admin_token is None:
        raise admin_forbidden()
    if not secrets.compare_digest(x_admin_token.encode(), expected.get_secret_value().encode()):
        raise admin_forbidden()
