"""Connection lifecycle routes."""

from fastapi import APIRouter, Depends

from .._config import Settings
from .._errors import connection_limit_exceeded
from .._manager import ConnectionManager
from .._models import (
    ConnectionConfig,
    ConnectionsResponse,
    ConnectionStatus,
    ConnectionTestResponse,
    DisconnectOwnerResponse,
    DisconnectResponse,
    success_envelope,
)
from ._dependencies import get_manager, get_owned_key, get_owner_id, get_settings, owns_key

router = APIRouter(prefix="/connections", tags=["connections"])


@router.post("/test")
async def test_connection(
    config: ConnectionConfig,
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """Open and immediately close a connection."""
    await manager.test_connection(config)
    return success_envelope(
        ConnectionTestResponse(success=True, engine_type=config.target().engine)
    )


@router.post("")
async def connect(
    config: ConnectionConfig,
    owner_id: str = Depends(get_owner_id),
    manager: ConnectionManager = Depends(get_manager),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Connect, or reuse the caller's live connection for the same target."""
    # Advisory: counted outside the key lock, so concurrent connects to different
    # keys can overshoot the limit.
    limit = settings.max_connections_per_owner
    if (
        limit is not None
        and not manager.has_connection(manager.key_for(owner_id, config))
        and manager.count_for_owner(owner_id) >= limit
    ):
        raise connection_limit_exceeded(owner_id, limit)

    result = await manager.connect(owner_id, config)
    return success_envelope(result)


@router.get("")
async def list_connections(
    owner_id: str = Depends(get_owner_id),
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """List the caller's live connections."""
    return success_envelope(ConnectionsResponse(connections=manager.list_connections(owner_id)))


@router.delete("")
async def disconnect_all(
    owner_id: str = Depends(get_owner_id),
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """Disconnect every connection the caller holds."""
    count = await manager.disconnect_owner(owner_id)
    return success_envelope(DisconnectOwnerResponse(owner_id=owner_id, count=count))


@router.get("/{connection_key}/status")
async def connection_status(
    connection_key: str,
    owner_id: str = Depends(get_owner_id),
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """Report whether a connection is live. Unknown keys are simply disconnected."""
    if not owns_key(manager, owner_id, connection_key):
        return success_envelope(
            ConnectionStatus(connected=False, message="Connection not found or expired")
        )
    return success_envelope(manager.status(connection_key))


@router.delete("/{connection_key}")
async def disconnect(
    connection_key: str = Depends(get_owned_key),
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """Close a connection. Succeeds even if it is already gone."""
    removed = await manager.disconnect(connection_key)
    return success_envelope(DisconnectResponse(connection_key=connection_key, disconnected=removed))
