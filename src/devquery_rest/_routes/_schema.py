"""Schema introspection route."""

from fastapi import APIRouter, Depends

from .._manager import ConnectionManager
from .._models import success_envelope
from ._dependencies import get_manager, get_owned_key

router = APIRouter(prefix="/connections/{connection_key}", tags=["schema"])


@router.get("/schema")
async def schema(
    connection_key: str = Depends(get_owned_key),
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """Return every table (or collection) with its columns."""
    return success_envelope(await manager.fetch_schema(connection_key))
