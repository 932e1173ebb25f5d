"""Query execution route."""

from fastapi import APIRouter, Depends

from .._manager import ConnectionManager
from .._models import QueryRequest, success_envelope
from ._dependencies import get_manager, get_owned_key

router = APIRouter(prefix="/connections/{connection_key}", tags=["query"])


@router.post("/query")
async def query(
    body: QueryRequest,
    connection_key: str = Depends(get_owned_key),
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """Execute a statement (or a document-store operation) on a live connection."""
    result = await manager.execute_query(
        connection_key, body.query, body.params, row_limit=body.limit
    )
    return success_envelope(result)
