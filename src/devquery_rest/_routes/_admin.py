"""Operator routes, guarded by the admin token."""

from fastapi import APIRouter, Depends

from .._manager import ConnectionManager
from .._models import DisconnectOwnerResponse, SweepResponse, success_envelope
from .._sweeper import ExpirySweeper
from ._dependencies import get_manager, get_sweeper, require_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/connections/sweep")
async def sweep(sweeper: ExpirySweeper = Depends(get_sweeper)) -> dict:
    """Run one idle-eviction pass now."""
    evicted = await sweeper.run_once()
    return success_envelope(SweepResponse(evicted=evicted))


@router.delete("/owners/{owner_id}/connections")
async def force_logout(
    owner_id: str,
    manager: ConnectionManager = Depends(get_manager),
) -> dict:
    """Disconnect every connection held by an owner."""
    count = await manager.disconnect_owner(owner_id)
    return success_envelope(DisconnectOwnerResponse(owner_id=owner_id, count=count))
