"""Staff routes advancing orders through their lifecycle."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .core import Core
from .deps import get_core, role_required
from .domain import STAFF_ROLES, Actor, OrderStatus
from .utils.responses import ok

router = APIRouter(prefix="/api/orders", tags=["orders"])

staff_only = role_required(*sorted(STAFF_ROLES))


class StatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(default=None, max_length=500)


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: int,
    payload: StatusUpdate,
    actor: Actor = Depends(staff_only),
    core: Core = Depends(get_core),
) -> dict:
    record = await run_in_threadpool(
        core.state_machine.transition, order_id, payload.status, payload.note, actor
    )
    return ok(record.model_dump(mode="json"))


@router.post("/{order_id}/complete")
async def complete_order(
    order_id: int,
    actor: Actor = Depends(staff_only),
    core: Core = Depends(get_core),
) -> dict:
    """Mark an order completed; stock is deducted if it has not been yet."""

    record = await run_in_threadpool(core.state_machine.complete_order, order_id, actor)
    return ok(record.model_dump(mode="json"))


__all__ = ["router"]
