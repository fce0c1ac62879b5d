"""Customer and admin reward routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .core import Core
from .deps import get_actor, get_core, role_required
from .domain import ADMIN_ROLES, Actor
from .schemas import RewardType
from .utils.responses import ok

router = APIRouter(tags=["rewards"])

admin_only = role_required(*sorted(ADMIN_ROLES))


class ValidateCode(BaseModel):
    code: str = Field(min_length=1)
    subtotal: int = Field(default=0, ge=0)


class Redeem(BaseModel):
    order_id: int


class ManualGrant(BaseModel):
    user_id: str = Field(min_length=1)
    reward_type: RewardType
    reward_value: int
    validity_days: int = 30
    description: Optional[str] = Field(default=None, max_length=200)


@router.post("/api/rewards/validate")
async def validate_reward(
    payload: ValidateCode,
    actor: Actor = Depends(get_actor),
    core: Core = Depends(get_core),
) -> dict:
    reward = await run_in_threadpool(
        core.rewards.validate_reward_code, actor.id, payload.code
    )
    return ok(
        {
            "reward": reward.model_dump(mode="json"),
            "discount": core.rewards.discount_for(reward, payload.subtotal),
        }
    )


@router.post("/api/rewards/{reward_id}/redeem")
async def redeem_reward(
    reward_id: int,
    payload: Redeem,
    actor: Actor = Depends(get_actor),
    core: Core = Depends(get_core),
) -> dict:
    # admins may redeem on a customer's behalf
    owner = None if actor.is_admin else actor.id
    reward = await run_in_threadpool(
        lambda: core.rewards.redeem_reward(
            reward_id, payload.order_id, user_id=owner, actor=actor
        )
    )
    return ok(reward.model_dump(mode="json"))


@router.post("/api/admin/rewards")
async def grant_reward(
    payload: ManualGrant,
    actor: Actor = Depends(admin_only),
    core: Core = Depends(get_core),
) -> dict:
    reward = await run_in_threadpool(
        core.rewards.issue_manual_reward,
        payload.user_id,
        payload.reward_type,
        payload.reward_value,
        payload.validity_days,
        actor,
        payload.description,
    )
    return ok(reward.model_dump(mode="json"))


@router.post("/api/admin/rewards/expire-due")
async def expire_due_rewards(
    actor: Actor = Depends(admin_only), core: Core = Depends(get_core)
) -> dict:
    count = await run_in_threadpool(core.rewards.expire_due_rewards, actor)
    return ok({"expired": count})


@router.post("/api/admin/rewards/{reward_id}/expire")
async def expire_reward(
    reward_id: int,
    actor: Actor = Depends(admin_only),
    core: Core = Depends(get_core),
) -> dict:
    reward = await run_in_threadpool(core.rewards.expire_reward, reward_id, actor)
    return ok(reward.model_dump(mode="json"))


__all__ = ["router"]
