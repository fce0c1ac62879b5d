"""SQLAlchemy-backed helpers for reward rules, rewards and loyalty points."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import RewardNotFound
from ..models import LoyaltyAccount, PointsTransaction, Reward, RewardRule
from ..schemas import RewardRecord, RewardRuleRecord, RewardStatus


def eligible_rules(
    session: Session, spend_amount: int, now: datetime
) -> list[RewardRuleRecord]:
    """Active rules whose threshold ``spend_amount`` meets, highest first."""

    rows = session.scalars(
        select(RewardRule)
        .where(
            RewardRule.is_active.is_(True),
            RewardRule.spend_threshold <= spend_amount,
            or_(RewardRule.start_date.is_(None), RewardRule.start_date <= now),
            or_(RewardRule.end_date.is_(None), RewardRule.end_date >= now),
        )
        .order_by(RewardRule.spend_threshold.desc(), RewardRule.id)
    )
    return [RewardRuleRecord.model_validate(row) for row in rows]


def issued_counts_by_rule(session: Session, user_id: str) -> dict[int, int]:
    """Count a customer's active and redeemed rewards per rule."""

    rows = session.execute(
        select(Reward.rule_id, func.count(Reward.id))
        .where(
            Reward.user_id == user_id,
            Reward.rule_id.is_not(None),
            Reward.status.in_([RewardStatus.ACTIVE.value, RewardStatus.REDEEMED.value]),
        )
        .group_by(Reward.rule_id)
    )
    return {rule_id: count for rule_id, count in rows}


def reward_for_source(
    session: Session, *, order_id: int | None = None, tab_id: int | None = None
) -> RewardRecord | None:
    column = Reward.order_id if order_id is not None else Reward.tab_id
    source = order_id if order_id is not None else tab_id
    row = session.scalar(select(Reward).where(column == source))
    return RewardRecord.model_validate(row) if row is not None else None


def code_exists(session: Session, code: str) -> bool:
    return session.scalar(select(Reward.id).where(Reward.code == code)) is not None


def try_insert_reward(session: Session, **fields) -> RewardRecord | None:
    """Insert a reward inside a savepoint; ``None`` on a unique-key clash.

    The clash may be on ``code`` (caller retries with a new code) or on the
    earning order/tab (a reward was already issued for it).
    """

    reward = Reward(**fields)
    try:
        with session.begin_nested():
            session.add(reward)
            session.flush()
    except IntegrityError:
        return None
    return RewardRecord.model_validate(reward)


def get_reward(session: Session, reward_id: int) -> RewardRecord:
    row = session.scalar(
        select(Reward)
        .where(Reward.id == reward_id)
        .execution_options(populate_existing=True)
    )
    if row is None:
        raise RewardNotFound(f"reward {reward_id} not found", reward_id=reward_id)
    return RewardRecord.model_validate(row)


def get_reward_by_code(session: Session, code: str) -> RewardRecord | None:
    row = session.scalar(select(Reward).where(Reward.code == code))
    return RewardRecord.model_validate(row) if row is not None else None


def mark_redeemed(
    session: Session, reward_id: int, order_id: int, now: datetime
) -> bool:
    """``active`` to ``redeemed`` if still active and unexpired; one winner."""

    result = session.execute(
        update(Reward)
        .where(
            Reward.id == reward_id,
            Reward.status == RewardStatus.ACTIVE.value,
            Reward.expires_at > now,
        )
        .values(
            status=RewardStatus.REDEEMED.value,
            redeemed_at=now,
            redeemed_in_order_id=order_id,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_expired(session: Session, reward_id: int) -> bool:
    result = session.execute(
        update(Reward)
        .where(Reward.id == reward_id, Reward.status == RewardStatus.ACTIVE.value)
        .values(status=RewardStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def expire_due(session: Session, now: datetime) -> int:
    result = session.execute(
        update(Reward)
        .where(Reward.status == RewardStatus.ACTIVE.value, Reward.expires_at <= now)
        .values(status=RewardStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def _ensure_account(session: Session, user_id: str) -> None:
    if session.get(LoyaltyAccount, user_id) is None:
        try:
            with session.begin_nested():
                session.add(LoyaltyAccount(user_id=user_id))
                session.flush()
        except IntegrityError:
            pass  # created concurrently


def bump_rewards_earned(session: Session, user_id: str) -> None:
    _ensure_account(session, user_id)
    session.execute(
        update(LoyaltyAccount)
        .where(LoyaltyAccount.user_id == user_id)
        .values(rewards_earned=LoyaltyAccount.rewards_earned + 1)
        .execution_options(synchronize_session=False)
    )


def award_points(
    session: Session,
    user_id: str,
    amount: int,
    now: datetime,
    *,
    order_id: int | None = None,
    reward_id: int | None = None,
    description: str | None = None,
) -> int:
    """Credit ``amount`` points and ledger it; return the new balance."""

    _ensure_account(session, user_id)
    session.execute(
        update(LoyaltyAccount)
        .where(LoyaltyAccount.user_id == user_id)
        .values(
            points_balance=LoyaltyAccount.points_balance + amount,
            total_points_earned=LoyaltyAccount.total_points_earned + amount,
        )
        .execution_options(synchronize_session=False)
    )
    balance = session.scalar(
        select(LoyaltyAccount.points_balance).where(LoyaltyAccount.user_id == user_id)
    )
    session.add(
        PointsTransaction(
            user_id=user_id,
            type="earned",
            amount=amount,
            order_id=order_id,
            reward_id=reward_id,
            description=description or f"Earned {amount} points",
            balance_after=balance,
            created_at=now,
        )
    )
    session.flush()
    return balance


__all__ = [
    "eligible_rules",
    "issued_counts_by_rule",
    "reward_for_source",
    "code_exists",
    "try_insert_reward",
    "get_reward",
    "get_reward_by_code",
    "mark_redeemed",
    "mark_expired",
    "expire_due",
    "bump_rewards_earned",
    "award_points",
]
