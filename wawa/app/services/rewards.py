"""Reward issuance, redemption and discount calculation.

A qualifying spend is matched against the active reward rules; the rule with
the highest threshold wins and is then gated by its probability, so a
qualifying order may legitimately earn nothing. Reward codes are minted with
collision retries and at most one reward is ever issued per earning order or
tab (enforced by a unique column, not by a prior read).
"""

from __future__ import annotations

import logging
import random
import string
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session, sessionmaker

from ..audit import AuditLogSink
from ..db import unit_of_work
from ..domain import SYSTEM, Actor
from ..errors import (
    AlreadyRedeemed,
    CoreError,
    RewardExpired,
    RewardIssuanceFailure,
    RewardNotActive,
    RewardNotFound,
    ValidationFailure,
)
from ..repos_sqlalchemy import rewards_repo_sql as rewards_repo
from ..schemas import RewardRecord, RewardRuleRecord, RewardStatus, RewardType
from ..utils.clock import utcnow
from .notifications import REWARD_ISSUED, OutboxNotifier

logger = logging.getLogger("wawa.rewards")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def draw_rule(
    rules: Sequence[RewardRuleRecord], rng: random.Random
) -> Optional[RewardRuleRecord]:
    """Pick the highest-threshold rule and roll its probability.

    Exactly one uniform draw in ``[0, 1)`` is made per qualifying event; the
    reward is issued only when the draw is below the rule's probability.
    """

    if not rules:
        return None
    rule = max(rules, key=lambda r: r.spend_threshold)
    if rng.random() < rule.probability:
        return rule
    return None


def calculate_discount_amount(
    reward: RewardRecord, subtotal: int, points_conversion_rate: int = 100
) -> int:
    """Naira taken off ``subtotal`` by ``reward``; never more than ``subtotal``."""

    if subtotal <= 0:
        return 0
    value = reward.reward_value
    if reward.reward_type is RewardType.DISCOUNT_PERCENTAGE:
        # half-up rounding on whole Naira
        amount = (subtotal * value + 50) // 100
    elif reward.reward_type is RewardType.DISCOUNT_FIXED:
        amount = value
    elif reward.reward_type is RewardType.LOYALTY_POINTS:
        amount = value // points_conversion_rate
    else:
        # free items are applied on the line, not the subtotal
        amount = 0
    return max(0, min(amount, subtotal))


def describe(reward_type: RewardType, value: int) -> str:
    if reward_type is RewardType.DISCOUNT_PERCENTAGE:
        return f"{value}% off your next order"
    if reward_type is RewardType.DISCOUNT_FIXED:
        return f"₦{value:,} off your next order"
    if reward_type is RewardType.LOYALTY_POINTS:
        return f"{value} loyalty points"
    return "A free item on your next order"


class RewardEngine:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        notifier: OutboxNotifier,
        audit: AuditLogSink,
        rng: Optional[random.Random] = None,
        code_prefix: str = "RWD",
        code_attempts: int = 5,
        points_conversion_rate: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._audit = audit
        self._rng = rng or random.SystemRandom()
        self._code_prefix = code_prefix
        self._code_attempts = code_attempts
        self.points_conversion_rate = points_conversion_rate
        self._clock = clock

    def generate_code(self) -> str:
        suffix = "".join(self._rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
        return f"{self._code_prefix}-{suffix}"

    # -- issuance -------------------------------------------------------------

    def calculate_reward(
        self,
        user_id: str,
        order_id: Optional[int],
        spend_amount: int,
        *,
        tab_id: Optional[int] = None,
    ) -> Optional[RewardRecord]:
        """Maybe issue a reward for a paid order or tab.

        ``None`` is a normal outcome: no rule matched or the draw missed. A
        second call for the same order or tab returns the reward already
        issued for it without drawing again.
        """

        if (order_id is None) == (tab_id is None):
            raise ValidationFailure("a reward is earned from exactly one order or tab")
        if not user_id or spend_amount <= 0:
            return None
        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            existing = rewards_repo.reward_for_source(
                session, order_id=order_id, tab_id=tab_id
            )
            if existing is not None:
                return existing
            counts = rewards_repo.issued_counts_by_rule(session, user_id)
            rules = [
                rule
                for rule in rewards_repo.eligible_rules(session, spend_amount, now)
                if rule.max_redemptions_per_user is None
                or counts.get(rule.id, 0) < rule.max_redemptions_per_user
            ]
            rule = draw_rule(rules, self._rng)
            if rule is None:
                return None
            reward, fresh = self._mint(
                session,
                user_id=user_id,
                rule_id=rule.id,
                order_id=order_id,
                tab_id=tab_id,
                reward_type=rule.reward_type.value,
                reward_value=rule.reward_value,
                free_item_id=rule.free_item_id,
                description=describe(rule.reward_type, rule.reward_value),
                expires_at=now + timedelta(days=rule.validity_days),
                now=now,
            )
            if fresh:
                self._credit(session, reward, now)
        if fresh:
            self._announce(reward, SYSTEM, rule=rule.name)
        return reward

    def issue_best_effort(
        self,
        user_id: Optional[str],
        order_id: Optional[int],
        spend_amount: int,
        *,
        tab_id: Optional[int] = None,
    ) -> Optional[RewardRecord]:
        """Run :meth:`calculate_reward`, logging instead of raising."""

        if not user_id:
            return None
        try:
            return self.calculate_reward(user_id, order_id, spend_amount, tab_id=tab_id)
        except CoreError as exc:
            logger.exception(
                "reward issuance failed for order %s tab %s",
                order_id,
                tab_id,
                extra={"order_id": order_id, "tab_id": tab_id},
            )
            self._audit.log_event(
                SYSTEM,
                "reward.issuance_failed",
                "order" if order_id is not None else "tab",
                order_id if order_id is not None else tab_id,
                {"code": RewardIssuanceFailure.code, "cause": exc.code},
            )
            return None

    def issue_manual_reward(
        self,
        user_id: str,
        reward_type: RewardType,
        reward_value: int,
        validity_days: int,
        actor: Actor,
        description: Optional[str] = None,
    ) -> RewardRecord:
        """Admin grant outside of any rule or earning order."""

        reward_type = RewardType(reward_type)
        if reward_type is RewardType.FREE_ITEM:
            raise ValidationFailure("free-item rewards cannot be granted manually")
        if reward_value <= 0:
            raise ValidationFailure("reward value must be positive", reward_value=reward_value)
        if reward_type is RewardType.DISCOUNT_PERCENTAGE and reward_value > 100:
            raise ValidationFailure("percentage rewards cannot exceed 100")
        if not 1 <= validity_days <= 365:
            raise ValidationFailure(
                "validity must be between 1 and 365 days", validity_days=validity_days
            )
        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            reward, _ = self._mint(
                session,
                user_id=user_id,
                rule_id=None,
                order_id=None,
                tab_id=None,
                reward_type=reward_type.value,
                reward_value=reward_value,
                free_item_id=None,
                description=description or describe(reward_type, reward_value),
                expires_at=now + timedelta(days=validity_days),
                now=now,
            )
            self._credit(session, reward, now)
        self._announce(reward, actor, manual=True)
        return reward

    def _mint(self, session: Session, *, now: datetime, **fields) -> tuple[RewardRecord, bool]:
        """Insert a reward under a fresh code; ``(reward, False)`` if its source already has one."""

        for _ in range(self._code_attempts):
            code = self.generate_code()
            reward = rewards_repo.try_insert_reward(
                session, code=code, status=RewardStatus.ACTIVE.value, created_at=now, **fields
            )
            if reward is not None:
                return reward, True
            has_source = fields["order_id"] is not None or fields["tab_id"] is not None
            if has_source and not rewards_repo.code_exists(session, code):
                existing = rewards_repo.reward_for_source(
                    session, order_id=fields["order_id"], tab_id=fields["tab_id"]
                )
                if existing is not None:
                    return existing, False
            logger.warning("reward code %s collided; retrying", code)
        raise RewardIssuanceFailure(
            f"no unique reward code after {self._code_attempts} attempts"
        )

    @staticmethod
    def _credit(session: Session, reward: RewardRecord, now: datetime) -> None:
        rewards_repo.bump_rewards_earned(session, reward.user_id)
        if reward.reward_type is RewardType.LOYALTY_POINTS:
            rewards_repo.award_points(
                session,
                reward.user_id,
                reward.reward_value,
                now,
                order_id=reward.order_id,
                reward_id=reward.id,
                description=f"Earned {reward.reward_value} points from reward",
            )

    def _announce(self, reward: RewardRecord, actor: Actor, **details) -> None:
        payload = {
            "reward_id": reward.id,
            "code": reward.code,
            "user_id": reward.user_id,
            "reward_type": reward.reward_type.value,
            "reward_value": reward.reward_value,
            "expires_at": reward.expires_at.isoformat(),
        }
        self._notifier.notify(REWARD_ISSUED, payload)
        self._audit.log_event(
            actor,
            "reward.issued",
            "reward",
            reward.id,
            {**payload, "order_id": reward.order_id, "tab_id": reward.tab_id, **details},
        )
        logger.info(
            "issued reward %s", reward.code, extra={"order_id": reward.order_id}
        )

    # -- redemption and expiry ----------------------------------------------

    @staticmethod
    def _ensure_redeemable(reward: RewardRecord, now: datetime) -> None:
        if reward.status is RewardStatus.REDEEMED:
            raise AlreadyRedeemed(
                f"reward {reward.code} was already redeemed", reward_id=reward.id
            )
        if reward.status is RewardStatus.EXPIRED or now >= reward.expires_at:
            raise RewardExpired(f"reward {reward.code} has expired", reward_id=reward.id)
        if reward.status is not RewardStatus.ACTIVE:
            raise RewardNotActive(f"reward {reward.code} is not active", reward_id=reward.id)

    def redeem_reward(
        self,
        reward_id: int,
        order_id: int,
        *,
        user_id: Optional[str] = None,
        actor: Actor = SYSTEM,
    ) -> RewardRecord:
        """Spend an active, unexpired reward on ``order_id``; single use."""

        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            reward = rewards_repo.get_reward(session, reward_id)
            if user_id is not None and reward.user_id != user_id:
                raise RewardNotFound(f"reward {reward_id} not found", reward_id=reward_id)
            self._ensure_redeemable(reward, now)
            if not rewards_repo.mark_redeemed(session, reward_id, order_id, now):
                self._ensure_redeemable(rewards_repo.get_reward(session, reward_id), now)
                raise AlreadyRedeemed(f"reward {reward.code} was already redeemed")
            reward = rewards_repo.get_reward(session, reward_id)
        self._audit.log_event(
            actor, "reward.redeemed", "reward", reward_id, {"order_id": order_id}
        )
        return reward

    def validate_reward_code(self, user_id: str, code: str) -> RewardRecord:
        """Look up ``code`` for ``user_id`` and check it can still be spent."""

        with unit_of_work(self._session_factory) as session:
            reward = rewards_repo.get_reward_by_code(session, code.strip().upper())
        if reward is None or reward.user_id != user_id:
            raise RewardNotFound("invalid reward code", code=code)
        self._ensure_redeemable(reward, self._clock())
        return reward

    def expire_reward(self, reward_id: int, actor: Actor) -> RewardRecord:
        """Admin override: retire an active reward early."""

        with unit_of_work(self._session_factory) as session:
            reward = rewards_repo.get_reward(session, reward_id)
            if not rewards_repo.mark_expired(session, reward_id):
                raise RewardNotActive(
                    f"reward {reward.code} is {reward.status.value}", reward_id=reward_id
                )
            reward = rewards_repo.get_reward(session, reward_id)
        self._audit.log_event(actor, "reward.expired", "reward", reward_id)
        return reward

    def expire_due_rewards(self, actor: Actor = SYSTEM) -> int:
        """Scheduled sweep moving every lapsed active reward to ``expired``."""

        with unit_of_work(self._session_factory) as session:
            count = rewards_repo.expire_due(session, self._clock())
        if count:
            logger.info("expired %d rewards", count)
            self._audit.log_event(actor, "reward.expire_due", "reward", None, {"count": count})
        return count

    def discount_for(self, reward: RewardRecord, subtotal: int) -> int:
        return calculate_discount_amount(reward, subtotal, self.points_conversion_rate)


__all__ = [
    "RewardEngine",
    "draw_rule",
    "calculate_discount_amount",
    "describe",
    "CODE_ALPHABET",
]
