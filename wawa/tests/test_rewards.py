import itertools
import random
import re
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from wawa.app.errors import (
    AlreadyRedeemed,
    RewardExpired,
    RewardIssuanceFailure,
    RewardNotActive,
    RewardNotFound,
    ValidationFailure,
)
from wawa.app.models import LoyaltyAccount, NotificationOutbox, PointsTransaction
from wawa.app.schemas import RewardRecord, RewardRuleRecord, RewardStatus, RewardType
from wawa.app.services.notifications import REWARD_ISSUED
from wawa.app.services.rewards import calculate_discount_amount, draw_rule
from wawa.tests._support import ADMIN

START = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


def _rule(**fields):
    values = {
        "id": 1,
        "name": "Lucky draw",
        "is_active": True,
        "spend_threshold": 0,
        "reward_type": "loyalty-points",
        "reward_value": 10,
        "probability": 0.3,
        "validity_days": 30,
    }
    values.update(fields)
    return RewardRuleRecord(**values)


def _reward(reward_type, value):
    return RewardRecord(
        id=1,
        code="RWD-TEST0001",
        user_id="user-1",
        reward_type=reward_type,
        reward_value=value,
        status="active",
        expires_at=START + timedelta(days=30),
        created_at=START,
    )


def test_draw_converges_to_probability():
    rng = random.Random(20250314)
    rule = _rule(probability=0.3)
    hits = sum(draw_rule([rule], rng) is not None for _ in range(100_000))
    assert abs(hits / 100_000 - 0.3) < 0.006


def test_draw_edges():
    rng = random.Random(1)
    assert draw_rule([], rng) is None
    assert all(draw_rule([_rule(probability=1.0)], rng) for _ in range(1000))
    assert not any(draw_rule([_rule(probability=0.0)], rng) for _ in range(1000))


def test_draw_uses_highest_threshold_rule():
    low = _rule(id=1, spend_threshold=1000, probability=1.0)
    high = _rule(id=2, spend_threshold=3000, probability=1.0)
    assert draw_rule([low, high], random.Random(3)) is high


def test_loyalty_reward_for_qualifying_order(core, make_order, add_rule, ledger):
    rule_id = add_rule(spend_threshold=3000, reward_type="loyalty-points", reward_value=500)
    order = make_order(2)

    reward = core.rewards.calculate_reward("user-1", order.id, order.total)

    assert re.fullmatch(r"RWD-[A-Z0-9]{8}", reward.code)
    assert reward.rule_id == rule_id
    assert reward.status is RewardStatus.ACTIVE
    assert reward.reward_type is RewardType.LOYALTY_POINTS
    assert reward.reward_value == 500
    assert reward.expires_at == START + timedelta(days=30)
    with ledger() as session:
        account = session.get(LoyaltyAccount, "user-1")
        entry = session.scalars(select(PointsTransaction)).one()
    assert (account.points_balance, account.rewards_earned) == (500, 1)
    assert entry.description == "Earned 500 points from reward"
    assert entry.balance_after == 500


def test_second_call_returns_the_same_reward(core, make_order, add_rule, ledger):
    add_rule()
    order = make_order(2)
    first = core.rewards.calculate_reward("user-1", order.id, 5000)
    again = core.rewards.calculate_reward("user-1", order.id, 5000)

    assert again.id == first.id
    with ledger() as session:
        assert session.get(LoyaltyAccount, "user-1").points_balance == 500


def test_highest_threshold_rule_wins(core, make_order, add_rule):
    add_rule(spend_threshold=1000, reward_type="discount-fixed", reward_value=200)
    add_rule(spend_threshold=3000, reward_type="discount-percentage", reward_value=10)

    big = core.rewards.calculate_reward("user-1", make_order(2).id, 5000)
    small = core.rewards.calculate_reward("user-1", make_order(1, price=2000).id, 2000)

    assert (big.reward_type, big.reward_value) == (RewardType.DISCOUNT_PERCENTAGE, 10)
    assert (small.reward_type, small.reward_value) == (RewardType.DISCOUNT_FIXED, 200)


@pytest.mark.parametrize(
    "rule",
    [
        {"probability": 0.0},
        {"spend_threshold": 9000},
        {"is_active": False},
        {"end_date": datetime(2025, 3, 1, tzinfo=timezone.utc)},
        {"start_date": datetime(2025, 4, 1, tzinfo=timezone.utc)},
    ],
)
def test_no_reward_when_rule_does_not_apply(core, make_order, add_rule, rule):
    add_rule(**rule)
    assert core.rewards.calculate_reward("user-1", make_order(2).id, 5000) is None


def test_guests_and_empty_spend_earn_nothing(core, make_order, add_rule):
    add_rule()
    order = make_order(2)
    assert core.rewards.calculate_reward("", order.id, 5000) is None
    assert core.rewards.calculate_reward("user-1", order.id, 0) is None


def test_exactly_one_source_required(core):
    with pytest.raises(ValidationFailure):
        core.rewards.calculate_reward("user-1", None, 5000)
    with pytest.raises(ValidationFailure):
        core.rewards.calculate_reward("user-1", 1, 5000, tab_id=1)


def test_max_per_user_caps_issuance(core, make_order, add_rule):
    add_rule(max_redemptions_per_user=1)
    assert core.rewards.calculate_reward("user-1", make_order(2).id, 5000)
    assert core.rewards.calculate_reward("user-1", make_order(2).id, 5000) is None
    other = make_order(2, user_id="user-2")
    assert core.rewards.calculate_reward("user-2", other.id, 5000)


def test_code_collision_is_retried(core, make_order, add_rule, monkeypatch):
    add_rule()
    codes = iter(["RWD-AAAAAAAA", "RWD-AAAAAAAA", "RWD-BBBBBBBB"])
    monkeypatch.setattr(core.rewards, "generate_code", lambda: next(codes))

    manual = core.rewards.issue_manual_reward(
        "user-2", RewardType.DISCOUNT_FIXED, 1000, 7, ADMIN
    )
    earned = core.rewards.calculate_reward("user-1", make_order(2).id, 5000)

    assert manual.code == "RWD-AAAAAAAA"
    assert earned.code == "RWD-BBBBBBBB"


def test_issuance_failure_is_contained(core, make_order, add_rule, monkeypatch, audit_actions):
    add_rule()
    taken = core.rewards.issue_manual_reward(
        "user-2", RewardType.DISCOUNT_FIXED, 1000, 7, ADMIN
    )
    monkeypatch.setattr(core.rewards, "generate_code", itertools.repeat(taken.code).__next__)
    order = make_order(2)

    with pytest.raises(RewardIssuanceFailure):
        core.rewards.calculate_reward("user-1", order.id, 5000)
    assert core.rewards.issue_best_effort("user-1", order.id, 5000) is None
    assert "reward.issuance_failed" in audit_actions()


def test_issuance_queues_notification(core, make_order, add_rule, alert_rule, ledger):
    add_rule()
    alert_rule(REWARD_ISSUED, channel="whatsapp", target="+2348000000000")
    reward = core.rewards.calculate_reward("user-1", make_order(2).id, 5000)

    with ledger() as session:
        row = session.scalars(select(NotificationOutbox)).one()
    assert row.event == REWARD_ISSUED
    assert row.payload["code"] == reward.code


def test_tab_can_earn_a_reward(core, add_rule):
    add_rule()
    tab = core.checkout.create_tab("4")
    reward = core.rewards.calculate_reward("user-1", None, 8000, tab_id=tab.id)
    assert reward.tab_id == tab.id
    assert reward.order_id is None


def test_redeem_is_single_use(core, make_order, audit_actions):
    reward = core.rewards.issue_manual_reward(
        "user-1", RewardType.DISCOUNT_FIXED, 1000, 7, ADMIN
    )
    order = make_order(2)

    redeemed = core.rewards.redeem_reward(reward.id, order.id, user_id="user-1")

    assert redeemed.status is RewardStatus.REDEEMED
    assert redeemed.redeemed_in_order_id == order.id
    assert redeemed.redeemed_at == START
    with pytest.raises(AlreadyRedeemed):
        core.rewards.redeem_reward(reward.id, order.id, user_id="user-1")
    assert audit_actions().count("reward.redeemed") == 1


def test_redeem_rejects_expired_reward(core, make_order, clock):
    reward = core.rewards.issue_manual_reward(
        "user-1", RewardType.DISCOUNT_PERCENTAGE, 10, 1, ADMIN
    )
    order = make_order(2)
    clock.advance(days=1)

    with pytest.raises(RewardExpired):
        core.rewards.redeem_reward(reward.id, order.id)
    assert core.rewards.expire_due_rewards() == 1
    with pytest.raises(RewardExpired):
        core.rewards.redeem_reward(reward.id, order.id)


def test_redeem_checks_owner(core, make_order):
    reward = core.rewards.issue_manual_reward(
        "user-1", RewardType.DISCOUNT_FIXED, 1000, 7, ADMIN
    )
    with pytest.raises(RewardNotFound):
        core.rewards.redeem_reward(reward.id, make_order(2).id, user_id="user-2")
    with pytest.raises(RewardNotFound):
        core.rewards.redeem_reward(999, 1)


def test_validate_reward_code(core):
    reward = core.rewards.issue_manual_reward(
        "user-1", RewardType.DISCOUNT_FIXED, 1000, 7, ADMIN
    )
    found = core.rewards.validate_reward_code("user-1", f"  {reward.code.lower()} ")
    assert found.id == reward.id
    with pytest.raises(RewardNotFound):
        core.rewards.validate_reward_code("user-2", reward.code)
    with pytest.raises(RewardNotFound):
        core.rewards.validate_reward_code("user-1", "RWD-NOPE0000")


def test_admin_can_expire_reward_once(core):
    reward = core.rewards.issue_manual_reward(
        "user-1", RewardType.DISCOUNT_FIXED, 1000, 7, ADMIN
    )
    assert core.rewards.expire_reward(reward.id, ADMIN).status is RewardStatus.EXPIRED
    with pytest.raises(RewardNotActive):
        core.rewards.expire_reward(reward.id, ADMIN)


def test_manual_loyalty_grant_credits_points(core, ledger):
    core.rewards.issue_manual_reward("user-7", RewardType.LOYALTY_POINTS, 250, 30, ADMIN)
    with ledger() as session:
        assert session.get(LoyaltyAccount, "user-7").points_balance == 250


@pytest.mark.parametrize(
    "reward_type,value,days",
    [
        (RewardType.FREE_ITEM, 1, 7),
        (RewardType.DISCOUNT_FIXED, 0, 7),
        (RewardType.DISCOUNT_PERCENTAGE, 150, 7),
        (RewardType.DISCOUNT_FIXED, 500, 0),
        (RewardType.DISCOUNT_FIXED, 500, 400),
    ],
)
def test_manual_grant_validation(core, reward_type, value, days):
    with pytest.raises(ValidationFailure):
        core.rewards.issue_manual_reward("user-1", reward_type, value, days, ADMIN)


@pytest.mark.parametrize(
    "reward_type,value,subtotal,expected",
    [
        (RewardType.DISCOUNT_PERCENTAGE, 10, 5000, 500),
        (RewardType.DISCOUNT_PERCENTAGE, 15, 999, 150),
        (RewardType.DISCOUNT_PERCENTAGE, 100, 800, 800),
        (RewardType.DISCOUNT_FIXED, 1000, 5000, 1000),
        (RewardType.DISCOUNT_FIXED, 1000, 600, 600),
        (RewardType.LOYALTY_POINTS, 500, 5000, 5),
        (RewardType.FREE_ITEM, 1, 5000, 0),
        (RewardType.DISCOUNT_FIXED, 1000, 0, 0),
    ],
)
def test_discount_amount(reward_type, value, subtotal, expected):
    assert calculate_discount_amount(_reward(reward_type, value), subtotal) == expected


def test_points_conversion_rate_is_configurable():
    reward = _reward(RewardType.LOYALTY_POINTS, 500)
    assert calculate_discount_amount(reward, 5000, points_conversion_rate=50) == 10
