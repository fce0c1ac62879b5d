"""Shared fixtures: an in-memory ledger and a fully wired core per test."""

import pathlib
import random
import sys
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from config import get_settings  # noqa: E402
from wawa.app.core import build_core  # noqa: E402
from wawa.app.db import create_test_session  # noqa: E402
from wawa.app.events import EventBus  # noqa: E402
from wawa.app.main import create_app  # noqa: E402
from wawa.app.models import AlertRule, AuditLog, MenuItem, RewardRule  # noqa: E402
from wawa.app.services.checkout import Customer, NewLine  # noqa: E402
from wawa.tests._support import CHAPMAN, JOLLOF, SUYA, FixedClock  # noqa: E402


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def ledger():
    session_factory, engine = create_test_session()
    yield session_factory
    engine.dispose()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def core(ledger, bus, clock, settings):
    """Core over a menu of tracked jollof, untracked chapman and recordless suya."""

    with ledger() as session:
        session.add_all(
            [
                MenuItem(id=JOLLOF, name="Jollof Rice", price=2500, track_inventory=False),
                MenuItem(id=CHAPMAN, name="Chapman", price=1500, track_inventory=False),
                MenuItem(id=SUYA, name="Beef Suya", price=3000, track_inventory=True),
            ]
        )
        session.commit()
    wired = build_core(ledger, settings, live_updates=bus, rng=random.Random(1234), clock=clock)
    wired.inventory.create_inventory_record(JOLLOF, opening_stock=10, minimum_stock=2)
    return wired


@pytest.fixture
def make_order(core):
    def _make(
        quantity: int = 2,
        *,
        user_id: str | None = "user-1",
        menu_item_id: int = JOLLOF,
        price: int = 2500,
        extra_lines: tuple = (),
    ):
        lines = [
            NewLine(menu_item_id=menu_item_id, name="Jollof Rice", price=price, quantity=quantity),
            *extra_lines,
        ]
        customer = (
            Customer(user_id=user_id)
            if user_id
            else Customer(email="guest@example.com", name="Ada")
        )
        return core.checkout.create_order(lines, customer)

    return _make


@pytest.fixture
def add_rule(ledger):
    def _add(**fields):
        values = {
            "name": "Spend and win",
            "is_active": True,
            "spend_threshold": 3000,
            "reward_type": "loyalty-points",
            "reward_value": 500,
            "probability": 1.0,
            "validity_days": 30,
        }
        values.update(fields)
        with ledger() as session:
            rule = RewardRule(**values)
            session.add(rule)
            session.commit()
            return rule.id

    return _add


@pytest.fixture
def alert_rule(ledger):
    def _add(event: str, channel: str = "email", target: str = "ops@example.com"):
        with ledger() as session:
            session.add(AlertRule(event=event, channel=channel, target=target))
            session.commit()

    return _add


@pytest.fixture
def audit_actions(ledger):
    def _actions() -> list[str]:
        with ledger() as session:
            return [row.action for row in session.query(AuditLog).order_by(AuditLog.id)]

    return _actions


@pytest.fixture
def client(core):
    return TestClient(create_app(core), raise_server_exceptions=False)
