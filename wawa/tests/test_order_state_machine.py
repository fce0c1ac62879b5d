import pytest

from wawa.app.domain import (
    OrderStatus,
    TabStatus,
    can_transition,
    can_transition_tab,
    is_terminal,
)
from wawa.app.errors import EntityNotFound, InvalidTransition, PersistenceFailure
from wawa.app.events import ORDER_CANCELLED, ORDER_UPDATED
from wawa.app.repos_sqlalchemy import orders_repo_sql
from wawa.app.services.checkout import Customer
from wawa.app.services.state_machine import default_note
from wawa.tests._support import ADMIN, JOLLOF, KITCHEN


@pytest.mark.parametrize(
    "src,dst,allowed",
    [
        (OrderStatus.PENDING, OrderStatus.CONFIRMED, True),
        (OrderStatus.PENDING, OrderStatus.PREPARING, True),
        (OrderStatus.PENDING, OrderStatus.READY, False),
        (OrderStatus.CONFIRMED, OrderStatus.PREPARING, True),
        (OrderStatus.PREPARING, OrderStatus.CONFIRMED, False),
        (OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY, True),
        (OrderStatus.READY, OrderStatus.COMPLETED, True),
        (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, True),
        (OrderStatus.DELIVERED, OrderStatus.COMPLETED, True),
        (OrderStatus.DELIVERED, OrderStatus.CANCELLED, True),
        (OrderStatus.COMPLETED, OrderStatus.CANCELLED, False),
        (OrderStatus.CANCELLED, OrderStatus.PENDING, False),
    ],
)
def test_order_transition_table(src, dst, allowed):
    assert can_transition(src, dst) is allowed


def test_terminal_states():
    assert is_terminal(OrderStatus.COMPLETED)
    assert is_terminal(OrderStatus.CANCELLED)
    assert not is_terminal(OrderStatus.READY)


def test_tab_transition_table():
    assert can_transition_tab(TabStatus.OPEN, TabStatus.SETTLING)
    assert can_transition_tab(TabStatus.SETTLING, TabStatus.OPEN)
    assert can_transition_tab(TabStatus.SETTLING, TabStatus.CLOSED)
    assert not can_transition_tab(TabStatus.CLOSED, TabStatus.OPEN)


def test_default_note_uses_role():
    assert default_note("completed", ADMIN) == "Completed by admin"
    assert default_note("out-for-delivery", KITCHEN) == "Out for delivery by kitchen-staff"


def test_walks_full_lifecycle_and_keeps_history(core, make_order):
    order = make_order()
    sm = core.state_machine
    for target in ("confirmed", "preparing", "ready", "completed"):
        order = sm.transition(order.id, target, actor=KITCHEN)

    assert order.status is OrderStatus.COMPLETED
    assert [h.status for h in order.status_history] == [
        "pending",
        "confirmed",
        "preparing",
        "ready",
        "completed",
    ]
    assert order.status_history[-1].note == "Completed by kitchen-staff"
    assert order.status_history[-1].actor == "kitchen-1"


def test_explicit_note_is_kept(core, make_order):
    order = make_order()
    order = core.state_machine.transition(order.id, "cancelled", "Customer left", ADMIN)
    assert order.status_history[-1].note == "Customer left"


def test_illegal_transition_changes_nothing(core, make_order, bus):
    order = make_order()
    emitted = len(bus.history)
    with pytest.raises(InvalidTransition) as exc:
        core.state_machine.transition(order.id, "ready")
    assert exc.value.details == {"src": "pending", "dst": "ready"}
    reloaded = core.state_machine.reload("order", order.id)
    assert reloaded.status is OrderStatus.PENDING
    assert len(reloaded.status_history) == 1
    assert len(bus.history) == emitted


def test_unknown_status_is_invalid_transition(core, make_order):
    order = make_order()
    with pytest.raises(InvalidTransition):
        core.state_machine.transition(order.id, "teleported")


def test_terminal_order_cannot_be_cancelled(core, make_order):
    order = make_order()
    for target in ("preparing", "ready", "completed"):
        core.state_machine.transition(order.id, target)
    with pytest.raises(InvalidTransition):
        core.state_machine.transition(order.id, "cancelled")


def test_same_status_is_a_noop(core, make_order, bus, audit_actions):
    order = make_order()
    core.state_machine.transition(order.id, "confirmed")
    emitted = len(bus.history)
    audits = len(audit_actions())

    again = core.state_machine.transition(order.id, "confirmed")

    assert again.status is OrderStatus.CONFIRMED
    assert len(again.status_history) == 2
    assert len(bus.history) == emitted
    assert len(audit_actions()) == audits


def test_missing_order_raises_not_found(core):
    with pytest.raises(EntityNotFound):
        core.state_machine.transition(999, "confirmed")


def test_transition_broadcasts_and_audits(core, make_order, bus, audit_actions):
    order = make_order()
    core.state_machine.transition(order.id, "confirmed", actor=KITCHEN)
    core.state_machine.transition(order.id, "cancelled", actor=ADMIN)

    topics = bus.topics()
    assert topics[-2:] == [ORDER_UPDATED, ORDER_CANCELLED]
    payload = bus.history[-1][1]
    assert payload["previous_status"] == "confirmed"
    assert payload["status"] == "cancelled"
    assert audit_actions().count("order.status_changed") == 2


def test_completion_deducts_stock_once(core, make_order):
    order = make_order(3)
    for target in ("preparing", "ready"):
        core.state_machine.transition(order.id, target)
    done = core.state_machine.complete_order(order.id, KITCHEN)

    assert done.inventory_deducted is True
    assert done.inventory_deducted_by == "kitchen-1"
    assert core.inventory.get_inventory(JOLLOF).current_stock == 7


def test_completion_survives_deduction_failure(core, make_order, monkeypatch, audit_actions):
    order = make_order()

    def broken(order_id, actor):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(core.inventory, "deduct_stock_for_order", broken)
    for target in ("preparing", "ready", "completed"):
        order = core.state_machine.transition(order.id, target)

    assert order.status is OrderStatus.COMPLETED
    assert order.inventory_deducted is False
    assert "inventory.deduction_failed" in audit_actions()


def test_cancelling_a_deducted_order_restores_stock(core, make_order):
    order = make_order(4)
    core.state_machine.transition(order.id, "confirmed")
    assert core.inventory.deduct_stock_for_order(order.id)
    assert core.inventory.get_inventory(JOLLOF).current_stock == 6

    cancelled = core.state_machine.transition(order.id, "cancelled", actor=ADMIN)

    assert cancelled.inventory_deducted is False
    record = core.inventory.get_inventory(JOLLOF)
    assert record.current_stock == 10
    assert record.stock_history[-1].reason == "Order Cancelled"
    assert record.stock_history[-1].quantity == 4


def test_lost_race_exhausts_retries(core, make_order, monkeypatch):
    order = make_order()
    monkeypatch.setattr(orders_repo_sql, "compare_and_set_status", lambda *a, **k: False)
    with pytest.raises(PersistenceFailure):
        core.state_machine.transition(order.id, "confirmed")
    assert core.state_machine.reload("order", order.id).status is OrderStatus.PENDING


def test_tab_lifecycle(core):
    tab = core.checkout.create_tab("7", Customer(user_id="user-9"))
    sm = core.state_machine

    tab = sm.transition_tab(tab.id, "settling")
    tab = sm.transition_tab(tab.id, "open", "Guest ordered more")
    tab = sm.transition_tab(tab.id, "closed")

    assert tab.status is TabStatus.CLOSED
    assert tab.closed_at is not None
    assert [h.status for h in tab.status_history] == ["open", "settling", "open", "closed"]
    with pytest.raises(InvalidTransition):
        sm.transition_tab(tab.id, "open")
