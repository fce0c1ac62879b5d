"""SQLAlchemy-backed repository helpers for orders and tabs.

These helpers implement the ledger primitives without any side effects
beyond database mutations. They operate on a caller-owned ``Session`` and never
commit; the surrounding :func:`wawa.app.db.unit_of_work` decides when work
becomes durable. Every guard flip is a single ``UPDATE ... WHERE`` whose
``rowcount`` tells the caller whether it won.
"""

from __future__ import annotations

import random
import string
from datetime import date, datetime
from typing import Iterable, Literal, Type

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from ..domain import OrderStatus, PaymentStatus, TabStatus
from ..errors import EntityNotFound
from ..models import Order, OrderItem, StatusHistory, Tab
from ..schemas import OrderRecord, TabRecord

EntityKind = Literal["order", "tab"]

_REF_ALPHABET = string.ascii_uppercase + string.digits

# payment states a success callback may still settle
PAYABLE = (
    PaymentStatus.PENDING.value,
    PaymentStatus.FAILED.value,
    PaymentStatus.CANCELLED.value,
)


def _model(kind: EntityKind) -> Type[Order] | Type[Tab]:
    return Order if kind == "order" else Tab


def order_record(session: Session, order_id: int) -> OrderRecord:
    """Load ``order_id`` with items and history as a validated record."""

    order = session.scalar(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items), selectinload(Order.status_history))
        .execution_options(populate_existing=True)
    )
    if order is None:
        raise EntityNotFound(f"order {order_id} not found", order_id=order_id)
    return OrderRecord.model_validate(order)


def tab_record(session: Session, tab_id: int) -> TabRecord:
    tab = session.scalar(
        select(Tab)
        .where(Tab.id == tab_id)
        .options(selectinload(Tab.status_history))
        .execution_options(populate_existing=True)
    )
    if tab is None:
        raise EntityNotFound(f"tab {tab_id} not found", tab_id=tab_id)
    return TabRecord.model_validate(tab)


def record(session: Session, kind: EntityKind, entity_id: int) -> OrderRecord | TabRecord:
    if kind == "order":
        return order_record(session, entity_id)
    return tab_record(session, entity_id)


def current_status(session: Session, kind: EntityKind, entity_id: int) -> str:
    """Re-read the persisted status; never trust an in-memory snapshot."""

    model = _model(kind)
    status = session.scalar(select(model.status).where(model.id == entity_id))
    if status is None:
        raise EntityNotFound(f"{kind} {entity_id} not found")
    return status


def find_by_payment_reference(
    session: Session, reference: str
) -> tuple[EntityKind, int] | None:
    """Resolve a gateway reference to exactly one order or tab."""

    order_id = session.scalar(
        select(Order.id).where(Order.payment_reference == reference)
    )
    if order_id is not None:
        return "order", order_id
    tab_id = session.scalar(select(Tab.id).where(Tab.payment_reference == reference))
    if tab_id is not None:
        return "tab", tab_id
    return None


def compare_and_set_status(
    session: Session,
    kind: EntityKind,
    entity_id: int,
    expected: str,
    target: str,
    now: datetime,
) -> bool:
    """Move ``entity_id`` to ``target`` only if it is still ``expected``."""

    model = _model(kind)
    values: dict = {"status": target}
    if kind == "order":
        values["updated_at"] = now
    elif target == TabStatus.CLOSED.value:
        values["closed_at"] = now
    elif target == TabStatus.OPEN.value:
        values["closed_at"] = None
    result = session.execute(
        update(model)
        .where(model.id == entity_id, model.status == expected)
        .values(**values)
    )
    return result.rowcount == 1


def append_history(
    session: Session,
    kind: EntityKind,
    entity_id: int,
    status: str,
    note: str | None,
    actor: str,
    now: datetime,
) -> None:
    owner = {"order_id": entity_id} if kind == "order" else {"tab_id": entity_id}
    session.add(
        StatusHistory(status=status, note=note, actor=actor, created_at=now, **owner)
    )
    session.flush()


def claim_payment(
    session: Session,
    kind: EntityKind,
    entity_id: int,
    transaction_reference: str | None,
    paid_at: datetime,
) -> bool:
    """Flip ``payment_status`` to ``paid`` from a state that may still be paid.

    Exactly one caller wins this update no matter how many deliveries of the
    same callback, from however many gateways, race for it. A refunded entity
    is never paid again.
    """

    model = _model(kind)
    result = session.execute(
        update(model)
        .where(
            model.id == entity_id,
            model.payment_status.in_(PAYABLE),
        )
        .values(
            payment_status=PaymentStatus.PAID.value,
            transaction_reference=transaction_reference,
            paid_at=paid_at,
        )
    )
    return result.rowcount == 1


def mark_payment_failed(
    session: Session,
    kind: EntityKind,
    entity_id: int,
    status: PaymentStatus,
    transaction_reference: str | None,
) -> bool:
    """Record a failed or cancelled attempt against a pending payment.

    Only ``pending`` is ever moved, so a replayed failure loses and a paid or
    refunded entity is never downgraded.
    """

    model = _model(kind)
    result = session.execute(
        update(model)
        .where(
            model.id == entity_id,
            model.payment_status == PaymentStatus.PENDING.value,
        )
        .values(payment_status=status.value, transaction_reference=transaction_reference)
    )
    return result.rowcount == 1


def claim_inventory_deduction(
    session: Session, order_id: int, actor: str, now: datetime
) -> bool:
    """Set the exactly-once deduction flag; ``False`` means already deducted."""

    result = session.execute(
        update(Order)
        .where(Order.id == order_id, Order.inventory_deducted.is_(False))
        .values(
            inventory_deducted=True,
            inventory_deducted_at=now,
            inventory_deducted_by=actor,
        )
    )
    return result.rowcount == 1


def release_inventory_deduction(session: Session, order_id: int) -> bool:
    result = session.execute(
        update(Order)
        .where(Order.id == order_id, Order.inventory_deducted.is_(True))
        .values(
            inventory_deducted=False,
            inventory_deducted_at=None,
            inventory_deducted_by=None,
        )
    )
    return result.rowcount == 1


def order_lines(session: Session, order_id: int) -> list[OrderItem]:
    return list(
        session.scalars(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        )
    )


def next_order_number(session: Session, prefix: str, today: date) -> str:
    """Return ``<prefix><yymmdd><seq4>`` where ``seq`` counts today's orders."""

    stem = f"{prefix}{today:%y%m%d}"
    count = session.scalar(
        select(func.count(Order.id)).where(Order.order_number.like(f"{stem}%"))
    )
    return f"{stem}{(count or 0) + 1:04d}"


def make_payment_reference(
    prefix: str, kind: EntityKind, entity_id: int, now: datetime, rng: random.Random
) -> str:
    suffix = "".join(rng.choice(_REF_ALPHABET) for _ in range(6))
    scope = f"{prefix}-TAB" if kind == "tab" else prefix
    return f"{scope}-{entity_id}-{int(now.timestamp() * 1000)}-{suffix}"


def insert_order(
    session: Session,
    *,
    order_number: str,
    lines: Iterable[dict],
    totals: dict,
    identity: dict,
    order_type: str,
    now: datetime,
) -> Order:
    order = Order(
        order_number=order_number,
        order_type=order_type,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        inventory_deducted=False,
        created_at=now,
        **identity,
        **totals,
    )
    session.add(order)
    session.flush()
    for line in lines:
        session.add(OrderItem(order_id=order.id, **line))
    session.flush()
    return order


def insert_tab(
    session: Session, *, tab_number: str, table_number: str, identity: dict, now: datetime
) -> Tab:
    tab = Tab(
        tab_number=tab_number,
        table_number=table_number,
        status=TabStatus.OPEN.value,
        payment_status=PaymentStatus.PENDING.value,
        opened_at=now,
        **identity,
    )
    session.add(tab)
    session.flush()
    return tab


def set_payment_reference(
    session: Session, kind: EntityKind, entity_id: int, reference: str
) -> None:
    """Hand out a fresh reference; the new attempt starts back at ``pending``."""

    model = _model(kind)
    session.execute(
        update(model)
        .where(model.id == entity_id, model.payment_status.in_(PAYABLE))
        .values(
            payment_reference=reference,
            payment_status=PaymentStatus.PENDING.value,
            transaction_reference=None,
        )
    )


def attach_order_to_tab(session: Session, tab_id: int, order_id: int) -> bool:
    """Link an order to an open tab and roll the tab's totals forward.

    Both statements are guarded: the order must not already belong to a tab
    and the tab must still be open, so a tab that moved to settling in the
    meantime keeps the totals it is being paid for.
    """

    linked = session.execute(
        update(Order)
        .where(Order.id == order_id, Order.tab_id.is_(None))
        .values(tab_id=tab_id)
    )
    if linked.rowcount != 1:
        return False
    order = session.get(Order, order_id)
    rolled = session.execute(
        update(Tab)
        .where(Tab.id == tab_id, Tab.status == TabStatus.OPEN.value)
        .values(
            subtotal=Tab.subtotal + order.subtotal,
            service_fee=Tab.service_fee + order.service_fee,
            tax=Tab.tax + order.tax,
            delivery_fee=Tab.delivery_fee + order.delivery_fee,
            discount_total=Tab.discount_total + order.discount,
            total=Tab.total + order.total,
        )
    )
    return rolled.rowcount == 1


__all__ = [
    "EntityKind",
    "order_record",
    "tab_record",
    "record",
    "current_status",
    "find_by_payment_reference",
    "compare_and_set_status",
    "append_history",
    "claim_payment",
    "mark_payment_failed",
    "claim_inventory_deduction",
    "release_inventory_deduction",
    "order_lines",
    "next_order_number",
    "make_payment_reference",
    "insert_order",
    "insert_tab",
    "set_payment_reference",
    "attach_order_to_tab",
]
