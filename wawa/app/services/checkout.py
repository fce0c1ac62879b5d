"""Checkout boundary: seeding orders and tabs the core later reconciles.

Line items and money are snapshotted here exactly once. After creation an
order only changes through :class:`StateMachine` and the payment
reconciler.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import sessionmaker

from ..audit import AuditLogSink
from ..db import unit_of_work
from ..domain import SYSTEM, Actor, TabStatus
from ..errors import ValidationFailure
from ..events import ORDER_CREATED, TAB_UPDATED, LiveUpdates, safe_emit
from ..repos_sqlalchemy import orders_repo_sql as orders_repo
from ..schemas import Customization, OrderRecord, TabRecord
from ..utils.clock import utcnow
from .state_machine import StateMachine

logger = logging.getLogger("wawa.orders")

ORDER_TYPES = ("dine-in", "pickup", "delivery", "pay-now")


class NewLine(BaseModel):
    menu_item_id: Optional[int] = None
    name: str = Field(min_length=1)
    price: int = Field(ge=0)
    quantity: int = Field(ge=1)
    customizations: List[Customization] = []

    @property
    def subtotal(self) -> int:
        extras = sum(c.price for c in self.customizations)
        return (self.price + extras) * self.quantity


class Customer(BaseModel):
    """Exactly one of ``user_id`` or guest contact details."""

    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None

    @model_validator(mode="after")
    def _one_identity(self) -> "Customer":
        guest = any((self.email, self.name, self.phone))
        if bool(self.user_id) == guest:
            raise ValueError("provide either a user id or guest contact details, not both")
        return self


class Charges(BaseModel):
    tax: int = Field(default=0, ge=0)
    delivery_fee: int = Field(default=0, ge=0)
    service_fee: int = Field(default=0, ge=0)
    discount: int = Field(default=0, ge=0)


class Checkout:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        state_machine: StateMachine,
        live_updates: LiveUpdates,
        audit: AuditLogSink,
        rng: Optional[random.Random] = None,
        order_number_prefix: str = "WG",
        payment_reference_prefix: str = "WAWA",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._state_machine = state_machine
        self._live = live_updates
        self._audit = audit
        self._rng = rng or random.SystemRandom()
        self._order_prefix = order_number_prefix
        self._reference_prefix = payment_reference_prefix
        self._clock = clock

    def create_order(
        self,
        lines: List[NewLine],
        customer: Customer,
        *,
        order_type: str = "dine-in",
        charges: Optional[Charges] = None,
        actor: Actor = SYSTEM,
    ) -> OrderRecord:
        """Persist a ``pending`` order with its payment reference."""

        if not lines:
            raise ValidationFailure("an order needs at least one item")
        if order_type not in ORDER_TYPES:
            raise ValidationFailure(f"unknown order type {order_type!r}")
        charges = charges or Charges()
        subtotal = sum(line.subtotal for line in lines)
        if charges.discount > subtotal:
            raise ValidationFailure("discount cannot exceed the subtotal")
        total = (
            subtotal
            + charges.tax
            + charges.delivery_fee
            + charges.service_fee
            - charges.discount
        )
        identity = (
            {"user_id": customer.user_id}
            if customer.user_id
            else {
                "guest_email": customer.email,
                "guest_name": customer.name,
                "guest_phone": customer.phone,
            }
        )
        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            order = orders_repo.insert_order(
                session,
                order_number=orders_repo.next_order_number(
                    session, self._order_prefix, now.date()
                ),
                lines=[
                    {
                        "menu_item_id": line.menu_item_id,
                        "name": line.name,
                        "price": line.price,
                        "quantity": line.quantity,
                        "customizations": [c.model_dump() for c in line.customizations],
                        "subtotal": line.subtotal,
                    }
                    for line in lines
                ],
                totals={"subtotal": subtotal, "total": total, **charges.model_dump()},
                identity=identity,
                order_type=order_type,
                now=now,
            )
            reference = orders_repo.make_payment_reference(
                self._reference_prefix, "order", order.id, now, self._rng
            )
            orders_repo.set_payment_reference(session, "order", order.id, reference)
            orders_repo.append_history(
                session, "order", order.id, "pending", "Order placed", actor.label, now
            )
            record = orders_repo.order_record(session, order.id)

        safe_emit(
            self._live,
            ORDER_CREATED,
            {
                "order_id": record.id,
                "order_number": record.order_number,
                "status": record.status.value,
                "total": record.total,
            },
        )
        self._audit.log_event(
            actor,
            "order.created",
            "order",
            record.id,
            {"order_number": record.order_number, "total": record.total},
        )
        logger.info(
            "created order %s",
            record.order_number,
            extra={"order_id": record.id, "reference": record.payment_reference},
        )
        return record

    def create_tab(
        self,
        table_number: str,
        customer: Optional[Customer] = None,
        actor: Actor = SYSTEM,
    ) -> TabRecord:
        now = self._clock()
        customer = customer or Customer.model_construct()
        stamp = str(int(now.timestamp() * 1000))[-6:]
        identity = {
            "user_id": customer.user_id,
            "customer_name": customer.name,
            "customer_email": customer.email,
            "customer_phone": customer.phone,
        }
        with unit_of_work(self._session_factory) as session:
            tab = orders_repo.insert_tab(
                session,
                tab_number=f"TAB-{table_number}-{stamp}",
                table_number=table_number,
                identity=identity,
                now=now,
            )
            orders_repo.append_history(
                session, "tab", tab.id, TabStatus.OPEN.value, "Tab opened", actor.label, now
            )
            record = orders_repo.tab_record(session, tab.id)
        self._tab_updated(record)
        self._audit.log_event(actor, "tab.created", "tab", record.id)
        return record

    def add_order_to_tab(self, tab_id: int, order_id: int, actor: Actor = SYSTEM) -> TabRecord:
        """Bill ``order_id`` to an open tab and roll its totals up."""

        with unit_of_work(self._session_factory) as session:
            tab = orders_repo.tab_record(session, tab_id)
            if tab.status is not TabStatus.OPEN:
                raise ValidationFailure(
                    f"tab {tab.tab_number} is {tab.status.value}", tab_id=tab_id
                )
            orders_repo.order_record(session, order_id)
            if not orders_repo.attach_order_to_tab(session, tab_id, order_id):
                raise ValidationFailure(
                    f"order {order_id} cannot join tab {tab.tab_number}",
                    tab_id=tab_id,
                    order_id=order_id,
                )
            record = orders_repo.tab_record(session, tab_id)
        self._tab_updated(record)
        self._audit.log_event(actor, "tab.order_added", "tab", tab_id, {"order_id": order_id})
        return record

    def request_tab_payment(self, tab_id: int, actor: Actor = SYSTEM) -> TabRecord:
        """Freeze an open tab for payment and hand out its payment reference."""

        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            tab = orders_repo.tab_record(session, tab_id)
            if tab.total <= 0:
                raise ValidationFailure(f"tab {tab.tab_number} has nothing to pay")
            previous = self._state_machine.apply(
                session, "tab", tab_id, TabStatus.SETTLING, "Payment requested", actor, now
            )
            if previous is not None or tab.payment_reference is None:
                reference = orders_repo.make_payment_reference(
                    self._reference_prefix, "tab", tab_id, now, self._rng
                )
                orders_repo.set_payment_reference(session, "tab", tab_id, reference)
            record = orders_repo.tab_record(session, tab_id)
        if previous is not None:
            self._state_machine.announce("tab", record, previous, actor)
        return record

    def _tab_updated(self, record: TabRecord) -> None:
        safe_emit(
            self._live,
            TAB_UPDATED,
            {
                "tab_id": record.id,
                "tab_number": record.tab_number,
                "status": record.status.value,
                "total": record.total,
            },
        )


__all__ = ["Checkout", "NewLine", "Customer", "Charges", "ORDER_TYPES"]
