"""Order and tab lifecycle transitions.

``StateMachine.apply`` is the single place a status changes: it re-reads the
persisted status, validates the edge against the transition tables, flips the
status with a compare-and-set and appends exactly one history row. It runs
inside a caller-owned session so the payment reconciler can confirm an order
in the same transaction that records the payment. ``transition`` wraps it in
its own unit of work and then fires the best-effort side effects.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session, sessionmaker

from ..audit import AuditLogSink
from ..db import unit_of_work
from ..domain import (
    SYSTEM,
    Actor,
    OrderStatus,
    TabStatus,
    can_transition,
    can_transition_tab,
)
from ..errors import InvalidTransition, PersistenceFailure
from ..events import (
    ORDER_CANCELLED,
    ORDER_UPDATED,
    TAB_UPDATED,
    LiveUpdates,
    safe_emit,
)
from ..repos_sqlalchemy import orders_repo_sql as orders_repo
from ..repos_sqlalchemy.orders_repo_sql import EntityKind
from ..schemas import OrderRecord, TabRecord
from ..utils.clock import utcnow
from .inventory import InventoryEngine
from .notifications import ORDER_STATUS_CHANGED, OutboxNotifier

logger = logging.getLogger("wawa.orders")

Status = Union[OrderStatus, TabStatus, str]


def default_note(target: str, actor: Actor) -> str:
    """``"Completed by admin"``, ``"Out for delivery by kitchen-staff"``..."""

    return f"{target.replace('-', ' ').capitalize()} by {actor.role}"


def _coerce(kind: EntityKind, status: Status) -> OrderStatus | TabStatus:
    enum = OrderStatus if kind == "order" else TabStatus
    return enum(status.value if isinstance(status, (OrderStatus, TabStatus)) else status)


class StateMachine:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        inventory: InventoryEngine,
        live_updates: LiveUpdates,
        notifier: OutboxNotifier,
        audit: AuditLogSink,
        retries: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._inventory = inventory
        self._live = live_updates
        self._notifier = notifier
        self._audit = audit
        self._retries = retries
        self._clock = clock

    def apply(
        self,
        session: Session,
        kind: EntityKind,
        entity_id: int,
        target: Status,
        note: Optional[str],
        actor: Actor,
        now: datetime,
    ) -> Optional[str]:
        """Move an entity to ``target`` inside ``session``.

        Returns the status the entity left, or ``None`` when it already was in
        ``target`` (no history row is written in that case). Raises
        :class:`InvalidTransition` for an edge the tables do not allow.
        """

        for _ in range(self._retries):
            current = orders_repo.current_status(session, kind, entity_id)
            try:
                dst = _coerce(kind, target)
            except ValueError:
                raise InvalidTransition(current, str(target), kind) from None
            if current == dst.value:
                return None
            src = _coerce(kind, current)
            allowed = (
                can_transition(src, dst) if kind == "order" else can_transition_tab(src, dst)
            )
            if not allowed:
                raise InvalidTransition(current, dst.value, kind)
            if orders_repo.compare_and_set_status(
                session, kind, entity_id, current, dst.value, now
            ):
                orders_repo.append_history(
                    session,
                    kind,
                    entity_id,
                    dst.value,
                    note or default_note(dst.value, actor),
                    actor.label,
                    now,
                )
                return current
            logger.info("%s %s changed underneath us; retrying", kind, entity_id)
        raise PersistenceFailure(
            f"{kind} {entity_id} status kept changing", kind=kind, entity_id=entity_id
        )

    def transition(
        self,
        entity_id: int,
        target: Status,
        note: Optional[str] = None,
        actor: Actor = SYSTEM,
        *,
        kind: EntityKind = "order",
    ) -> OrderRecord | TabRecord:
        """Advance an order (or tab) and return its post-write record."""

        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            previous = self.apply(session, kind, entity_id, target, note, actor, now)
            record = orders_repo.record(session, kind, entity_id)
        if previous is None:
            return record

        if kind == "order":
            if record.status is OrderStatus.COMPLETED and not record.inventory_deducted:
                if self._inventory.deduct_best_effort(entity_id, actor):
                    record = self.reload("order", entity_id)
            elif record.status is OrderStatus.CANCELLED and record.inventory_deducted:
                if self._inventory.restore_best_effort(entity_id, actor):
                    record = self.reload("order", entity_id)
        self.announce(kind, record, previous, actor)
        return record

    def transition_tab(
        self,
        tab_id: int,
        target: Status,
        note: Optional[str] = None,
        actor: Actor = SYSTEM,
    ) -> TabRecord:
        return self.transition(tab_id, target, note, actor, kind="tab")

    def complete_order(self, order_id: int, actor: Actor) -> OrderRecord:
        return self.transition(order_id, OrderStatus.COMPLETED, None, actor)

    def reload(self, kind: EntityKind, entity_id: int) -> OrderRecord | TabRecord:
        with unit_of_work(self._session_factory) as session:
            return orders_repo.record(session, kind, entity_id)

    def announce(
        self,
        kind: EntityKind,
        record: OrderRecord | TabRecord,
        previous: str,
        actor: Actor,
    ) -> None:
        """Broadcast, notify and audit a committed status change."""

        status = record.status.value
        if kind == "tab":
            safe_emit(
                self._live,
                TAB_UPDATED,
                {"tab_id": record.id, "tab_number": record.tab_number, "status": status},
            )
            self._audit.log_event(
                actor, "tab.status_changed", "tab", record.id, {"from": previous, "to": status}
            )
            return

        payload = {
            "order_id": record.id,
            "order_number": record.order_number,
            "status": status,
            "previous_status": previous,
            "payment_status": record.payment_status.value,
        }
        topic = ORDER_CANCELLED if record.status is OrderStatus.CANCELLED else ORDER_UPDATED
        safe_emit(self._live, topic, payload)
        self._notifier.notify(ORDER_STATUS_CHANGED, payload)
        self._audit.log_event(
            actor,
            "order.status_changed",
            "order",
            record.id,
            {"from": previous, "to": status},
        )
        logger.info(
            "order %s %s -> %s",
            record.order_number,
            previous,
            status,
            extra={"order_id": record.id, "status": status},
        )


__all__ = ["StateMachine", "default_note"]
