"""Gateway-neutral payment reconciliation.

Each gateway module authenticates and parses its own callback shape and
reduces it to a :class:`PaymentOutcome`. :class:`PaymentReconciler` applies
that outcome to the order or tab it references, so both gateways produce the
same end state for the same outcome.

Within one transaction the reconciler claims the payment with a
compare-and-set on ``payment_status`` and confirms (or cancels) the entity.
Inventory deduction, reward issuance, notifications and live updates run
only after that commit and can never turn an accepted callback into a
failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import sessionmaker

from ..audit import AuditLogSink
from ..db import unit_of_work
from ..domain import SYSTEM, OrderStatus, PaymentStatus, TabStatus, can_transition
from ..errors import AlreadyApplied
from ..repos_sqlalchemy import orders_repo_sql as orders_repo
from ..repos_sqlalchemy.orders_repo_sql import EntityKind
from ..schemas import OrderRecord, TabRecord
from ..services.inventory import InventoryEngine
from ..services.notifications import ORDER_PAID, OutboxNotifier
from ..services.rewards import RewardEngine
from ..services.state_machine import StateMachine
from ..utils.clock import utcnow

logger = logging.getLogger("wawa.payments")

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
NOT_FOUND = "not_found"


@dataclass(frozen=True)
class PaymentOutcome:
    """What a gateway says happened to one payment reference."""

    gateway: str
    reference: str
    status: PaymentStatus
    transaction_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    amount: Optional[int] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class ReconcileResult:
    result: str
    kind: Optional[EntityKind] = None
    entity_id: Optional[int] = None
    payment_status: Optional[str] = None
    status: Optional[str] = None
    reward_code: Optional[str] = None

    def as_dict(self) -> dict:
        data = {"result": self.result}
        if self.kind is not None:
            data[f"{self.kind}_id"] = self.entity_id
            data["payment_status"] = self.payment_status
            data["status"] = self.status
        if self.reward_code:
            data["reward_code"] = self.reward_code
        return data


class Gateway(Protocol):
    name: str
    signature_header: str

    def reconcile(self, raw_body: bytes, signature: Optional[str]) -> ReconcileResult:
        ...


class PaymentReconciler:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        state_machine: StateMachine,
        inventory: InventoryEngine,
        rewards: RewardEngine,
        notifier: OutboxNotifier,
        audit: AuditLogSink,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._state_machine = state_machine
        self._inventory = inventory
        self._rewards = rewards
        self._notifier = notifier
        self._audit = audit
        self._clock = clock

    def apply(self, outcome: PaymentOutcome) -> ReconcileResult:
        log_extra = {"reference": outcome.reference, "gateway": outcome.gateway}
        if outcome.status is PaymentStatus.PENDING:
            logger.info("payment still pending; nothing to apply", extra=log_extra)
            return ReconcileResult(IGNORED)

        now = self._clock()
        paid = outcome.status is PaymentStatus.PAID
        applied: Optional[AlreadyApplied] = None
        with unit_of_work(self._session_factory) as session:
            found = orders_repo.find_by_payment_reference(session, outcome.reference)
            if found is not None:
                kind, entity_id = found
                previous = None
                try:
                    previous = self._claim(session, kind, entity_id, outcome, now)
                except AlreadyApplied as exc:
                    applied = exc
                record = orders_repo.record(session, kind, entity_id)

        if found is None:
            # a reference we never issued; acknowledged so the gateway stops retrying
            logger.error(
                "no order or tab for payment reference %s",
                outcome.reference,
                extra=log_extra,
            )
            return ReconcileResult(NOT_FOUND)
        if applied is not None:
            logger.info("%s", applied.message, extra=log_extra)
            return self._result(DUPLICATE if paid else IGNORED, kind, record)

        if previous is not None:
            self._state_machine.announce(kind, record, previous, SYSTEM)
        if paid:
            return self._after_payment(kind, record, outcome)
        if kind == "order" and previous is not None and record.inventory_deducted:
            if self._inventory.restore_best_effort(record.id, SYSTEM):
                record = self._state_machine.reload("order", record.id)
        self._audit.log_event(
            SYSTEM,
            "payment.failed",
            kind,
            record.id,
            {"gateway": outcome.gateway, "payment_status": outcome.status.value},
        )
        logger.warning(
            "%s payment %s for %s %s",
            outcome.gateway,
            outcome.status.value,
            kind,
            record.id,
            extra=log_extra,
        )
        return self._result(APPLIED, kind, record)

    def _claim(
        self,
        session,
        kind: EntityKind,
        entity_id: int,
        outcome: PaymentOutcome,
        now: datetime,
    ) -> Optional[str]:
        """Win the payment guard and move the entity's status accordingly.

        Raises :class:`AlreadyApplied` when another delivery (or the other
        gateway) already settled this payment.
        """

        if outcome.status is PaymentStatus.PAID:
            won = orders_repo.claim_payment(
                session,
                kind,
                entity_id,
                outcome.transaction_reference,
                outcome.paid_at or now,
            )
        else:
            won = orders_repo.mark_payment_failed(
                session, kind, entity_id, outcome.status, outcome.transaction_reference
            )
        if not won:
            raise AlreadyApplied(
                f"{outcome.gateway} {outcome.status.value} callback for {kind} "
                f"{entity_id} already applied",
                kind=kind,
                entity_id=entity_id,
            )
        if outcome.status is PaymentStatus.PAID:
            return self._settle(session, kind, entity_id, outcome, now)
        return self._unwind(session, kind, entity_id, outcome, now)

    def _settle(

        self,
        session,
        kind: EntityKind,
        entity_id: int,
        outcome: PaymentOutcome,
        now: datetime,
    ) -> Optional[str]:
        """Confirm a pending order or close a tab inside the payment transaction."""

        status = orders_repo.current_status(session, kind, entity_id)
        if kind == "order":
            if status != OrderStatus.PENDING.value:
                return None
            target = OrderStatus.CONFIRMED
        else:
            if status == TabStatus.CLOSED.value:
                return None
            target = TabStatus.CLOSED
        return self._state_machine.apply(
            session, kind, entity_id, target, outcome.note, SYSTEM, now
        )

    def _unwind(
        self,
        session,
        kind: EntityKind,
        entity_id: int,
        outcome: PaymentOutcome,
        now: datetime,
    ) -> Optional[str]:
        """Cancel an order, or put a settling tab back to ``open``."""

        status = orders_repo.current_status(session, kind, entity_id)
        note = outcome.note or f"Payment {outcome.status.value}"
        if kind == "order":
            if not can_transition(OrderStatus(status), OrderStatus.CANCELLED):
                return None
            target = OrderStatus.CANCELLED
        else:
            if status != TabStatus.SETTLING.value:
                return None
            target = TabStatus.OPEN
        return self._state_machine.apply(session, kind, entity_id, target, note, SYSTEM, now)

    def _after_payment(
        self, kind: EntityKind, record: OrderRecord | TabRecord, outcome: PaymentOutcome
    ) -> ReconcileResult:
        details = {
            "gateway": outcome.gateway,
            "reference": outcome.reference,
            "transaction_reference": outcome.transaction_reference,
            "amount": outcome.amount,
        }
        if outcome.amount is not None and outcome.amount < record.total:
            logger.warning(
                "%s reported %s for %s %s totalling %s",
                outcome.gateway,
                outcome.amount,
                kind,
                record.id,
                record.total,
                extra={"reference": outcome.reference},
            )
        if kind == "order" and record.status is OrderStatus.CANCELLED:
            logger.error(
                "payment received for cancelled order %s; refund needed",
                record.order_number,
                extra={"order_id": record.id, "reference": outcome.reference},
            )
            self._audit.log_event(
                SYSTEM, "payment.received_for_cancelled", "order", record.id, details
            )
        elif kind == "order" and not record.inventory_deducted:
            if self._inventory.deduct_best_effort(record.id, SYSTEM):
                record = self._state_machine.reload("order", record.id)

        reward = None
        if kind == "tab":
            reward = self._rewards.issue_best_effort(
                record.user_id, None, record.total, tab_id=record.id
            )
        elif record.status is not OrderStatus.CANCELLED:
            reward = self._rewards.issue_best_effort(record.user_id, record.id, record.total)

        self._notifier.notify(
            ORDER_PAID, {f"{kind}_id": record.id, "total": record.total, **details}
        )
        self._audit.log_event(SYSTEM, "payment.received", kind, record.id, details)
        logger.info(
            "%s payment applied to %s %s",
            outcome.gateway,
            kind,
            record.id,
            extra={f"{kind}_id": record.id, "reference": outcome.reference},
        )
        return self._result(APPLIED, kind, record, reward.code if reward else None)

    @staticmethod
    def _result(
        result: str,
        kind: EntityKind,
        record: OrderRecord | TabRecord,
        reward_code: Optional[str] = None,
    ) -> ReconcileResult:
        return ReconcileResult(
            result,
            kind=kind,
            entity_id=record.id,
            payment_status=record.payment_status.value,
            status=record.status.value,
            reward_code=reward_code,
        )


__all__ = [
    "APPLIED",
    "DUPLICATE",
    "IGNORED",
    "NOT_FOUND",
    "Gateway",
    "PaymentOutcome",
    "PaymentReconciler",
    "ReconcileResult",
]
