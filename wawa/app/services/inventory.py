"""Inventory deduction engine and stock ledger operations.

Stock only ever moves through :func:`apply_movement`, which increments the
record in-database and appends the matching signed history row, so a record's
``current_stock`` always equals the sum of its ledger. Deduction for an order
claims the order's ``inventory_deducted`` flag and applies every movement in
one transaction: either the flag and all decrements land, or nothing does.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import sessionmaker

from ..audit import AuditLogSink
from ..db import unit_of_work
from ..domain import SYSTEM, Actor
from ..errors import (
    CoreError,
    EntityNotFound,
    InventoryDeductionFailure,
    ItemNotTracked,
    RecordNotFound,
    ValidationFailure,
)
from ..models import MenuItem
from ..repos_sqlalchemy import inventory_repo_sql as stock_repo
from ..repos_sqlalchemy import orders_repo_sql as orders_repo
from ..repos_sqlalchemy.inventory_repo_sql import StockLevel
from ..schemas import InventoryRecordOut, StockMovementType, StockStatus
from ..utils.clock import utcnow
from .notifications import INVENTORY_LOW_STOCK, OutboxNotifier

logger = logging.getLogger("wawa.inventory")


class InventoryEngine:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        notifier: OutboxNotifier,
        audit: AuditLogSink,
        stock_floor: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._audit = audit
        self._stock_floor = stock_floor
        self._clock = clock

    # -- order driven movements -------------------------------------------

    def deduct_stock_for_order(self, order_id: int, actor: Actor = SYSTEM) -> bool:
        """Deduct every tracked line of ``order_id`` exactly once.

        Returns ``True`` when this call performed the deduction and ``False``
        when the order had already been deducted. Untracked items are skipped;
        a tracked item without a stock record is logged and skipped.
        :class:`PersistenceFailure` propagates and leaves nothing applied.
        """

        now = self._clock()
        moved: list[tuple[str, StockLevel]] = []
        with unit_of_work(self._session_factory) as session:
            if not orders_repo.claim_inventory_deduction(session, order_id, actor.label, now):
                orders_repo.current_status(session, "order", order_id)
                logger.info("order %s already deducted", order_id, extra={"order_id": order_id})
                return False
            for line in orders_repo.order_lines(session, order_id):
                try:
                    inventory_id = stock_repo.tracked_record_id(session, line.menu_item_id)
                except RecordNotFound:
                    logger.error(
                        "no stock record for %s on order %s",
                        line.name,
                        order_id,
                        extra={"order_id": order_id},
                    )
                    continue
                if inventory_id is None:
                    continue
                level = stock_repo.apply_movement(
                    session,
                    inventory_id,
                    -line.quantity,
                    StockMovementType.DEDUCTION,
                    "Sale",
                    actor.label,
                    now,
                    category="sale",
                    order_id=order_id,
                )
                moved.append((line.name, level))

        for name, level in moved:
            self._check_level(name, level, order_id)
        logger.info(
            "deducted %d stock lines for order %s",
            len(moved),
            order_id,
            extra={"order_id": order_id},
        )
        return True

    def restore_stock_for_order(self, order_id: int, actor: Actor = SYSTEM) -> bool:
        """Give back what ``order_id`` took; the inverse of a deduction."""

        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            if not orders_repo.release_inventory_deduction(session, order_id):
                orders_repo.current_status(session, "order", order_id)
                return False
            for inventory_id, quantity in stock_repo.sale_movements(session, order_id).items():
                stock_repo.apply_movement(
                    session,
                    inventory_id,
                    quantity,
                    StockMovementType.ADDITION,
                    "Order Cancelled",
                    actor.label,
                    now,
                    category="cancellation",
                    order_id=order_id,
                )
        logger.info("restored stock for order %s", order_id, extra={"order_id": order_id})
        return True

    def deduct_best_effort(self, order_id: int, actor: Actor = SYSTEM) -> bool:
        """Run :meth:`deduct_stock_for_order`, logging instead of raising."""

        try:
            return self.deduct_stock_for_order(order_id, actor)
        except CoreError as exc:
            self._report_failure("deduction", order_id, actor, exc)
            return False

    def restore_best_effort(self, order_id: int, actor: Actor = SYSTEM) -> bool:
        try:
            return self.restore_stock_for_order(order_id, actor)
        except CoreError as exc:
            self._report_failure("restoration", order_id, actor, exc)
            return False

    def _report_failure(self, what: str, order_id: int, actor: Actor, exc: CoreError) -> None:
        logger.exception(
            "stock %s failed for order %s", what, order_id, extra={"order_id": order_id}
        )
        self._audit.log_event(
            actor,
            f"inventory.{what}_failed",
            "order",
            order_id,
            {"code": InventoryDeductionFailure.code, "cause": exc.code, "error": exc.message},
        )

    def _check_level(self, name: str, level: StockLevel, order_id: int) -> None:
        if level.current_stock < self._stock_floor:
            logger.error(
                "stock for %s fell to %d, below floor %d",
                name,
                level.current_stock,
                self._stock_floor,
                extra={"order_id": order_id},
            )
            self._audit.log_event(
                SYSTEM,
                "inventory.negative_stock",
                "inventory",
                level.inventory_id,
                {"order_id": order_id, "current_stock": level.current_stock},
            )
        if level.status is not StockStatus.IN_STOCK:
            self._notifier.notify(
                INVENTORY_LOW_STOCK,
                {
                    "inventory_id": level.inventory_id,
                    "item": name,
                    "current_stock": level.current_stock,
                    "minimum_stock": level.minimum_stock,
                    "status": level.status.value,
                },
            )

    # -- admin ledger operations ------------------------------------------

    def create_inventory_record(
        self,
        menu_item_id: int,
        *,
        opening_stock: int = 0,
        minimum_stock: int = 0,
        maximum_stock: int = 0,
        unit: str = "portion",
        cost_per_unit: int = 0,
        prevent_orders_when_out_of_stock: bool = False,
        actor: Actor = SYSTEM,
    ) -> InventoryRecordOut:
        """Start tracking a menu item, ledgering its opening stock."""

        if opening_stock < 0 or minimum_stock < 0 or cost_per_unit < 0:
            raise ValidationFailure("stock figures must not be negative")
        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            if session.get(MenuItem, menu_item_id) is None:
                raise EntityNotFound(f"menu item {menu_item_id} not found")
            if stock_repo.record_id_for_item(session, menu_item_id) is not None:
                raise ValidationFailure(f"menu item {menu_item_id} already has a stock record")
            record = stock_repo.insert_record(
                session,
                menu_item_id,
                minimum_stock=minimum_stock,
                maximum_stock=maximum_stock,
                unit=unit,
                cost_per_unit=cost_per_unit,
                prevent_orders_when_out_of_stock=prevent_orders_when_out_of_stock,
                status=StockStatus.OUT_OF_STOCK.value,
            )
            stock_repo.set_tracking(session, menu_item_id, True)
            if opening_stock:
                stock_repo.apply_movement(
                    session,
                    record.id,
                    opening_stock,
                    StockMovementType.ADDITION,
                    "Opening stock",
                    actor.label,
                    now,
                    category="restock",
                )
            out = stock_repo.inventory_record(session, record.id)
        self._audit.log_event(
            actor, "inventory.created", "inventory", out.id, {"menu_item_id": menu_item_id}
        )
        return out

    def add_stock(
        self,
        menu_item_id: int,
        quantity: int,
        reason: str = "Restock",
        actor: Actor = SYSTEM,
    ) -> InventoryRecordOut:
        if quantity <= 0:
            raise ValidationFailure("restock quantity must be positive", quantity=quantity)
        return self._move(
            menu_item_id, quantity, StockMovementType.ADDITION, reason, "restock", actor
        )

    def adjust_stock(
        self,
        menu_item_id: int,
        new_level: int,
        reason: str,
        actor: Actor = SYSTEM,
    ) -> InventoryRecordOut:
        """Correct a count to ``new_level`` by ledgering the difference."""

        with unit_of_work(self._session_factory) as session:
            inventory_id = self._record_id(session, menu_item_id)
            delta = new_level - stock_repo.current_stock(session, inventory_id)
        if delta == 0:
            return self.get_inventory(menu_item_id)
        return self._move(
            menu_item_id, delta, StockMovementType.ADJUSTMENT, reason, "adjustment", actor
        )

    def _move(
        self,
        menu_item_id: int,
        quantity: int,
        movement: StockMovementType,
        reason: str,
        category: str,
        actor: Actor,
    ) -> InventoryRecordOut:
        now = self._clock()
        with unit_of_work(self._session_factory) as session:
            inventory_id = self._record_id(session, menu_item_id)
            stock_repo.apply_movement(
                session,
                inventory_id,
                quantity,
                movement,
                reason,
                actor.label,
                now,
                category=category,
            )
            out = stock_repo.inventory_record(session, inventory_id)
        self._audit.log_event(
            actor,
            f"inventory.{movement.value}",
            "inventory",
            out.id,
            {"quantity": quantity, "reason": reason, "current_stock": out.current_stock},
        )
        return out

    @staticmethod
    def _record_id(session, menu_item_id: int) -> int:
        inventory_id = stock_repo.tracked_record_id(session, menu_item_id)
        if inventory_id is None:
            raise ItemNotTracked(
                f"menu item {menu_item_id} does not track stock", menu_item_id=menu_item_id
            )
        return inventory_id

    # -- reads --------------------------------------------------------------

    def get_inventory(self, menu_item_id: int) -> InventoryRecordOut:
        with unit_of_work(self._session_factory) as session:
            return stock_repo.inventory_record(session, self._record_id(session, menu_item_id))

    def is_item_available(self, menu_item_id: int, quantity: int = 1) -> bool:
        """Whether ``quantity`` units may be ordered right now."""

        with unit_of_work(self._session_factory) as session:
            try:
                inventory_id = stock_repo.tracked_record_id(session, menu_item_id)
            except RecordNotFound:
                return True
            if inventory_id is None:
                return True
            record = stock_repo.inventory_record(session, inventory_id)
        if not record.prevent_orders_when_out_of_stock:
            return True
        return record.current_stock >= quantity


__all__ = ["InventoryEngine"]
