"""SQLAlchemy-backed helpers for stock records and their movement ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from ..errors import RecordNotFound
from ..models import InventoryRecord, MenuItem, StockHistory
from ..schemas import InventoryRecordOut, StockMovementType, StockStatus


@dataclass
class StockLevel:
    """Stock figures right after a movement was applied."""

    inventory_id: int
    current_stock: int
    minimum_stock: int
    status: StockStatus


def stock_status(current: int, minimum: int) -> StockStatus:
    if current <= 0:
        return StockStatus.OUT_OF_STOCK
    if current <= minimum:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def tracked_record_id(session: Session, menu_item_id: int | None) -> int | None:
    """Return the stock record id for a tracked menu item, else ``None``."""

    if menu_item_id is None:
        return None
    row = session.execute(
        select(MenuItem.track_inventory, InventoryRecord.id)
        .outerjoin(InventoryRecord, InventoryRecord.menu_item_id == MenuItem.id)
        .where(MenuItem.id == menu_item_id)
    ).first()
    if row is None or not row.track_inventory:
        return None
    if row.id is None:
        raise RecordNotFound(
            f"menu item {menu_item_id} tracks stock but has no inventory record",
            menu_item_id=menu_item_id,
        )
    return row.id


def inventory_record(session: Session, inventory_id: int) -> InventoryRecordOut:
    record = session.scalar(
        select(InventoryRecord)
        .where(InventoryRecord.id == inventory_id)
        .options(selectinload(InventoryRecord.stock_history))
        .execution_options(populate_existing=True)
    )
    if record is None:
        raise RecordNotFound(f"inventory record {inventory_id} not found")
    return InventoryRecordOut.model_validate(record)


def insert_record(session: Session, menu_item_id: int, **fields) -> InventoryRecord:
    record = InventoryRecord(menu_item_id=menu_item_id, current_stock=0, **fields)
    session.add(record)
    session.flush()
    return record


def apply_movement(
    session: Session,
    inventory_id: int,
    quantity: int,
    movement: StockMovementType,
    reason: str,
    performed_by: str,
    now: datetime,
    *,
    category: str | None = None,
    order_id: int | None = None,
) -> StockLevel:
    """Atomically add ``quantity`` (signed) to a record and ledger the change.

    The stock column is updated with an in-database increment so concurrent
    movements on the same record compose instead of overwriting each other.
    """

    values: dict = {"current_stock": InventoryRecord.current_stock + quantity}
    if category == "sale":
        values["total_sales"] = InventoryRecord.total_sales - quantity
        values["last_sale_date"] = now
    elif category == "restock":
        values["last_restocked"] = now
    elif category == "cancellation":
        values["total_sales"] = InventoryRecord.total_sales - quantity
    result = session.execute(
        update(InventoryRecord)
        .where(InventoryRecord.id == inventory_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RecordNotFound(f"inventory record {inventory_id} not found")
    session.add(
        StockHistory(
            inventory_id=inventory_id,
            quantity=quantity,
            type=movement.value,
            reason=reason,
            category=category,
            order_id=order_id,
            performed_by=performed_by,
            created_at=now,
        )
    )
    row = session.execute(
        select(InventoryRecord.current_stock, InventoryRecord.minimum_stock).where(
            InventoryRecord.id == inventory_id
        )
    ).one()
    status = stock_status(row.current_stock, row.minimum_stock)
    session.execute(
        update(InventoryRecord)
        .where(InventoryRecord.id == inventory_id)
        .values(status=status.value)
        .execution_options(synchronize_session=False)
    )
    session.flush()
    return StockLevel(inventory_id, row.current_stock, row.minimum_stock, status)


def sale_movements(session: Session, order_id: int) -> dict[int, int]:
    """Net units each record lost to ``order_id`` (positive numbers)."""

    rows = session.execute(
        select(StockHistory.inventory_id, func.sum(StockHistory.quantity))
        .where(
            StockHistory.order_id == order_id,
            StockHistory.category.in_(["sale", "cancellation"]),
        )
        .group_by(StockHistory.inventory_id)
    )
    return {inventory_id: -net for inventory_id, net in rows if net < 0}


def record_id_for_item(session: Session, menu_item_id: int) -> int | None:
    return session.scalar(
        select(InventoryRecord.id).where(InventoryRecord.menu_item_id == menu_item_id)
    )


def set_tracking(session: Session, menu_item_id: int, tracked: bool) -> bool:
    result = session.execute(
        update(MenuItem)
        .where(MenuItem.id == menu_item_id)
        .values(track_inventory=tracked)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def current_stock(session: Session, inventory_id: int) -> int:
    stock = session.scalar(
        select(InventoryRecord.current_stock).where(InventoryRecord.id == inventory_id)
    )
    if stock is None:
        raise RecordNotFound(f"inventory record {inventory_id} not found")
    return stock


__all__ = [
    "StockLevel",
    "stock_status",
    "tracked_record_id",
    "inventory_record",
    "insert_record",
    "apply_movement",
    "current_stock",
    "sale_movements",
    "record_id_for_item",
    "set_tracking",
]
