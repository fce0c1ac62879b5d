"""Ledger store models.

These models describe the schema behind orders, tabs, stock and rewards. They
are kept isolated from any application wiring so that they can be used in
tests independently. Money columns hold whole Naira; every guard column that
protects an exactly-once transition (``payment_status``,
``inventory_deducted``, ``Reward.status``) is only ever flipped through a
filtered ``UPDATE`` in :mod:`wawa.app.repos_sqlalchemy`.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class MenuItem(Base):
    """Catalog projection used to resolve line items to stock records."""

    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)
    track_inventory = Column(Boolean, nullable=False, default=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Tab(Base):
    """Running bill for one table or session."""

    __tablename__ = "tabs"

    id = Column(Integer, primary_key=True)
    tab_number = Column(String, unique=True, nullable=False)
    table_number = Column(String, nullable=False)
    user_id = Column(String, nullable=True, index=True)
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    status = Column(String, nullable=False, default="open")
    payment_status = Column(String, nullable=False, default="pending")
    payment_reference = Column(String, unique=True, nullable=True, index=True)
    transaction_reference = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    subtotal = Column(Integer, nullable=False, default=0)
    service_fee = Column(Integer, nullable=False, default=0)
    tax = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    discount_total = Column(Integer, nullable=False, default=0)
    tip_amount = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    orders = relationship("Order", back_populates="tab", order_by="Order.id")
    status_history = relationship(
        "StatusHistory",
        primaryjoin="Tab.id == StatusHistory.tab_id",
        order_by="StatusHistory.id",
        viewonly=True,
    )


class Order(Base):
    """Customer orders placed through checkout."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String, unique=True, nullable=False)
    user_id = Column(String, nullable=True, index=True)
    guest_email = Column(String, nullable=True)
    guest_name = Column(String, nullable=True)
    guest_phone = Column(String, nullable=True)
    order_type = Column(String, nullable=False, default="dine-in")
    status = Column(String, nullable=False, default="pending")
    payment_status = Column(String, nullable=False, default="pending")
    payment_reference = Column(String, unique=True, nullable=True, index=True)
    transaction_reference = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    tab_id = Column(Integer, ForeignKey("tabs.id"), nullable=True)
    subtotal = Column(Integer, nullable=False)
    tax = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    service_fee = Column(Integer, nullable=False, default=0)
    discount = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False)
    inventory_deducted = Column(Boolean, nullable=False, default=False)
    inventory_deducted_at = Column(DateTime(timezone=True), nullable=True)
    inventory_deducted_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    tab = relationship("Tab", back_populates="orders")
    items = relationship("OrderItem", order_by="OrderItem.id", viewonly=True)
    status_history = relationship(
        "StatusHistory",
        primaryjoin="Order.id == StatusHistory.order_id",
        order_by="StatusHistory.id",
        viewonly=True,
    )


class OrderItem(Base):
    """Line items belonging to an order, snapshotted at checkout."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    customizations = Column(JSON, nullable=False, default=list)
    subtotal = Column(Integer, nullable=False)


class StatusHistory(Base):
    """Append-only status trail for an order or a tab."""

    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    tab_id = Column(Integer, ForeignKey("tabs.id"), nullable=True, index=True)
    status = Column(String, nullable=False)
    note = Column(Text, nullable=True)
    actor = Column(String, nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), nullable=False)


class InventoryRecord(Base):
    """Stock level for one tracked menu item."""

    __tablename__ = "inventory_records"

    id = Column(Integer, primary_key=True)
    menu_item_id = Column(
        Integer, ForeignKey("menu_items.id"), unique=True, nullable=False
    )
    current_stock = Column(Integer, nullable=False, default=0)
    minimum_stock = Column(Integer, nullable=False, default=0)
    maximum_stock = Column(Integer, nullable=False, default=0)
    unit = Column(String, nullable=False, default="portion")
    status = Column(String, nullable=False, default="in-stock")
    cost_per_unit = Column(Integer, nullable=False, default=0)
    prevent_orders_when_out_of_stock = Column(Boolean, nullable=False, default=False)
    total_sales = Column(Integer, nullable=False, default=0)
    last_sale_date = Column(DateTime(timezone=True), nullable=True)
    last_restocked = Column(DateTime(timezone=True), nullable=True)

    stock_history = relationship(
        "StockHistory", order_by="StockHistory.id", viewonly=True
    )


class StockHistory(Base):
    """Signed stock movement; the sum of ``quantity`` is the stock level."""

    __tablename__ = "stock_history"

    id = Column(Integer, primary_key=True)
    inventory_id = Column(
        Integer, ForeignKey("inventory_records.id"), nullable=False, index=True
    )
    quantity = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    category = Column(String, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    performed_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class RewardRule(Base):
    """Admin-configured spend rule for probabilistic rewards."""

    __tablename__ = "reward_rules"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    spend_threshold = Column(Integer, nullable=False)
    reward_type = Column(String, nullable=False)
    reward_value = Column(Integer, nullable=False)
    free_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=True)
    probability = Column(Float, nullable=False)
    max_redemptions_per_user = Column(Integer, nullable=True)
    validity_days = Column(Integer, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)


class Reward(Base):
    """Reward issued to a customer, earned from at most one order or tab."""

    __tablename__ = "rewards"

    id = Column(Integer, primary_key=True)
    code = Column(String, unique=True, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    rule_id = Column(Integer, ForeignKey("reward_rules.id"), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=True)
    tab_id = Column(Integer, ForeignKey("tabs.id"), unique=True, nullable=True)
    reward_type = Column(String, nullable=False)
    reward_value = Column(Integer, nullable=False)
    free_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=True)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="active")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_in_order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class LoyaltyAccount(Base):
    """Per-customer points balance and reward counters."""

    __tablename__ = "loyalty_accounts"

    user_id = Column(String, primary_key=True)
    points_balance = Column(Integer, nullable=False, default=0)
    total_points_earned = Column(Integer, nullable=False, default=0)
    total_points_spent = Column(Integer, nullable=False, default=0)
    rewards_earned = Column(Integer, nullable=False, default=0)


class PointsTransaction(Base):
    """Ledger of loyalty point movements."""

    __tablename__ = "points_transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    reward_id = Column(Integer, ForeignKey("rewards.id"), nullable=True)
    description = Column(String, nullable=False)
    balance_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class AlertRule(Base):
    """Configurable alert rules for order and stock events."""

    __tablename__ = "alerts_rules"

    id = Column(Integer, primary_key=True)
    event = Column(String, nullable=False)
    channel = Column(String, nullable=False)
    target = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)


class NotificationOutbox(Base):
    """Queued notifications awaiting delivery."""

    __tablename__ = "notifications_outbox"

    id = Column(Integer, primary_key=True)
    event = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    channel = Column(String, nullable=False)
    target = Column(String, nullable=False)
    status = Column(String, nullable=False, default="queued")
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    delivered_at = Column(DateTime(timezone=True), nullable=True)


class AuditLog(Base):
    """Append-only record of privileged mutations."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    at = Column(DateTime(timezone=True), nullable=False)
    actor = Column(String, nullable=False)
    actor_role = Column(String, nullable=False)
    action = Column(String, nullable=False)
    resource = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)


__all__ = [
    "Base",
    "MenuItem",
    "Tab",
    "Order",
    "OrderItem",
    "StatusHistory",
    "InventoryRecord",
    "StockHistory",
    "RewardRule",
    "Reward",
    "LoyaltyAccount",
    "PointsTransaction",
    "AlertRule",
    "NotificationOutbox",
    "AuditLog",
]
