"""Typed records returned by the ledger store.

Rows are validated into these models on their way out of
:mod:`wawa.app.repos_sqlalchemy` so the reconciliation logic never handles a
loosely-typed mapping.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .domain import OrderStatus, PaymentStatus, TabStatus
from .utils.clock import as_utc


class RewardType(str, Enum):
    DISCOUNT_PERCENTAGE = "discount-percentage"
    DISCOUNT_FIXED = "discount-fixed"
    FREE_ITEM = "free-item"
    LOYALTY_POINTS = "loyalty-points"


class RewardStatus(str, Enum):
    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class StockMovementType(str, Enum):
    ADDITION = "addition"
    DEDUCTION = "deduction"
    ADJUSTMENT = "adjustment"


class StockStatus(str, Enum):
    IN_STOCK = "in-stock"
    LOW_STOCK = "low-stock"
    OUT_OF_STOCK = "out-of-stock"


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc(cls, value):
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class StatusEntry(_Record):
    status: str
    note: Optional[str] = None
    actor: str = "system"
    created_at: datetime


class Customization(BaseModel):
    name: str
    option: str
    price: int = Field(default=0, ge=0)


class OrderLine(_Record):
    menu_item_id: Optional[int] = None
    name: str
    price: int = Field(ge=0)
    quantity: int = Field(ge=1)
    customizations: List[Customization] = []
    subtotal: int = Field(ge=0)


class OrderRecord(_Record):
    id: int
    order_number: str
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None
    order_type: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    transaction_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    tab_id: Optional[int] = None
    subtotal: int = Field(ge=0)
    tax: int = Field(ge=0)
    delivery_fee: int = Field(ge=0)
    service_fee: int = Field(ge=0)
    discount: int = Field(ge=0)
    total: int = Field(ge=0)
    inventory_deducted: bool
    inventory_deducted_at: Optional[datetime] = None
    inventory_deducted_by: Optional[str] = None
    created_at: datetime
    items: List[OrderLine] = []
    status_history: List[StatusEntry] = []

    @model_validator(mode="after")
    def _history_matches_status(self) -> "OrderRecord":
        if self.status_history and self.status_history[-1].status != self.status.value:
            raise ValueError(
                f"status history ends in {self.status_history[-1].status!r} "
                f"but order is {self.status.value!r}"
            )
        return self


class TabRecord(_Record):
    id: int
    tab_number: str
    table_number: str
    user_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    status: TabStatus
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    transaction_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    subtotal: int = Field(ge=0)
    service_fee: int = Field(ge=0)
    tax: int = Field(ge=0)
    delivery_fee: int = Field(ge=0)
    discount_total: int = Field(ge=0)
    tip_amount: int = Field(ge=0)
    total: int = Field(ge=0)
    opened_at: datetime
    closed_at: Optional[datetime] = None
    status_history: List[StatusEntry] = []

    @model_validator(mode="after")
    def _history_matches_status(self) -> "TabRecord":
        if self.status_history and self.status_history[-1].status != self.status.value:
            raise ValueError("tab status history out of step with status")
        return self


class StockEntry(_Record):
    quantity: int
    type: StockMovementType
    reason: str
    category: Optional[str] = None
    order_id: Optional[int] = None
    performed_by: str
    created_at: datetime


class InventoryRecordOut(_Record):
    id: int
    menu_item_id: int
    current_stock: int
    minimum_stock: int = Field(ge=0)
    maximum_stock: int = Field(ge=0)
    unit: str
    status: StockStatus
    cost_per_unit: int = Field(ge=0)
    prevent_orders_when_out_of_stock: bool
    total_sales: int = Field(ge=0)
    last_sale_date: Optional[datetime] = None
    last_restocked: Optional[datetime] = None
    stock_history: List[StockEntry] = []


class RewardRuleRecord(_Record):
    id: int
    name: str
    is_active: bool
    spend_threshold: int = Field(ge=0)
    reward_type: RewardType
    reward_value: int = Field(ge=0)
    free_item_id: Optional[int] = None
    probability: float = Field(ge=0.0, le=1.0)
    max_redemptions_per_user: Optional[int] = Field(default=None, ge=1)
    validity_days: int = Field(ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class RewardRecord(_Record):
    id: int
    code: str
    user_id: str
    rule_id: Optional[int] = None
    order_id: Optional[int] = None
    tab_id: Optional[int] = None
    reward_type: RewardType
    reward_value: int = Field(ge=0)
    free_item_id: Optional[int] = None
    description: Optional[str] = None
    status: RewardStatus
    expires_at: datetime
    redeemed_at: Optional[datetime] = None
    redeemed_in_order_id: Optional[int] = None
    created_at: datetime


__all__ = [
    "RewardType",
    "RewardStatus",
    "StockMovementType",
    "StockStatus",
    "StatusEntry",
    "Customization",
    "OrderLine",
    "OrderRecord",
    "TabRecord",
    "StockEntry",
    "InventoryRecordOut",
    "RewardRuleRecord",
    "RewardRecord",
]
