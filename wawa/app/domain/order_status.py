"""Order and tab status enumerations and allowed transitions."""

from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    """Enumerate the lifecycle states for an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Settlement state of an order or tab."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TabStatus(str, Enum):
    """Lifecycle states for a running table bill."""

    OPEN = "open"
    SETTLING = "settling"
    CLOSED = "closed"


TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    # pay-later orders go straight to the kitchen without a gateway callback
    OrderStatus.PENDING: [
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.CONFIRMED: [OrderStatus.PREPARING, OrderStatus.CANCELLED],
    OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.CANCELLED],
    OrderStatus.READY: [
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.OUT_FOR_DELIVERY: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    OrderStatus.DELIVERED: [OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    OrderStatus.COMPLETED: [],
    OrderStatus.CANCELLED: [],
}

TAB_TRANSITIONS: dict[TabStatus, list[TabStatus]] = {
    TabStatus.OPEN: [TabStatus.SETTLING, TabStatus.CLOSED],
    TabStatus.SETTLING: [TabStatus.CLOSED, TabStatus.OPEN],
    TabStatus.CLOSED: [],
}

TERMINAL: frozenset[OrderStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)


def can_transition(src: OrderStatus, dst: OrderStatus) -> bool:
    """Return ``True`` if an order can move from ``src`` to ``dst``."""

    return dst in TRANSITIONS.get(src, [])


def can_transition_tab(src: TabStatus, dst: TabStatus) -> bool:
    """Return ``True`` if a tab can move from ``src`` to ``dst``."""

    return dst in TAB_TRANSITIONS.get(src, [])


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL
