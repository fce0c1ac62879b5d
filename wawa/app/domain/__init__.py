"""Domain models and helpers."""

from .actor import ADMIN_ROLES, STAFF_ROLES, SYSTEM, Actor
from .order_status import (
    TAB_TRANSITIONS,
    TRANSITIONS,
    OrderStatus,
    PaymentStatus,
    TabStatus,
    can_transition,
    can_transition_tab,
    is_terminal,
)

__all__ = [
    "ADMIN_ROLES",
    "STAFF_ROLES",
    "SYSTEM",
    "Actor",
    "OrderStatus",
    "PaymentStatus",
    "TabStatus",
    "TRANSITIONS",
    "TAB_TRANSITIONS",
    "can_transition",
    "can_transition_tab",
    "is_terminal",
]
