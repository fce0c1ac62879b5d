"""Service layer for the order and payment core."""

from .checkout import Checkout
from .inventory import InventoryEngine
from .notifications import OutboxNotifier
from .rewards import RewardEngine, calculate_discount_amount, draw_rule
from .state_machine import StateMachine

__all__ = [
    "Checkout",
    "InventoryEngine",
    "OutboxNotifier",
    "RewardEngine",
    "StateMachine",
    "calculate_discount_amount",
    "draw_rule",
]
