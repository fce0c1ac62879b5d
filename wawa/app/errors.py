"""Error taxonomy for the order and payment core.

Errors that protect financial correctness (``InvalidSignature``,
``InvalidTransition``, ``AlreadyRedeemed``...) are raised to the caller and
block the operation. Errors from best-effort side effects
(``InventoryDeductionFailure``, ``RewardIssuanceFailure``) are raised by their
engines but swallowed and logged by the orchestrating code.
"""

from __future__ import annotations


class CoreError(Exception):
    """Base class for every error raised by the core."""

    code = "CORE_ERROR"

    def __init__(self, message: str = "", **details: object) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


class InvalidTransition(CoreError):
    code = "INVALID_TRANSITION"

    def __init__(self, src: str, dst: str, entity: str = "order") -> None:
        super().__init__(
            f"cannot transition {entity} from {src!r} to {dst!r}",
            src=src,
            dst=dst,
        )


class InvalidSignature(CoreError):
    code = "INVALID_SIGNATURE"


class PayloadError(CoreError):
    """Webhook body could not be parsed into the gateway's shape."""

    code = "BAD_PAYLOAD"


class EntityNotFound(CoreError):
    code = "NOT_FOUND"


class AlreadyApplied(CoreError):
    """An idempotency guard was already set; callers treat this as success."""

    code = "ALREADY_APPLIED"


class PersistenceFailure(CoreError):
    code = "PERSISTENCE_FAILURE"


class InventoryDeductionFailure(CoreError):
    code = "INVENTORY_DEDUCTION_FAILED"


class RewardIssuanceFailure(CoreError):
    code = "REWARD_ISSUANCE_FAILED"


class ItemNotTracked(CoreError):
    code = "ITEM_NOT_TRACKED"


class RecordNotFound(CoreError):
    code = "INVENTORY_RECORD_NOT_FOUND"


class RewardNotFound(EntityNotFound):
    code = "REWARD_NOT_FOUND"


class RewardNotActive(CoreError):
    code = "REWARD_NOT_ACTIVE"


class AlreadyRedeemed(RewardNotActive):
    code = "ALREADY_REDEEMED"


class RewardExpired(RewardNotActive):
    code = "REWARD_EXPIRED"


class ValidationFailure(CoreError):
    """Caller supplied input the core refuses to store."""

    code = "VALIDATION_ERROR"


__all__ = [
    "CoreError",
    "InvalidTransition",
    "InvalidSignature",
    "PayloadError",
    "EntityNotFound",
    "AlreadyApplied",
    "PersistenceFailure",
    "InventoryDeductionFailure",
    "RewardIssuanceFailure",
    "ItemNotTracked",
    "RecordNotFound",
    "RewardNotFound",
    "RewardNotActive",
    "AlreadyRedeemed",
    "RewardExpired",
    "ValidationFailure",
]
