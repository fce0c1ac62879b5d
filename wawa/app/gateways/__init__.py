"""Payment gateway webhook handlers."""

from .base import PaymentOutcome, PaymentReconciler, ReconcileResult
from .monnify import MonnifyGateway
from .paystack import PaystackGateway

__all__ = [
    "MonnifyGateway",
    "PaystackGateway",
    "PaymentOutcome",
    "PaymentReconciler",
    "ReconcileResult",
]
