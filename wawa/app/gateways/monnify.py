"""Monnify collection webhooks.

Monnify signs the raw request body with HMAC-SHA512 keyed by the merchant's
secret key and sends the hex digest in the ``monnify-signature`` header. The
transaction itself sits under ``eventData``; older integrations post it bare.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..domain import PaymentStatus
from ..errors import InvalidSignature, PayloadError
from ..utils import webhook_signing
from ..utils.clock import as_utc
from .base import IGNORED, PaymentOutcome, PaymentReconciler, ReconcileResult

logger = logging.getLogger("wawa.payments")

STATUS_MAP = {
    "PAID": PaymentStatus.PAID,
    "OVERPAID": PaymentStatus.PAID,
    "FAILED": PaymentStatus.FAILED,
    "EXPIRED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
}

METHOD_NAMES = {
    "CARD": "Card Payment",
    "ACCOUNT_TRANSFER": "Bank Transfer",
    "USSD": "USSD",
    "PHONE_NUMBER": "Phone Number",
}

# collection events; refunds, settlements and disbursements are acknowledged only
COLLECTION_EVENTS = {"SUCCESSFUL_TRANSACTION", "FAILED_TRANSACTION", "REJECTED_PAYMENT"}


class MonnifyTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_reference: str = Field(alias="paymentReference", min_length=1)
    transaction_reference: Optional[str] = Field(default=None, alias="transactionReference")
    payment_status: str = Field(alias="paymentStatus")
    amount_paid: Optional[float] = Field(default=None, alias="amountPaid")
    paid_on: Optional[str] = Field(default=None, alias="paidOn")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")


def map_status(gateway_status: str) -> PaymentStatus:
    return STATUS_MAP.get(gateway_status.upper(), PaymentStatus.PENDING)


def _paid_on(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        logger.warning("unreadable monnify paidOn %r", value)
        return None


class MonnifyGateway:
    name = "monnify"
    signature_header = "monnify-signature"

    def __init__(self, secret_key: str, reconciler: PaymentReconciler) -> None:
        self._secret_key = secret_key
        self._reconciler = reconciler

    def reconcile(self, raw_body: bytes, signature: Optional[str]) -> ReconcileResult:
        """Authenticate, parse and apply one Monnify callback."""

        if not webhook_signing.verify(self._secret_key, raw_body, signature or ""):
            logger.warning(
                "rejected monnify callback with bad signature", extra={"gateway": self.name}
            )
            raise InvalidSignature("monnify signature mismatch")
        outcome = self.parse(raw_body)
        if outcome is None:
            return ReconcileResult(IGNORED)
        return self._reconciler.apply(outcome)

    def parse(self, raw_body: bytes) -> Optional[PaymentOutcome]:
        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise PayloadError("monnify body is not JSON") from exc
        if not isinstance(body, dict):
            raise PayloadError("monnify body must be an object")
        event_type = body.get("eventType")
        if event_type is not None and event_type not in COLLECTION_EVENTS:
            logger.info("ignoring monnify %s event", event_type, extra={"gateway": self.name})
            return None
        try:
            txn = MonnifyTransaction.model_validate(body.get("eventData") or body)
        except ValidationError as exc:
            raise PayloadError(
                "malformed monnify transaction",
                fields=[".".join(map(str, err["loc"])) for err in exc.errors()],
            ) from exc

        status = map_status(txn.payment_status)
        method = METHOD_NAMES.get(txn.payment_method or "", txn.payment_method or "Monnify")
        logger.info(
            "monnify callback %s",
            txn.payment_status,
            extra={"gateway": self.name, "reference": txn.payment_reference},
        )
        return PaymentOutcome(
            gateway=self.name,
            reference=txn.payment_reference,
            status=status,
            transaction_reference=txn.transaction_reference,
            paid_at=_paid_on(txn.paid_on),
            amount=int(txn.amount_paid) if txn.amount_paid is not None else None,
            note=f"Payment confirmed via {method}" if status is PaymentStatus.PAID else None,
        )


__all__ = ["MonnifyGateway", "MonnifyTransaction", "STATUS_MAP", "map_status"]
