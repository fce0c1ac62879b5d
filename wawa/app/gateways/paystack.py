"""Paystack charge webhooks.

Paystack signs the raw body with HMAC-SHA512 keyed by the secret key and puts
the hex digest in ``x-paystack-signature``. Only ``charge.success`` carries a
payment outcome for us; every other event is acknowledged and dropped.
Amounts arrive in kobo.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..domain import PaymentStatus
from ..errors import InvalidSignature, PayloadError
from ..utils import webhook_signing
from ..utils.clock import as_utc
from .base import IGNORED, PaymentOutcome, PaymentReconciler, ReconcileResult

logger = logging.getLogger("wawa.payments")

CHARGE_SUCCESS = "charge.success"


class PaystackCharge(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reference: str = Field(min_length=1)
    status: str
    id: Optional[Union[int, str]] = None
    amount: Optional[int] = None
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None


class PaystackEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    data: dict = {}


def map_status(charge_status: str) -> PaymentStatus:
    return PaymentStatus.PAID if charge_status == "success" else PaymentStatus.FAILED


class PaystackGateway:
    name = "paystack"
    signature_header = "x-paystack-signature"

    def __init__(self, secret_key: str, reconciler: PaymentReconciler) -> None:
        self._secret_key = secret_key
        self._reconciler = reconciler

    def reconcile(self, raw_body: bytes, signature: Optional[str]) -> ReconcileResult:
        """Authenticate, parse and apply one Paystack callback."""

        if not webhook_signing.verify(self._secret_key, raw_body, signature or ""):
            logger.warning(
                "rejected paystack callback with bad signature", extra={"gateway": self.name}
            )
            raise InvalidSignature("paystack signature mismatch")
        outcome = self.parse(raw_body)
        if outcome is None:
            return ReconcileResult(IGNORED)
        return self._reconciler.apply(outcome)

    def parse(self, raw_body: bytes) -> Optional[PaymentOutcome]:
        try:
            event = PaystackEvent.model_validate(json.loads(raw_body))
        except ValueError as exc:
            # ValidationError is a ValueError too
            raise PayloadError("paystack body is not a JSON event") from exc
        if event.event != CHARGE_SUCCESS:
            logger.info("ignoring paystack %s event", event.event, extra={"gateway": self.name})
            return None
        try:
            charge = PaystackCharge.model_validate(event.data)
        except ValidationError as exc:
            raise PayloadError(
                "malformed paystack charge",
                fields=[".".join(map(str, err["loc"])) for err in exc.errors()],
            ) from exc

        status = map_status(charge.status)
        logger.info(
            "paystack charge %s",
            charge.status,
            extra={"gateway": self.name, "reference": charge.reference},
        )
        return PaymentOutcome(
            gateway=self.name,
            reference=charge.reference,
            status=status,
            transaction_reference=str(charge.id) if charge.id is not None else None,
            paid_at=as_utc(charge.paid_at),
            amount=charge.amount // 100 if charge.amount is not None else None,
            note=(
                f"Payment confirmed via Paystack ({charge.channel or 'unknown'})"
                if status is PaymentStatus.PAID
                else f"Paystack payment status: {charge.status}"
            ),
        )


__all__ = ["PaystackGateway", "PaystackCharge", "CHARGE_SUCCESS", "map_status"]
