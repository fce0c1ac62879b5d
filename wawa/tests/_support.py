"""Menu constants, a hand-driven clock and gateway payload builders."""

import json
from datetime import datetime, timedelta

from wawa.app.domain import Actor
from wawa.app.utils.webhook_signing import sign

JOLLOF, CHAPMAN, SUYA = 1, 2, 3

ADMIN = Actor(id="admin-1", role="admin")
KITCHEN = Actor(id="kitchen-1", role="kitchen-staff")

STAFF_HEADERS = {"X-User-Id": "kitchen-1", "X-User-Role": "kitchen-staff"}
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
CUSTOMER_HEADERS = {"X-User-Id": "user-1", "X-User-Role": "customer"}


class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


def monnify_body(
    reference: str,
    status: str = "PAID",
    *,
    method: str = "CARD",
    event_type: str = "SUCCESSFUL_TRANSACTION",
    amount: float = 5000.0,
) -> bytes:
    return json.dumps(
        {
            "eventType": event_type,
            "eventData": {
                "paymentReference": reference,
                "transactionReference": "MNFY|20250314|000123",
                "paymentStatus": status,
                "amountPaid": amount,
                "paidOn": "2025-03-14 12:00:00.000",
                "paymentMethod": method,
            },
        }
    ).encode()


def paystack_body(
    reference: str,
    status: str = "success",
    *,
    event: str = "charge.success",
    amount_kobo: int = 500000,
) -> bytes:
    return json.dumps(
        {
            "event": event,
            "data": {
                "id": 4099260516,
                "reference": reference,
                "status": status,
                "amount": amount_kobo,
                "paid_at": "2025-03-14T12:00:00.000Z",
                "channel": "card",
            },
        }
    ).encode()


def monnify_signature(core, body: bytes) -> str:
    return sign(core.settings.monnify_secret_key, body)


def paystack_signature(core, body: bytes) -> str:
    return sign(core.settings.paystack_secret_key, body)
