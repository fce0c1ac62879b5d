"""Notification enqueueing service."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models import AlertRule, NotificationOutbox

logger = logging.getLogger("wawa.notifications")

ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_PAID = "order.paid"
INVENTORY_LOW_STOCK = "inventory.low_stock"
REWARD_ISSUED = "reward.issued"


class OutboxNotifier:
    """Queue notifications for delivery by an external worker."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def notify(self, event: str, payload: dict) -> int:
        """Queue notifications for ``event`` based on enabled rules.

        Returns the number of outbox rows written. Store errors are logged and
        reported as zero; a notification never blocks the caller.
        """

        try:
            with self._session_factory() as session:
                rules = session.scalars(
                    select(AlertRule).where(
                        AlertRule.event == event, AlertRule.enabled.is_(True)
                    )
                ).all()
                for rule in rules:
                    session.add(
                        NotificationOutbox(
                            event=event,
                            payload=payload,
                            channel=rule.channel,
                            target=rule.target,
                        )
                    )
                session.commit()
        except SQLAlchemyError:
            logger.exception("notification %s not queued", event)
            return 0
        return len(rules)


__all__ = [
    "OutboxNotifier",
    "ORDER_STATUS_CHANGED",
    "ORDER_PAID",
    "INVENTORY_LOW_STOCK",
    "REWARD_ISSUED",
]
