# audit.py

"""Audit logging sink and retention helper.

Every privileged mutation in the core ends with a call to
:meth:`AuditLogSink.log_event`. The entry is written in its own session so
that a failing audit write can never roll back the operation it describes;
such failures are logged and swallowed.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import get_settings

from .domain import Actor
from .models import AuditLog
from .utils.clock import utcnow

logger = logging.getLogger("wawa.audit")


class AuditLogSink:
    """Persist ``{actor, action, resource, resource_id, details}`` rows."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def log_event(
        self,
        actor: Actor,
        action: str,
        resource: str,
        resource_id: Any = None,
        details: Optional[dict] = None,
    ) -> bool:
        """Append an audit entry; return ``False`` if it could not be stored."""

        try:
            with self._session_factory() as session:
                session.add(
                    AuditLog(
                        at=utcnow(),
                        actor=actor.label,
                        actor_role=actor.role,
                        action=action,
                        resource=resource,
                        resource_id=None if resource_id is None else str(resource_id),
                        details=details,
                    )
                )
                session.commit()
        except SQLAlchemyError:
            logger.exception("audit entry %s on %s %s lost", action, resource, resource_id)
            return False
        return True

    def purge_old_logs(self, days: Optional[int] = None) -> int:
        """Delete audit rows older than ``days`` and return number purged.

        If ``days`` is omitted the retention period from
        :func:`config.get_settings` is used.
        """

        retention = days or get_settings().audit_retention_days
        cutoff = utcnow() - timedelta(days=retention)
        with self._session_factory() as session:
            removed = session.execute(delete(AuditLog).where(AuditLog.at < cutoff))
            session.commit()
        return removed.rowcount


__all__ = ["AuditLogSink"]
