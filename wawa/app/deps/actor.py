"""Caller identity as handed over by the authentication gateway.

Authentication itself happens upstream; requests reach the core carrying the
verified identity in ``X-User-Id`` and ``X-User-Role``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..domain import Actor


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required"
        )
    return Actor(id=x_user_id, role=x_user_role)


def role_required(*roles: str):
    """Dependency factory enforcing that the caller has one of ``roles``."""

    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient privileges"
            )
        return actor

    return dependency
