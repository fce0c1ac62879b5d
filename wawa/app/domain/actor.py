"""Verified caller identity handed to the core by the auth layer."""

from __future__ import annotations

from dataclasses import dataclass

ADMIN_ROLES = frozenset({"admin", "super-admin"})
STAFF_ROLES = ADMIN_ROLES | {"kitchen-staff"}


@dataclass(frozen=True)
class Actor:
    """Who is performing a mutation.

    ``id`` is ``None`` for automated callers such as gateway callbacks and
    scheduled sweeps; ``role`` is what ends up in default history notes.
    """

    id: str | None
    role: str

    @property
    def label(self) -> str:
        return self.id or self.role

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


SYSTEM = Actor(id=None, role="system")
