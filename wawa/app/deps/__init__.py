"""FastAPI dependencies shared by the routers."""

from .actor import get_actor, role_required
from .core import get_core

__all__ = ["get_actor", "get_core", "role_required"]
