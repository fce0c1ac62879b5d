from __future__ import annotations

from fastapi import Request

from ..core import Core


def get_core(request: Request) -> Core:
    """Return the :class:`Core` wired at startup."""

    return request.app.state.core
