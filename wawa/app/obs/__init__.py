"""Observability helpers."""

from .logging import JsonFormatter, RequestIdFilter, configure_logging

__all__ = ["JsonFormatter", "RequestIdFilter", "configure_logging"]
