"""Structured logging configuration.

This module initializes structlog with a stable JSON event format.
Modules log snake_case event names with keyword fields.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import structlog

_CONFIGURE_LOCK = threading.Lock()
_configured = False


def get_logger(name: str) -> Any:
    """Return a module logger instance.

    Args:
        name: Logger name, usually __name__.

    Returns:
        A structlog logger rendering JSON lines at INFO and above.
    """
    _configure_once()
    return structlog.get_logger(name)


def _configure_once() -> None:
    global _configured
    with _CONFIGURE_LOCK:
        if _configured:
            return
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.add_log_level,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
            cache_logger_on_first_use=True,
        )
        _configured = True
