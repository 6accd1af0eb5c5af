"""Structured logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from backend.utils.config import get_settings


_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Every module logs through the same handler so state transitions emitted by
    the API process and the scheduler process share one format.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(
        level=resolved_level,
        format=(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        ),
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def log_transition(
    logger: logging.Logger,
    record_kind: str,
    record_id: str,
    from_status: Optional[str],
    to_status: str,
    **context: object,
) -> None:
    """Emit one INFO line per status change in a grep-friendly shape."""
    details = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
    logger.info(
        "%s %s: %s -> %s%s",
        record_kind,
        record_id,
        from_status or "new",
        to_status,
        f" | {details}" if details else "",
    )
