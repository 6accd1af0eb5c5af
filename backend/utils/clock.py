"""UTC time helpers shared by services and persistence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) if now is not None else utc_now()


def to_storage(value: datetime) -> str:
    # Fixed-width text so SQL range comparisons stay lexicographically correct.
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_storage(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value))
