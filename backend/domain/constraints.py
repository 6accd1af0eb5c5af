"""Domain-level validation rules for slots and hold durations."""

from __future__ import annotations

import re
from datetime import datetime

from backend.domain.models import SlotKey, time_to_minutes


_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def validate_slot(slot_key: SlotKey) -> None:
    if not slot_key.space_id:
        raise ValueError("space_id is required")
    for name in ("date_start", "date_end"):
        value = getattr(slot_key, name)
        if not value:
            raise ValueError(f"{name} is required")
        if _DATE_PATTERN.fullmatch(value) is None:
            raise ValueError(f"{name} must follow YYYY-MM-DD format")
        try:
            datetime.strptime(value, "%Y-%m-%d")
        except ValueError as exc:
            raise ValueError(f"{name} is not a valid calendar date") from exc
    for name in ("time_start", "time_end"):
        value = getattr(slot_key, name)
        if not value:
            raise ValueError(f"{name} is required")
        if _TIME_PATTERN.fullmatch(value) is None:
            raise ValueError(f"{name} must follow HH:MM 24-hour format")
    if slot_key.date_start > slot_key.date_end:
        raise ValueError("date_start must not be after date_end")
    if slot_key.date_start == slot_key.date_end and (
        time_to_minutes(slot_key.time_start) >= time_to_minutes(slot_key.time_end)
    ):
        raise ValueError("time_start must be before time_end on a single-day slot")


def validate_hold_duration(hours: float, max_hours: int) -> None:
    if hours <= 0:
        raise ValueError("hold_duration_hours must be > 0")
    if hours > max_hours:
        raise ValueError(f"hold_duration_hours must be <= {max_hours}")
