"""Domain models for temporary reservations and waiting queues."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CONVERTED = "converted"
    RELEASED = "released"
    CANCELLED = "cancelled"


class QueueEntryStatus(str, Enum):
    ACTIVE = "active"
    NOTIFIED = "notified"
    REMOVED = "removed"


# Statuses that still hold a rank in the slot queue.
RANKED_QUEUE_STATUSES = (QueueEntryStatus.ACTIVE, QueueEntryStatus.NOTIFIED)


class ReminderTier(str, Enum):
    TIER_24H = "24h"
    TIER_12H = "12h"
    TIER_2H = "2h"


@dataclass(frozen=True)
class SlotKey:
    """Identity of a bookable unit: one space over a date range and time window."""

    space_id: str
    date_start: str
    date_end: str
    time_start: str
    time_end: str

    def to_dict(self) -> dict[str, str]:
        return {
            "space_id": self.space_id,
            "date_start": self.date_start,
            "date_end": self.date_end,
            "time_start": self.time_start,
            "time_end": self.time_end,
        }

    def __str__(self) -> str:
        return (
            f"{self.space_id}@{self.date_start}..{self.date_end}"
            f" {self.time_start}-{self.time_end}"
        )


def resolve_slot_key(
    space_id: str,
    date_start: str,
    date_end: str,
    time_start: str,
    time_end: str,
) -> SlotKey:
    """Canonicalize raw slot fields into a SlotKey.

    Whitespace is stripped so call sites that read padded form values still
    group into the same slot.
    """
    return SlotKey(
        space_id=str(space_id).strip(),
        date_start=str(date_start).strip(),
        date_end=str(date_end).strip(),
        time_start=str(time_start).strip(),
        time_end=str(time_end).strip(),
    )


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def slots_overlap(first: SlotKey, second: SlotKey) -> bool:
    """True when both slots target the same space and share any date and time."""
    if first.space_id != second.space_id:
        return False
    if first.date_end < second.date_start or second.date_end < first.date_start:
        return False
    first_start = time_to_minutes(first.time_start)
    first_end = time_to_minutes(first.time_end)
    second_start = time_to_minutes(second.time_start)
    second_end = time_to_minutes(second.time_end)
    return not (first_end <= second_start or second_end <= first_start)


@dataclass(frozen=True)
class TemporaryReservation:
    id: str
    client_id: str
    vendor_id: str
    slot_key: SlotKey
    estimated_value: float
    observations: str
    status: ReservationStatus
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    converted_proposal_id: Optional[str] = None
    conversion_time_hours: Optional[float] = None

    def hours_until_expiry(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds() / 3600.0

    def is_past_deadline(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class WaitingQueueEntry:
    id: str
    vendor_id: str
    slot_key: SlotKey
    position: int
    score: int
    status: QueueEntryStatus
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class VendorScoreSnapshot:
    vendor_id: str
    base: int
    performance_bonus: int
    tenure_bonus: int
    degraded: bool = False

    @property
    def total(self) -> int:
        return self.base + self.performance_bonus + self.tenure_bonus


@dataclass(frozen=True)
class Vendor:
    id: str
    name: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class ConfirmedBooking:
    id: str
    slot_key: SlotKey
    status: str
    title: str


@dataclass(frozen=True)
class VendorActivity:
    """Trailing-window counters the scoring engine consumes."""

    vendor_id: str
    reservations_created: int
    conversions: int
    account_created_at: datetime
