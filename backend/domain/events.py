"""Outbound events handed to the notification dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from backend.domain.models import (
    ReminderTier,
    SlotKey,
    TemporaryReservation,
    WaitingQueueEntry,
)


RESERVATION_CREATED = "reservation-created"
SLOT_AVAILABLE = "slot-available"
REMINDER = "reminder"
QUEUE_POSITION_UPDATED = "queue-position-updated"
HIGH_DEMAND = "high-demand"
DAILY_REPORT = "daily-report"


@dataclass(frozen=True)
class DomainEvent:
    kind: str
    recipient_id: str
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


def reservation_created(reservation: TemporaryReservation, now: datetime) -> DomainEvent:
    return DomainEvent(
        kind=RESERVATION_CREATED,
        recipient_id=reservation.vendor_id,
        occurred_at=now,
        payload={
            "reservation_id": reservation.id,
            "client_id": reservation.client_id,
            "slot": reservation.slot_key.to_dict(),
            "expires_at": reservation.expires_at.isoformat(),
        },
    )


def slot_available(
    entry: WaitingQueueEntry,
    slot_key: SlotKey,
    reason: str,
    now: datetime,
) -> DomainEvent:
    return DomainEvent(
        kind=SLOT_AVAILABLE,
        recipient_id=entry.vendor_id,
        occurred_at=now,
        payload={
            "entry_id": entry.id,
            "slot": slot_key.to_dict(),
            "reason": reason,
        },
    )


def reminder(
    reservation: TemporaryReservation,
    tier: ReminderTier,
    hours_left: float,
    now: datetime,
) -> DomainEvent:
    return DomainEvent(
        kind=REMINDER,
        recipient_id=reservation.vendor_id,
        occurred_at=now,
        payload={
            "reservation_id": reservation.id,
            "tier": tier.value,
            "hours_left": round(hours_left, 2),
            "slot": reservation.slot_key.to_dict(),
        },
    )


def queue_position_updated(entry: WaitingQueueEntry, now: datetime) -> DomainEvent:
    return DomainEvent(
        kind=QUEUE_POSITION_UPDATED,
        recipient_id=entry.vendor_id,
        occurred_at=now,
        payload={
            "entry_id": entry.id,
            "position": entry.position,
            "score": entry.score,
            "slot": entry.slot_key.to_dict(),
        },
    )


def high_demand(
    recipient_id: str,
    space_id: str,
    date_start: str,
    date_end: str,
    entry_count: int,
    now: datetime,
) -> DomainEvent:
    return DomainEvent(
        kind=HIGH_DEMAND,
        recipient_id=recipient_id,
        occurred_at=now,
        payload={
            "space_id": space_id,
            "date_start": date_start,
            "date_end": date_end,
            "entry_count": entry_count,
        },
    )


def daily_report(recipient_id: str, report: dict[str, Any], now: datetime) -> DomainEvent:
    return DomainEvent(
        kind=DAILY_REPORT,
        recipient_id=recipient_id,
        occurred_at=now,
        payload=report,
    )
