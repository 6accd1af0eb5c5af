"""Allowed status transitions for reservations and queue entries.

Every mutating service operation checks its target status here before it
touches the store, so the lifecycle lives in one table instead of being
re-derived at each call site.
"""

from __future__ import annotations

from backend.domain.models import QueueEntryStatus, ReservationStatus


class TransitionError(Exception):
    """Raised when a status change is not part of the lifecycle."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Transition {current} -> {target} is not allowed")
        self.current = current
        self.target = target


RESERVATION_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.ACTIVE: frozenset(
        {
            ReservationStatus.EXPIRED,
            ReservationStatus.CONVERTED,
            ReservationStatus.RELEASED,
            ReservationStatus.CANCELLED,
        }
    ),
    ReservationStatus.EXPIRED: frozenset(),
    ReservationStatus.CONVERTED: frozenset(),
    ReservationStatus.RELEASED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}

QUEUE_ENTRY_TRANSITIONS: dict[QueueEntryStatus, frozenset[QueueEntryStatus]] = {
    QueueEntryStatus.ACTIVE: frozenset({QueueEntryStatus.NOTIFIED, QueueEntryStatus.REMOVED}),
    QueueEntryStatus.NOTIFIED: frozenset({QueueEntryStatus.REMOVED}),
    QueueEntryStatus.REMOVED: frozenset(),
}


def is_terminal(status: ReservationStatus) -> bool:
    return not RESERVATION_TRANSITIONS[status]


def ensure_reservation_transition(
    current: ReservationStatus,
    target: ReservationStatus,
) -> None:
    if target not in RESERVATION_TRANSITIONS[current]:
        raise TransitionError(current.value, target.value)


def ensure_queue_transition(
    current: QueueEntryStatus,
    target: QueueEntryStatus,
) -> None:
    if target not in QUEUE_ENTRY_TRANSITIONS[current]:
        raise TransitionError(current.value, target.value)
