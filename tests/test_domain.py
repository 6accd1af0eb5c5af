from __future__ import annotations

import pytest

from backend.domain.constraints import validate_hold_duration, validate_slot
from backend.domain.models import QueueEntryStatus, ReservationStatus, resolve_slot_key, slots_overlap
from backend.domain.state_machine import (
    TransitionError,
    ensure_queue_transition,
    ensure_reservation_transition,
    is_terminal,
)


def test_resolve_slot_key_is_structural_and_trims():
    first = resolve_slot_key(" hall-a ", "2026-04-10", "2026-04-10 ", "18:00", "23:00")
    second = resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "18:00", "23:00")

    assert first == second
    assert hash(first) == hash(second)
    assert {first: 1}[second] == 1


def test_validate_slot_accepts_multi_day_range_with_any_times():
    validate_slot(resolve_slot_key("hall-a", "2026-04-10", "2026-04-12", "22:00", "02:00"))


@pytest.mark.parametrize(
    ("fields", "message"),
    [
        (("hall-a", "2026-04-10", "2026-04-09", "10:00", "12:00"), "date_start"),
        (("hall-a", "2026-04-10", "2026-04-10", "12:00", "12:00"), "time_start"),
        (("hall-a", "10/04/2026", "2026-04-10", "10:00", "12:00"), "YYYY-MM-DD"),
        (("hall-a", "2026-04-10", "2026-04-10", "24:00", "12:00"), "HH:MM"),
        (("hall-a", "2026-13-01", "2026-13-01", "10:00", "12:00"), "calendar"),
    ],
)
def test_validate_slot_rejects(fields, message):
    with pytest.raises(ValueError, match=message):
        validate_slot(resolve_slot_key(*fields))


def test_validate_hold_duration_bounds():
    validate_hold_duration(0.5, 168)
    validate_hold_duration(168, 168)
    with pytest.raises(ValueError):
        validate_hold_duration(0, 168)
    with pytest.raises(ValueError):
        validate_hold_duration(168.5, 168)


def test_slots_overlap_rules():
    base = resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "18:00", "23:00")

    assert slots_overlap(base, resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "22:00", "23:30"))
    assert slots_overlap(base, resolve_slot_key("hall-a", "2026-04-09", "2026-04-11", "19:00", "20:00"))
    # Touching windows do not overlap.
    assert not slots_overlap(base, resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "23:00", "23:59"))
    assert not slots_overlap(base, resolve_slot_key("hall-b", "2026-04-10", "2026-04-10", "18:00", "23:00"))
    assert not slots_overlap(base, resolve_slot_key("hall-a", "2026-04-11", "2026-04-11", "18:00", "23:00"))


@pytest.mark.parametrize(
    "target",
    [
        ReservationStatus.EXPIRED,
        ReservationStatus.CONVERTED,
        ReservationStatus.RELEASED,
        ReservationStatus.CANCELLED,
    ],
)
def test_active_reservation_can_reach_every_terminal_state(target):
    ensure_reservation_transition(ReservationStatus.ACTIVE, target)
    assert is_terminal(target)


@pytest.mark.parametrize(
    "current",
    [
        ReservationStatus.EXPIRED,
        ReservationStatus.CONVERTED,
        ReservationStatus.RELEASED,
        ReservationStatus.CANCELLED,
    ],
)
def test_terminal_reservation_states_reject_everything(current):
    for target in ReservationStatus:
        with pytest.raises(TransitionError):
            ensure_reservation_transition(current, target)


def test_queue_entry_lifecycle():
    ensure_queue_transition(QueueEntryStatus.ACTIVE, QueueEntryStatus.NOTIFIED)
    ensure_queue_transition(QueueEntryStatus.ACTIVE, QueueEntryStatus.REMOVED)
    ensure_queue_transition(QueueEntryStatus.NOTIFIED, QueueEntryStatus.REMOVED)
    with pytest.raises(TransitionError):
        ensure_queue_transition(QueueEntryStatus.NOTIFIED, QueueEntryStatus.ACTIVE)
    with pytest.raises(TransitionError):
        ensure_queue_transition(QueueEntryStatus.REMOVED, QueueEntryStatus.ACTIVE)
    assert not is_terminal(ReservationStatus.ACTIVE)
