from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from backend.domain import events
from backend.domain.models import (
    QueueEntryStatus,
    ReminderTier,
    ReservationStatus,
    resolve_slot_key,
)
from backend.repository.data_repository import DataRepository
from backend.services.notification_service import InMemoryNotificationDispatcher
from backend.services.queue_service import QueueService
from backend.services.reservation_service import ReservationService
from backend.services.sweeper_service import SweeperService
from backend.utils.config import get_settings


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
SLOT = resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "18:00", "23:00")


def _build_services(tmp_path, **overrides):
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / "sweeper.db", **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    dispatcher = InMemoryNotificationDispatcher()
    queue = QueueService(repository=repository, dispatcher=dispatcher, settings=settings)
    reservations = ReservationService(
        repository=repository,
        queue_service=queue,
        dispatcher=dispatcher,
        settings=settings,
    )
    sweeper = SweeperService(
        repository=repository,
        queue_service=queue,
        dispatcher=dispatcher,
        settings=settings,
    )
    return repository, reservations, queue, sweeper, dispatcher


def _slot(space_id: str):
    return resolve_slot_key(space_id, "2026-04-10", "2026-04-10", "18:00", "23:00")


def test_expired_hold_frees_slot_for_queue_head(tmp_path):
    repository, reservations, queue, sweeper, dispatcher = _build_services(tmp_path)
    reservation = reservations.create("V1", "client-1", SLOT, hold_duration_hours=1, now=NOW)
    waiting = queue.enroll("V2", SLOT, now=NOW + timedelta(minutes=1))
    assert waiting.position == 1

    result = sweeper.sweep(now=NOW + timedelta(minutes=61))

    assert result.expired_ids == [reservation.id]
    assert result.expired_count == 1
    assert result.notified_entry_ids == [waiting.id]
    assert repository.get_reservation(reservation.id).status is ReservationStatus.EXPIRED
    assert queue.get_entry(waiting.id).status is QueueEntryStatus.NOTIFIED
    assert [event.recipient_id for event in dispatcher.of_kind(events.SLOT_AVAILABLE)] == ["V2"]


def test_sweep_is_idempotent(tmp_path):
    _, reservations, queue, sweeper, dispatcher = _build_services(tmp_path)
    reservations.create("V1", "client-1", SLOT, hold_duration_hours=1, now=NOW)
    queue.enroll("V2", SLOT, now=NOW)
    queue.enroll("V3", SLOT, now=NOW + timedelta(minutes=1))
    later = NOW + timedelta(hours=2)

    first = sweeper.sweep(now=later)
    second = sweeper.sweep(now=later)

    assert first.expired_count == 1
    assert second.expired_count == 0
    assert second.notified_entry_ids == []
    assert len(dispatcher.of_kind(events.SLOT_AVAILABLE)) == 1


def test_one_notification_per_distinct_slot(tmp_path):
    _, reservations, queue, sweeper, dispatcher = _build_services(tmp_path)
    reservations.create("V1", "client-1", SLOT, hold_duration_hours=1, now=NOW)
    reservations.create("V4", "client-2", SLOT, hold_duration_hours=1, now=NOW)
    queue.enroll("V2", SLOT, now=NOW)
    queue.enroll("V3", SLOT, now=NOW + timedelta(minutes=1))

    result = sweeper.sweep(now=NOW + timedelta(hours=2))

    assert result.expired_count == 2
    assert len(result.notified_entry_ids) == 1
    assert len(dispatcher.of_kind(events.SLOT_AVAILABLE)) == 1


@pytest.mark.parametrize(
    ("hold_hours", "expected_tier"),
    [
        (1.5, ReminderTier.TIER_2H),
        (2, ReminderTier.TIER_2H),
        (2.5, ReminderTier.TIER_12H),
        (12, ReminderTier.TIER_12H),
        (13, ReminderTier.TIER_24H),
        (24, ReminderTier.TIER_24H),
    ],
)
def test_reminder_tier_boundaries(tmp_path, hold_hours, expected_tier):
    repository, reservations, _, sweeper, dispatcher = _build_services(tmp_path)
    reservation = reservations.create(
        "V1",
        "client-1",
        SLOT,
        hold_duration_hours=hold_hours,
        now=NOW,
    )

    result = sweeper.sweep(now=NOW)

    assert result.reminders[expected_tier] == [reservation.id]
    for tier, ids in result.reminders.items():
        if tier is not expected_tier:
            assert ids == []
    assert repository.get_reservation(reservation.id).status is ReservationStatus.ACTIVE
    reminders = dispatcher.of_kind(events.REMINDER)
    assert len(reminders) == 1
    assert reminders[0].payload["tier"] == expected_tier.value


def test_far_deadline_gets_no_reminder(tmp_path):
    _, reservations, _, sweeper, dispatcher = _build_services(tmp_path)
    reservations.create("V1", "client-1", SLOT, hold_duration_hours=48, now=NOW)

    result = sweeper.sweep(now=NOW)

    assert result.reminder_counts() == {"24h": 0, "12h": 0, "2h": 0}
    assert dispatcher.of_kind(events.REMINDER) == []


def test_reminders_repeat_across_sweeps(tmp_path):
    _, reservations, _, sweeper, dispatcher = _build_services(tmp_path)
    reservations.create("V1", "client-1", SLOT, hold_duration_hours=10, now=NOW)

    sweeper.sweep(now=NOW)
    sweeper.sweep(now=NOW + timedelta(minutes=15))

    assert len(dispatcher.of_kind(events.REMINDER)) == 2


def test_terminal_reservations_are_not_swept(tmp_path):
    repository, reservations, _, sweeper, _ = _build_services(tmp_path)
    converted = reservations.create("V1", "client-1", _slot("r1"), hold_duration_hours=1, now=NOW)
    released = reservations.create("V1", "client-1", _slot("r2"), hold_duration_hours=1, now=NOW)
    cancelled = reservations.create("V1", "client-1", _slot("r3"), hold_duration_hours=1, now=NOW)
    reservations.convert(converted.id, "V1", "P123", now=NOW + timedelta(minutes=30))
    reservations.release(released.id, "V1", now=NOW + timedelta(minutes=30))
    reservations.cancel(cancelled.id, "V1", now=NOW + timedelta(minutes=30))

    result = sweeper.sweep(now=NOW + timedelta(days=3))

    assert result.expired_count == 0
    assert repository.get_reservation(converted.id).status is ReservationStatus.CONVERTED
    assert repository.get_reservation(converted.id).converted_proposal_id == "P123"
    assert repository.get_reservation(released.id).status is ReservationStatus.RELEASED
    assert repository.get_reservation(cancelled.id).status is ReservationStatus.CANCELLED


def test_high_demand_groups_by_space_and_dates(tmp_path):
    _, _, queue, sweeper, dispatcher = _build_services(tmp_path, high_demand_threshold=3)
    evening = SLOT
    morning = resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "08:00", "11:00")
    queue.enroll("V1", evening, now=NOW - timedelta(hours=1))
    queue.enroll("V2", evening, now=NOW - timedelta(hours=2))
    queue.enroll("V3", morning, now=NOW - timedelta(hours=3))
    queue.enroll("V4", _slot("hall-b"), now=NOW - timedelta(hours=1))
    queue.enroll("V5", _slot("hall-b"), now=NOW - timedelta(hours=30))

    groups = sweeper.check_high_demand(now=NOW)

    assert [(group.space_id, group.entry_count) for group in groups] == [("hall-a", 3)]
    alerts = dispatcher.of_kind(events.HIGH_DEMAND)
    assert len(alerts) == 1
    assert alerts[0].recipient_id == "operator"
    assert alerts[0].payload["space_id"] == "hall-a"


def test_daily_report_raises_ratio_alerts(tmp_path):
    _, reservations, _, sweeper, dispatcher = _build_services(tmp_path)
    start = NOW - timedelta(hours=20)
    for index in range(4):
        reservations.create("V1", "client-1", _slot(f"room-{index}"), hold_duration_hours=1, now=start)
    sweeper.sweep(now=start + timedelta(hours=2))

    report = sweeper.daily_report(now=NOW)

    assert report.reservations_created == 4
    assert report.reservations_expired == 4
    assert report.reservations_converted == 0
    assert any(alert.startswith("High expiration rate") for alert in report.alerts)
    assert any(alert.startswith("Low conversion rate") for alert in report.alerts)
    published = dispatcher.of_kind(events.DAILY_REPORT)
    assert len(published) == 1
    assert published[0].payload["reservations_created"] == 4


def test_daily_report_without_activity_has_no_alerts(tmp_path):
    _, _, _, sweeper, _ = _build_services(tmp_path)

    report = sweeper.daily_report(now=NOW)

    assert report.reservations_created == 0
    assert report.alerts == []


def test_run_jobs_runs_all_three(tmp_path):
    _, reservations, _, sweeper, dispatcher = _build_services(tmp_path)
    reservations.create("V1", "client-1", SLOT, hold_duration_hours=1, now=NOW)

    result = sweeper.run_jobs(now=NOW + timedelta(hours=2))

    assert result.sweep.expired_count == 1
    assert result.high_demand == []
    assert result.report.reservations_expired == 1
    assert len(dispatcher.of_kind(events.DAILY_REPORT)) == 1
