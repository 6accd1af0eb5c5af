"""Periodic jobs: hold expiration, reminders, high-demand alerts and daily report.

Every job is stateless between invocations. The external scheduler (cron or
`scripts/run_sweep.py`) decides the cadence; running a job twice in a row is
safe because each transition is conditional on the current status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from backend.domain import events
from backend.domain.models import ReminderTier, ReservationStatus, SlotKey
from backend.repository.data_repository import DataRepository, DemandGroup
from backend.services.notification_service import (
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from backend.services.queue_service import QueueService
from backend.utils.clock import resolve_now
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, log_transition


logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepResult:
    expired_count: int
    expired_ids: list[str]
    reminders: dict[ReminderTier, list[str]]
    notified_entry_ids: list[str]

    def reminder_counts(self) -> dict[str, int]:
        return {tier.value: len(ids) for tier, ids in self.reminders.items()}


@dataclass(frozen=True)
class SlotQueueLoad:
    slot_key: SlotKey
    entry_count: int


@dataclass(frozen=True)
class DailyReport:
    window_start: datetime
    window_end: datetime
    reservations_created: int
    reservations_expired: int
    reservations_converted: int
    active_queue_entries: int
    large_queues: list[SlotQueueLoad] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "reservations_created": self.reservations_created,
            "reservations_expired": self.reservations_expired,
            "reservations_converted": self.reservations_converted,
            "active_queue_entries": self.active_queue_entries,
            "large_queues": [
                {"slot": load.slot_key.to_dict(), "entry_count": load.entry_count}
                for load in self.large_queues
            ],
            "alerts": list(self.alerts),
        }


@dataclass(frozen=True)
class JobsResult:
    sweep: SweepResult
    high_demand: list[DemandGroup]
    report: DailyReport


class SweeperService:
    """Runs the scheduler-driven maintenance jobs against the store."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        queue_service: Optional[QueueService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)
        self._dispatcher = dispatcher or OutboxNotificationDispatcher(self._repository)
        self._queue = queue_service or QueueService(
            repository=self._repository,
            dispatcher=self._dispatcher,
            settings=self._settings,
        )

    def classify(self, hours_until_expiry: float) -> Optional[ReminderTier]:
        """Map remaining hours to a reminder tier; `None` past the early bound."""
        if hours_until_expiry <= self._settings.reminder_tier_urgent_hours:
            return ReminderTier.TIER_2H
        if hours_until_expiry <= self._settings.reminder_tier_mid_hours:
            return ReminderTier.TIER_12H
        if hours_until_expiry <= self._settings.reminder_tier_early_hours:
            return ReminderTier.TIER_24H
        return None

    def sweep(self, *, now: Optional[datetime] = None) -> SweepResult:
        current = resolve_now(now)
        active = self._repository.list_reservations_by_status(ReservationStatus.ACTIVE)

        due = []
        reminders: dict[ReminderTier, list[str]] = {tier: [] for tier in ReminderTier}
        pending_reminders = []
        for reservation in active:
            hours_left = reservation.hours_until_expiry(current)
            if hours_left <= 0:
                due.append(reservation)
                continue
            tier = self.classify(hours_left)
            if tier is not None:
                pending_reminders.append((reservation, tier, hours_left))

        expired_ids = self._repository.expire_reservations(
            [reservation.id for reservation in due],
            current,
        )
        expired = set(expired_ids)
        freed_slots: list[SlotKey] = []
        for reservation in due:
            if reservation.id not in expired:
                continue
            log_transition(
                logger,
                "reservation",
                reservation.id,
                ReservationStatus.ACTIVE.value,
                ReservationStatus.EXPIRED.value,
                vendor=reservation.vendor_id,
            )
            if reservation.slot_key not in freed_slots:
                freed_slots.append(reservation.slot_key)

        notified_entry_ids: list[str] = []
        for slot_key in freed_slots:
            entry = self._queue.notify_on_free(slot_key, reason="expired", now=current)
            if entry is not None:
                notified_entry_ids.append(entry.id)

        for reservation, tier, hours_left in pending_reminders:
            reminders[tier].append(reservation.id)
            self._dispatcher.emit(events.reminder(reservation, tier, hours_left, current))

        result = SweepResult(
            expired_count=len(expired_ids),
            expired_ids=expired_ids,
            reminders=reminders,
            notified_entry_ids=notified_entry_ids,
        )
        logger.info(
            "Sweep at %s: expired=%s reminders=%s notified=%s",
            current.isoformat(),
            result.expired_count,
            result.reminder_counts(),
            len(notified_entry_ids),
        )
        return result

    def check_high_demand(self, *, now: Optional[datetime] = None) -> list[DemandGroup]:
        current = resolve_now(now)
        since = current - timedelta(hours=self._settings.high_demand_window_hours)
        groups = [
            group
            for group in self._repository.list_demand_groups(since)
            if group.entry_count >= self._settings.high_demand_threshold
        ]
        for group in groups:
            logger.warning(
                "High demand on %s %s..%s: %s active entries",
                group.space_id,
                group.date_start,
                group.date_end,
                group.entry_count,
            )
            self._dispatcher.emit(
                events.high_demand(
                    self._settings.operator_recipient_id,
                    group.space_id,
                    group.date_start,
                    group.date_end,
                    group.entry_count,
                    current,
                )
            )
        return groups

    def daily_report(self, *, now: Optional[datetime] = None) -> DailyReport:
        current = resolve_now(now)
        since = current - timedelta(hours=24)
        created = self._repository.count_reservations_created(since, current)
        expired = self._repository.count_reservations_moved_to(
            ReservationStatus.EXPIRED,
            since,
            current,
        )
        converted = self._repository.count_reservations_moved_to(
            ReservationStatus.CONVERTED,
            since,
            current,
        )
        loads = self._repository.count_active_queue_by_slot()
        large_queues = [
            SlotQueueLoad(slot_key=slot_key, entry_count=count)
            for slot_key, count in loads
            if count >= self._settings.high_demand_threshold
        ]

        alerts: list[str] = []
        if created > 0:
            expired_ratio = expired / created
            converted_ratio = converted / created
            if expired_ratio > self._settings.report_expired_ratio_alert:
                alerts.append(
                    f"High expiration rate: {expired}/{created} holds expired "
                    f"({expired_ratio:.0%})"
                )
            if converted_ratio < self._settings.report_converted_ratio_alert:
                alerts.append(
                    f"Low conversion rate: {converted}/{created} holds converted "
                    f"({converted_ratio:.0%})"
                )
        for load in large_queues:
            alerts.append(f"Large queue on {load.slot_key}: {load.entry_count} vendors waiting")

        report = DailyReport(
            window_start=since,
            window_end=current,
            reservations_created=created,
            reservations_expired=expired,
            reservations_converted=converted,
            active_queue_entries=sum(count for _, count in loads),
            large_queues=large_queues,
            alerts=alerts,
        )
        self._dispatcher.emit(
            events.daily_report(
                self._settings.operator_recipient_id,
                report.to_payload(),
                current,
            )
        )
        logger.info(
            "Daily report: created=%s expired=%s converted=%s alerts=%s",
            created,
            expired,
            converted,
            len(alerts),
        )
        return report

    def run_jobs(self, *, now: Optional[datetime] = None) -> JobsResult:
        current = resolve_now(now)
        return JobsResult(
            sweep=self.sweep(now=current),
            high_demand=self.check_high_demand(now=current),
            report=self.daily_report(now=current),
        )
