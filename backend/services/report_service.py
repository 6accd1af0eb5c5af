"""Read-side views over reservations for listings and operator reports."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from backend.domain.models import ReservationStatus, TemporaryReservation
from backend.repository.data_repository import DataRepository, ReservationFilters
from backend.utils.clock import resolve_now
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class TimeRemaining:
    hours: int
    minutes: int
    seconds: int


@dataclass(frozen=True)
class ReservationView:
    reservation: TemporaryReservation
    time_remaining: Optional[TimeRemaining]
    expired_now: bool


@dataclass(frozen=True)
class ReservationStatistics:
    total: int
    by_status: dict[str, int]
    total_estimated_value: float
    expiring_within_24h: int
    conversion_rate: float


@dataclass(frozen=True)
class VendorMetrics:
    vendor_id: str
    reservations: int
    conversions: int
    conversion_rate: float
    mean_conversion_hours: Optional[float]


def time_remaining(reservation: TemporaryReservation, now: datetime) -> Optional[TimeRemaining]:
    if reservation.status is not ReservationStatus.ACTIVE:
        return None
    seconds_left = int((reservation.expires_at - now).total_seconds())
    if seconds_left <= 0:
        return None
    hours, remainder = divmod(seconds_left, 3600)
    minutes, seconds = divmod(remainder, 60)
    return TimeRemaining(hours=hours, minutes=minutes, seconds=seconds)


class ReportService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)

    def list_reservations(
        self,
        filters: ReservationFilters,
        *,
        now: Optional[datetime] = None,
    ) -> list[ReservationView]:
        current = resolve_now(now)
        return [
            ReservationView(
                reservation=reservation,
                time_remaining=time_remaining(reservation, current),
                expired_now=(
                    reservation.status is ReservationStatus.ACTIVE
                    and reservation.is_past_deadline(current)
                ),
            )
            for reservation in self._repository.list_reservations(filters)
        ]

    def reservation_statistics(
        self,
        reservations: Sequence[TemporaryReservation],
        *,
        now: Optional[datetime] = None,
    ) -> ReservationStatistics:
        current = resolve_now(now)
        counts = Counter(reservation.status.value for reservation in reservations)
        total = len(reservations)
        expiring = sum(
            1
            for reservation in reservations
            if reservation.status is ReservationStatus.ACTIVE
            and 0 < reservation.hours_until_expiry(current) <= 24
        )
        converted = counts.get(ReservationStatus.CONVERTED.value, 0)
        return ReservationStatistics(
            total=total,
            by_status={status.value: counts.get(status.value, 0) for status in ReservationStatus},
            total_estimated_value=round(
                sum(reservation.estimated_value for reservation in reservations), 2
            ),
            expiring_within_24h=expiring,
            conversion_rate=round(converted / total * 100.0, 2) if total else 0.0,
        )

    def vendor_metrics(self, since: datetime) -> list[VendorMetrics]:
        """Per-vendor conversion performance, best converters first."""
        metrics = [
            VendorMetrics(
                vendor_id=stats.vendor_id,
                reservations=stats.reservations,
                conversions=stats.conversions,
                conversion_rate=(
                    round(stats.conversions / stats.reservations * 100.0, 2)
                    if stats.reservations
                    else 0.0
                ),
                mean_conversion_hours=(
                    round(stats.mean_conversion_hours, 2)
                    if stats.mean_conversion_hours is not None
                    else None
                ),
            )
            for stats in self._repository.list_vendor_conversion_stats(since)
        ]
        metrics.sort(key=lambda item: (-item.conversion_rate, item.vendor_id))
        logger.info("Computed vendor metrics for %s vendors", len(metrics))
        return metrics
