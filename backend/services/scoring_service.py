"""Vendor priority scoring used to rank waiting-queue entries."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from backend.domain.errors import StoreUnavailableError
from backend.domain.models import VendorActivity, VendorScoreSnapshot
from backend.repository.data_repository import DataRepository
from backend.utils.clock import resolve_now
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


# (minimum conversion rate %, bonus points), checked top-down.
PERFORMANCE_BONUS_TABLE: tuple[tuple[float, int], ...] = (
    (80.0, 50),
    (60.0, 30),
    (40.0, 15),
)

# (minimum whole days since account creation, bonus points), checked top-down.
TENURE_BONUS_TABLE: tuple[tuple[int, int], ...] = (
    (365, 25),
    (180, 15),
    (90, 10),
    (30, 5),
)


def conversion_rate(activity: VendorActivity) -> float:
    if activity.reservations_created <= 0:
        return 0.0
    return activity.conversions / activity.reservations_created * 100.0


def performance_bonus(rate: float) -> int:
    for threshold, bonus in PERFORMANCE_BONUS_TABLE:
        if rate >= threshold:
            return bonus
    return 0


def tenure_bonus(account_age_days: int) -> int:
    for threshold, bonus in TENURE_BONUS_TABLE:
        if account_age_days >= threshold:
            return bonus
    return 0


class ScoringService:
    """Computes a fresh score snapshot on every call; nothing is cached."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)

    def default_snapshot(self, vendor_id: str) -> VendorScoreSnapshot:
        return VendorScoreSnapshot(
            vendor_id=vendor_id,
            base=self._settings.score_base_points,
            performance_bonus=0,
            tenure_bonus=0,
            degraded=True,
        )

    def compute_score(
        self,
        vendor_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> VendorScoreSnapshot:
        current = resolve_now(now)
        since = current - timedelta(days=self._settings.score_window_days)
        try:
            activity = self._repository.get_vendor_activity(vendor_id, since, current)
        except StoreUnavailableError as exc:
            logger.warning("Scoring degraded for vendor=%s: %s", vendor_id, exc)
            return self.default_snapshot(vendor_id)
        if activity is None:
            logger.warning("Scoring degraded for vendor=%s: vendor not found", vendor_id)
            return self.default_snapshot(vendor_id)

        account_age_days = max(0, (current - activity.account_created_at).days)
        snapshot = VendorScoreSnapshot(
            vendor_id=vendor_id,
            base=self._settings.score_base_points,
            performance_bonus=performance_bonus(conversion_rate(activity)),
            tenure_bonus=tenure_bonus(account_age_days),
        )
        logger.debug(
            "Scored vendor=%s total=%s (performance=%s tenure=%s)",
            vendor_id,
            snapshot.total,
            snapshot.performance_bonus,
            snapshot.tenure_bonus,
        )
        return snapshot
