"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


_ENV_PREFIX = "VENUE_HOLD_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw = _env(name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _env(name, str(default))
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name, "1" if default else "0").strip().lower()
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_path: Path
    log_level: str

    # Holds
    default_hold_duration_hours: int
    max_hold_duration_hours: int

    # Scoring
    score_base_points: int
    score_window_days: int

    # Sweeper reminder tiers (upper bounds, hours until expiry)
    reminder_tier_urgent_hours: float
    reminder_tier_mid_hours: float
    reminder_tier_early_hours: float

    # Queue
    queue_hours_per_position: int
    high_demand_threshold: int
    high_demand_window_hours: int

    # Daily report alert ratios
    report_expired_ratio_alert: float
    report_converted_ratio_alert: float

    # Operator auth for scheduler-facing endpoints
    scheduler_token: Optional[str]
    operator_recipient_id: str

    seed_demo_data: bool

    date_regex: str = r"^\d{4}-\d{2}-\d{2}$"
    time_regex: str = r"^([01]\d|2[0-3]):[0-5]\d$"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from `VENUE_HOLD_*` variables."""
    token = os.getenv(f"{_ENV_PREFIX}SCHEDULER_TOKEN") or None
    return Settings(
        app_name=_env("APP_NAME", "Venue Hold Engine"),
        app_version=_env("APP_VERSION", "1.0.0"),
        database_path=Path(_env("DATABASE_PATH", "data/venue_holds.db")),
        log_level=_env("LOG_LEVEL", "INFO"),
        default_hold_duration_hours=_env_int("DEFAULT_HOLD_HOURS", 48),
        max_hold_duration_hours=_env_int("MAX_HOLD_HOURS", 168),
        score_base_points=_env_int("SCORE_BASE_POINTS", 100),
        score_window_days=_env_int("SCORE_WINDOW_DAYS", 30),
        reminder_tier_urgent_hours=_env_float("REMINDER_URGENT_HOURS", 2.0),
        reminder_tier_mid_hours=_env_float("REMINDER_MID_HOURS", 12.0),
        reminder_tier_early_hours=_env_float("REMINDER_EARLY_HOURS", 24.0),
        queue_hours_per_position=_env_int("QUEUE_HOURS_PER_POSITION", 2),
        high_demand_threshold=_env_int("HIGH_DEMAND_THRESHOLD", 10),
        high_demand_window_hours=_env_int("HIGH_DEMAND_WINDOW_HOURS", 24),
        report_expired_ratio_alert=_env_float("REPORT_EXPIRED_RATIO_ALERT", 0.5),
        report_converted_ratio_alert=_env_float("REPORT_CONVERTED_RATIO_ALERT", 0.3),
        scheduler_token=token,
        operator_recipient_id=_env("OPERATOR_RECIPIENT_ID", "operator"),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", False),
    )
