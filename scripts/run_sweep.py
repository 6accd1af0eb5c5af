#!/usr/bin/env python3
"""Scheduler entry point: run the periodic reservation jobs once and exit.

Intended for cron, e.g. every 15 minutes:

    */15 * * * * cd /srv/venue-hold && python scripts/run_sweep.py --job sweep
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.errors import EngineError
from backend.repository.data_repository import DataRepository
from backend.services.sweeper_service import SweeperService
from backend.utils.clock import ensure_utc, utc_now
from backend.utils.config import get_settings
from backend.utils.logger import get_logger

logger = get_logger("scripts.run_sweep")

JOBS = ("sweep", "high-demand", "report", "all")


def _parse_now(value: Optional[str]) -> datetime:
    if value is None:
        return utc_now()
    return ensure_utc(datetime.fromisoformat(value))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run venue hold maintenance jobs.")
    parser.add_argument("--job", choices=JOBS, default="sweep")
    parser.add_argument(
        "--now",
        default=None,
        help="ISO-8601 reference time (defaults to the current UTC time)",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    repository = DataRepository(settings)
    sweeper = SweeperService(repository=repository, settings=settings)

    try:
        now = _parse_now(args.now)
    except ValueError:
        logger.error("Invalid --now value: %s", args.now)
        return 2

    try:
        repository.initialize_database()
        if args.job in ("sweep", "all"):
            result = sweeper.sweep(now=now)
            print(
                f"sweep: expired={result.expired_count} "
                f"reminders={result.reminder_counts()} "
                f"notified={len(result.notified_entry_ids)}"
            )
        if args.job in ("high-demand", "all"):
            groups = sweeper.check_high_demand(now=now)
            print(f"high-demand: {len(groups)} alerting group(s)")
        if args.job in ("report", "all"):
            report = sweeper.daily_report(now=now)
            print(
                f"report: created={report.reservations_created} "
                f"expired={report.reservations_expired} "
                f"converted={report.reservations_converted} "
                f"alerts={len(report.alerts)}"
            )
    except EngineError:
        logger.exception("Scheduled job %s failed", args.job)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
