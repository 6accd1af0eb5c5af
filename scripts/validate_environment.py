#!/usr/bin/env python3
"""Validate local venue hold engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import timedelta
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.models import resolve_slot_key
from backend.repository.data_repository import DataRepository
from backend.services.notification_service import InMemoryNotificationDispatcher
from backend.services.reservation_service import ReservationService
from backend.services.sweeper_service import SweeperService
from backend.utils.clock import utc_now
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="venue-hold-env-")

    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "venue_hold_validation.db",
        )
        repository = DataRepository(settings)

        try:
            repository.initialize_database()
            repository.seed_demo_data()
            ok, line = _print_result("Database initialization and seed", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization and seed", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        try:
            dispatcher = InMemoryNotificationDispatcher()
            reservations = ReservationService(
                repository=repository,
                dispatcher=dispatcher,
                settings=settings,
            )
            sweeper = SweeperService(
                repository=repository,
                dispatcher=dispatcher,
                settings=settings,
            )
            start = utc_now()
            day = (start + timedelta(days=60)).date().isoformat()
            slot = resolve_slot_key("hall-validation", day, day, "09:00", "12:00")
            reservations.create(
                "vendor-validation",
                "client-validation",
                slot,
                hold_duration_hours=1,
                now=start,
            )
            result = sweeper.sweep(now=start + timedelta(hours=2))
            if result.expired_count != 1:
                raise RuntimeError(f"expected 1 expired hold, got {result.expired_count}")
            ok, line = _print_result("Create and sweep smoke test", True)
        except Exception as exc:
            ok, line = _print_result("Create and sweep smoke test", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Venue Hold Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
