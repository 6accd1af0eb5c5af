"""
app.py: FastAPI application factory and startup lifecycle.

Wires the repository, services and routers, and initializes the schema
before the first request.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.operations_controller import router as operations_router
from backend.controllers.queue_controller import router as queue_router
from backend.controllers.reservation_controller import router as reservation_router
from backend.repository.data_repository import DataRepository
from backend.repository.slot_locks import SlotLockRegistry
from backend.services.auth_service import AuthService
from backend.services.notification_service import (
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from backend.services.queue_service import QueueService
from backend.services.report_service import ReportService
from backend.services.reservation_service import ReservationService
from backend.services.scoring_service import ScoringService
from backend.services.sweeper_service import SweeperService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service shares one repository, one dispatcher and one slot lock
    registry, all stored on app.state for dependency resolution.
    """
    settings = settings or get_settings()

    repository = DataRepository(settings)
    dispatcher = dispatcher or OutboxNotificationDispatcher(repository)
    slot_locks = SlotLockRegistry()

    scoring_service = ScoringService(repository=repository, settings=settings)
    queue_service = QueueService(
        repository=repository,
        scoring_service=scoring_service,
        dispatcher=dispatcher,
        settings=settings,
        slot_locks=slot_locks,
    )
    reservation_service = ReservationService(
        repository=repository,
        queue_service=queue_service,
        dispatcher=dispatcher,
        settings=settings,
    )
    sweeper_service = SweeperService(
        repository=repository,
        queue_service=queue_service,
        dispatcher=dispatcher,
        settings=settings,
    )
    report_service = ReportService(repository=repository, settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(reservation_router)
    app.include_router(queue_router)
    app.include_router(operations_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.dispatcher = dispatcher
    app.state.scoring_service = scoring_service
    app.state.queue_service = queue_service
    app.state.reservation_service = reservation_service
    app.state.sweeper_service = sweeper_service
    app.state.report_service = report_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """Idempotent startup sequence; schema first, then optional demo seed."""
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo vendors and confirmed bookings")
        repository.seed_demo_data()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
