"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import NoReturn

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.domain.errors import (
    ConflictError,
    EngineError,
    ExpiredError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from backend.services.auth_service import AuthenticationError, AuthService
from backend.services.queue_service import QueueService
from backend.services.report_service import ReportService
from backend.services.reservation_service import ReservationService
from backend.services.scoring_service import ScoringService
from backend.services.sweeper_service import SweeperService
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_ERROR_STATUS: tuple[tuple[type[EngineError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ExpiredError, status.HTTP_410_GONE),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def raise_http_error(exc: EngineError) -> NoReturn:
    """Translate an engine failure into the matching HTTP status."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    logger.exception("Unmapped engine error")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    ) from exc


def _service_from_state(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_reservation_service(request: Request) -> ReservationService:
    return _service_from_state(request, "reservation_service", "Reservation")


def get_queue_service(request: Request) -> QueueService:
    return _service_from_state(request, "queue_service", "Queue")


def get_scoring_service(request: Request) -> ScoringService:
    return _service_from_state(request, "scoring_service", "Scoring")


def get_sweeper_service(request: Request) -> SweeperService:
    return _service_from_state(request, "sweeper_service", "Sweeper")


def get_report_service(request: Request) -> ReportService:
    return _service_from_state(request, "report_service", "Report")


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_vendor_id(x_vendor_id: str | None = Header(default=None)) -> str:
    """Acting vendor, taken from the `X-Vendor-Id` header."""
    vendor_id = (x_vendor_id or "").strip()
    if not vendor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Vendor-Id header is required",
        )
    return vendor_id


async def require_operator(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if not auth_service.auth_enabled:
        return
    try:
        auth_service.validate_bearer_token(
            credentials.credentials if credentials is not None else None
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
