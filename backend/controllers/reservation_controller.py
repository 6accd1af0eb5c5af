"""HTTP controller layer for temporary reservations."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import (
    get_report_service,
    get_reservation_service,
    get_vendor_id,
    raise_http_error,
)
from backend.controllers.schemas import SlotPayload
from backend.domain.errors import EngineError
from backend.domain.models import ReservationStatus, TemporaryReservation
from backend.repository.data_repository import ReservationFilters
from backend.services.report_service import ReportService, ReservationView
from backend.services.reservation_service import ReservationService
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/reservations", tags=["reservations"])


class CreateReservationRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    client_id: str = Field(min_length=1)
    slot: SlotPayload
    estimated_value: float = Field(default=0.0, ge=0.0)
    observations: str = Field(default="", max_length=2000)
    hold_duration_hours: Optional[float] = Field(
        default=None,
        gt=0.0,
        le=settings.max_hold_duration_hours,
    )

    @field_validator("client_id")
    @classmethod
    def strip_client_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("client_id must be non-empty")
        return stripped


class ConvertReservationRequest(BaseModel):
    proposal_id: str = Field(min_length=1)


class CloseReservationRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ExtendReservationRequest(BaseModel):
    additional_hours: float = Field(gt=0.0)


class ReservationResponse(BaseModel):
    id: str
    client_id: str
    vendor_id: str
    slot: SlotPayload
    estimated_value: float = Field(ge=0.0)
    observations: str
    status: ReservationStatus
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    converted_proposal_id: Optional[str] = None
    conversion_time_hours: Optional[float] = None

    @classmethod
    def from_domain(cls, reservation: TemporaryReservation) -> "ReservationResponse":
        return cls(
            id=reservation.id,
            client_id=reservation.client_id,
            vendor_id=reservation.vendor_id,
            slot=SlotPayload.from_slot_key(reservation.slot_key),
            estimated_value=reservation.estimated_value,
            observations=reservation.observations,
            status=reservation.status,
            expires_at=reservation.expires_at,
            created_at=reservation.created_at,
            updated_at=reservation.updated_at,
            converted_proposal_id=reservation.converted_proposal_id,
            conversion_time_hours=reservation.conversion_time_hours,
        )


class TimeRemainingResponse(BaseModel):
    hours: int = Field(ge=0)
    minutes: int = Field(ge=0, le=59)
    seconds: int = Field(ge=0, le=59)


class ReservationListItem(BaseModel):
    reservation: ReservationResponse
    time_remaining: Optional[TimeRemainingResponse] = None
    expired_now: bool

    @classmethod
    def from_view(cls, view: ReservationView) -> "ReservationListItem":
        remaining = view.time_remaining
        return cls(
            reservation=ReservationResponse.from_domain(view.reservation),
            time_remaining=(
                TimeRemainingResponse(
                    hours=remaining.hours,
                    minutes=remaining.minutes,
                    seconds=remaining.seconds,
                )
                if remaining is not None
                else None
            ),
            expired_now=view.expired_now,
        )


class ReservationStatisticsResponse(BaseModel):
    total: int = Field(ge=0)
    by_status: dict[str, int]
    total_estimated_value: float = Field(ge=0.0)
    expiring_within_24h: int = Field(ge=0)
    conversion_rate: float = Field(ge=0.0, le=100.0)


class ReservationListResponse(BaseModel):
    items: list[ReservationListItem]
    statistics: ReservationStatisticsResponse


@router.post(
    "",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reservation(
    payload: CreateReservationRequest,
    vendor_id: str = Depends(get_vendor_id),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = service.create(
            vendor_id,
            payload.client_id,
            payload.slot.to_slot_key(),
            estimated_value=payload.estimated_value,
            observations=payload.observations,
            hold_duration_hours=payload.hold_duration_hours,
        )
        return ReservationResponse.from_domain(reservation)
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reservation create failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.get("", response_model=ReservationListResponse)
def list_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    client_id: Optional[str] = Query(default=None),
    date_from: Optional[str] = Query(default=None, pattern=settings.date_regex),
    date_to: Optional[str] = Query(default=None, pattern=settings.date_regex),
    include_expired: bool = Query(default=True),
    vendor_id: str = Depends(get_vendor_id),
    report_service: ReportService = Depends(get_report_service),
) -> ReservationListResponse:
    """List the calling vendor's holds, newest first, with summary statistics."""
    try:
        views = report_service.list_reservations(
            ReservationFilters(
                status=status_filter,
                vendor_id=vendor_id,
                client_id=client_id,
                date_from=date_from,
                date_to=date_to,
                include_expired=include_expired,
            )
        )
        statistics = report_service.reservation_statistics(
            [view.reservation for view in views]
        )
        return ReservationListResponse(
            items=[ReservationListItem.from_view(view) for view in views],
            statistics=ReservationStatisticsResponse(
                total=statistics.total,
                by_status=statistics.by_status,
                total_estimated_value=statistics.total_estimated_value,
                expiring_within_24h=statistics.expiring_within_24h,
                conversion_rate=statistics.conversion_rate,
            ),
        )
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reservation listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    vendor_id: str = Depends(get_vendor_id),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = service.get(reservation_id)
    except EngineError as exc:
        raise_http_error(exc)
    if reservation.vendor_id != vendor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Reservation belongs to another vendor",
        )
    return ReservationResponse.from_domain(reservation)


@router.post("/{reservation_id}/convert", response_model=ReservationResponse)
def convert_reservation(
    reservation_id: str,
    payload: ConvertReservationRequest,
    vendor_id: str = Depends(get_vendor_id),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = service.convert(reservation_id, vendor_id, payload.proposal_id)
        return ReservationResponse.from_domain(reservation)
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reservation convert failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.post("/{reservation_id}/release", response_model=ReservationResponse)
def release_reservation(
    reservation_id: str,
    payload: Optional[CloseReservationRequest] = None,
    vendor_id: str = Depends(get_vendor_id),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    """Release the hold; the top-ranked waiting vendor is notified before returning."""
    try:
        reservation = service.release(
            reservation_id,
            vendor_id,
            reason=payload.reason if payload is not None else None,
        )
        return ReservationResponse.from_domain(reservation)
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reservation release failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: str,
    payload: Optional[CloseReservationRequest] = None,
    vendor_id: str = Depends(get_vendor_id),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = service.cancel(
            reservation_id,
            vendor_id,
            reason=payload.reason if payload is not None else None,
        )
        return ReservationResponse.from_domain(reservation)
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reservation cancel failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.post("/{reservation_id}/extend", response_model=ReservationResponse)
def extend_reservation(
    reservation_id: str,
    payload: ExtendReservationRequest,
    vendor_id: str = Depends(get_vendor_id),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = service.extend(reservation_id, vendor_id, payload.additional_hours)
        return ReservationResponse.from_domain(reservation)
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reservation extend failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc
