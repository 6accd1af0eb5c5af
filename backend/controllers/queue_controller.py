"""HTTP controller layer for waiting queues and vendor scores."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import (
    get_queue_service,
    get_scoring_service,
    get_vendor_id,
    raise_http_error,
)
from backend.controllers.schemas import SlotPayload, slot_from_query
from backend.domain.errors import EngineError
from backend.domain.models import QueueEntryStatus, SlotKey, WaitingQueueEntry
from backend.services.queue_service import QueueService
from backend.services.scoring_service import ScoringService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["queue"])


class QueueEntryResponse(BaseModel):
    id: str
    vendor_id: str
    slot: SlotPayload
    position: int = Field(ge=0)
    score: int
    status: QueueEntryStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, entry: WaitingQueueEntry) -> "QueueEntryResponse":
        return cls(
            id=entry.id,
            vendor_id=entry.vendor_id,
            slot=SlotPayload.from_slot_key(entry.slot_key),
            position=entry.position,
            score=entry.score,
            status=entry.status,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


class QueuePositionResponse(BaseModel):
    entry_id: str
    position: int = Field(ge=1)
    score: int
    status: QueueEntryStatus
    estimated_wait_hours: int = Field(ge=0)


class VendorScoreResponse(BaseModel):
    vendor_id: str
    base: int
    performance_bonus: int = Field(ge=0)
    tenure_bonus: int = Field(ge=0)
    total: int
    degraded: bool


@router.post(
    "/queue",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
def enroll_in_queue(
    payload: SlotPayload,
    vendor_id: str = Depends(get_vendor_id),
    service: QueueService = Depends(get_queue_service),
) -> QueueEntryResponse:
    """Join a slot's waiting queue; repeating the call returns the same entry."""
    try:
        entry = service.enroll(vendor_id, payload.to_slot_key())
        return QueueEntryResponse.from_domain(entry)
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected queue enrollment failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.delete("/queue/{entry_id}", response_model=QueueEntryResponse)
def leave_queue(
    entry_id: str,
    vendor_id: str = Depends(get_vendor_id),
    service: QueueService = Depends(get_queue_service),
) -> QueueEntryResponse:
    try:
        entry = service.leave(entry_id, vendor_id)
        return QueueEntryResponse.from_domain(entry)
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected queue exit failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.get("/queue", response_model=list[QueueEntryResponse])
def list_slot_queue(
    slot_key: SlotKey = Depends(slot_from_query),
    service: QueueService = Depends(get_queue_service),
) -> list[QueueEntryResponse]:
    try:
        return [QueueEntryResponse.from_domain(entry) for entry in service.list_slot_queue(slot_key)]
    except EngineError as exc:
        raise_http_error(exc)


@router.get("/queue/position", response_model=QueuePositionResponse)
def get_queue_position(
    slot_key: SlotKey = Depends(slot_from_query),
    vendor_id: str = Depends(get_vendor_id),
    service: QueueService = Depends(get_queue_service),
) -> QueuePositionResponse:
    try:
        position = service.get_position(vendor_id, slot_key)
    except EngineError as exc:
        raise_http_error(exc)
    if position is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vendor is not queued for this slot",
        )
    return QueuePositionResponse(
        entry_id=position.entry.id,
        position=position.position,
        score=position.score,
        status=position.entry.status,
        estimated_wait_hours=position.estimated_wait_hours,
    )


@router.get("/queue/mine", response_model=list[QueueEntryResponse])
def list_my_queue_entries(
    vendor_id: str = Depends(get_vendor_id),
    service: QueueService = Depends(get_queue_service),
) -> list[QueueEntryResponse]:
    try:
        return [
            QueueEntryResponse.from_domain(entry)
            for entry in service.list_vendor_entries(vendor_id)
        ]
    except EngineError as exc:
        raise_http_error(exc)


@router.get("/vendors/{vendor_id}/score", response_model=VendorScoreResponse)
def get_vendor_score(
    vendor_id: str,
    service: ScoringService = Depends(get_scoring_service),
) -> VendorScoreResponse:
    snapshot = service.compute_score(vendor_id)
    return VendorScoreResponse(
        vendor_id=snapshot.vendor_id,
        base=snapshot.base,
        performance_bonus=snapshot.performance_bonus,
        tenure_bonus=snapshot.tenure_bonus,
        total=snapshot.total,
        degraded=snapshot.degraded,
    )
