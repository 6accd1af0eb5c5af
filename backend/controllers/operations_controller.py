"""Operator endpoints: scheduler triggers and vendor performance reports."""

from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import (
    get_report_service,
    get_sweeper_service,
    raise_http_error,
    require_operator,
)
from backend.controllers.schemas import SlotPayload
from backend.domain.errors import EngineError
from backend.services.report_service import ReportService
from backend.services.sweeper_service import DailyReport, SweepResult, SweeperService
from backend.utils.clock import utc_now
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["operations"], dependencies=[Depends(require_operator)])


class SweepResponse(BaseModel):
    expired_count: int = Field(ge=0)
    expired_ids: list[str]
    reminders: dict[str, list[str]]
    notified_entry_ids: list[str]

    @classmethod
    def from_result(cls, result: SweepResult) -> "SweepResponse":
        return cls(
            expired_count=result.expired_count,
            expired_ids=result.expired_ids,
            reminders={tier.value: ids for tier, ids in result.reminders.items()},
            notified_entry_ids=result.notified_entry_ids,
        )


class DemandGroupResponse(BaseModel):
    space_id: str
    date_start: str
    date_end: str
    entry_count: int = Field(ge=0)


class QueueLoadResponse(BaseModel):
    slot: SlotPayload
    entry_count: int = Field(ge=0)


class DailyReportResponse(BaseModel):
    window_start: datetime
    window_end: datetime
    reservations_created: int = Field(ge=0)
    reservations_expired: int = Field(ge=0)
    reservations_converted: int = Field(ge=0)
    active_queue_entries: int = Field(ge=0)
    large_queues: list[QueueLoadResponse]
    alerts: list[str]

    @classmethod
    def from_report(cls, report: DailyReport) -> "DailyReportResponse":
        return cls(
            window_start=report.window_start,
            window_end=report.window_end,
            reservations_created=report.reservations_created,
            reservations_expired=report.reservations_expired,
            reservations_converted=report.reservations_converted,
            active_queue_entries=report.active_queue_entries,
            large_queues=[
                QueueLoadResponse(
                    slot=SlotPayload.from_slot_key(load.slot_key),
                    entry_count=load.entry_count,
                )
                for load in report.large_queues
            ],
            alerts=report.alerts,
        )


class JobsResponse(BaseModel):
    sweep: SweepResponse
    high_demand: list[DemandGroupResponse]
    report: DailyReportResponse


class VendorMetricsResponse(BaseModel):
    vendor_id: str
    reservations: int = Field(ge=0)
    conversions: int = Field(ge=0)
    conversion_rate: float = Field(ge=0.0)
    mean_conversion_hours: float | None = None


@router.post("/sweep", response_model=SweepResponse)
def run_sweep(service: SweeperService = Depends(get_sweeper_service)) -> SweepResponse:
    try:
        return SweepResponse.from_result(service.sweep())
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected sweep failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.post("/jobs/run", response_model=JobsResponse)
def run_jobs(service: SweeperService = Depends(get_sweeper_service)) -> JobsResponse:
    """Sweep, high-demand check and daily report in one scheduler tick."""
    try:
        result = service.run_jobs()
        return JobsResponse(
            sweep=SweepResponse.from_result(result.sweep),
            high_demand=[
                DemandGroupResponse(
                    space_id=group.space_id,
                    date_start=group.date_start,
                    date_end=group.date_end,
                    entry_count=group.entry_count,
                )
                for group in result.high_demand
            ],
            report=DailyReportResponse.from_report(result.report),
        )
    except EngineError as exc:
        raise_http_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected scheduled jobs failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.get("/reports/vendors", response_model=list[VendorMetricsResponse])
def vendor_report(
    days: int = Query(default=30, ge=1, le=365),
    service: ReportService = Depends(get_report_service),
) -> list[VendorMetricsResponse]:
    try:
        metrics = service.vendor_metrics(utc_now() - timedelta(days=days))
    except EngineError as exc:
        raise_http_error(exc)
    return [
        VendorMetricsResponse(
            vendor_id=item.vendor_id,
            reservations=item.reservations,
            conversions=item.conversions,
            conversion_rate=item.conversion_rate,
            mean_conversion_hours=item.mean_conversion_hours,
        )
        for item in metrics
    ]
