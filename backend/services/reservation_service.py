"""Temporary reservation lifecycle: create, convert, release, cancel, extend."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from backend.domain import events
from backend.domain.constraints import validate_hold_duration, validate_slot
from backend.domain.errors import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from backend.domain.models import ReservationStatus, SlotKey, TemporaryReservation
from backend.domain.state_machine import TransitionError, ensure_reservation_transition
from backend.repository.data_repository import (
    DataRepository,
    DuplicateRecordError,
    ReservationFilters,
    new_id,
)
from backend.services.notification_service import (
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from backend.services.queue_service import QueueService
from backend.utils.clock import resolve_now
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, log_transition


logger = get_logger(__name__)


def append_note(observations: str, now: datetime, note: str) -> str:
    stamped = f"[{now.isoformat(timespec='seconds')}] {note}"
    return f"{observations}\n{stamped}" if observations else stamped


class ReservationService:
    """Owns temporary holds on a slot; hands freed slots to the queue."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        queue_service: Optional[QueueService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)
        self._dispatcher = dispatcher or OutboxNotificationDispatcher(self._repository)
        self._queue = queue_service or QueueService(
            repository=self._repository,
            dispatcher=self._dispatcher,
            settings=self._settings,
        )

    def create(
        self,
        vendor_id: str,
        client_id: str,
        slot_key: SlotKey,
        *,
        estimated_value: float = 0.0,
        observations: str = "",
        hold_duration_hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> TemporaryReservation:
        current = resolve_now(now)
        hours = (
            hold_duration_hours
            if hold_duration_hours is not None
            else self._settings.default_hold_duration_hours
        )
        if not vendor_id:
            raise ValidationError("vendor_id is required")
        if not client_id:
            raise ValidationError("client_id is required")
        if estimated_value < 0:
            raise ValidationError("estimated_value must be >= 0")
        try:
            validate_slot(slot_key)
            validate_hold_duration(hours, self._settings.max_hold_duration_hours)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if self._repository.find_active_reservation(vendor_id, slot_key) is not None:
            raise ConflictError(f"Vendor {vendor_id} already holds {slot_key}")
        overlapping = self._repository.list_overlapping_bookings(slot_key)
        if overlapping:
            raise ConflictError(
                f"Slot {slot_key} overlaps confirmed booking {overlapping[0].id}"
            )

        reservation = TemporaryReservation(
            id=new_id(),
            client_id=client_id,
            vendor_id=vendor_id,
            slot_key=slot_key,
            estimated_value=float(estimated_value),
            observations=observations,
            status=ReservationStatus.ACTIVE,
            expires_at=current + timedelta(hours=hours),
            created_at=current,
            updated_at=current,
        )
        try:
            self._repository.insert_reservation(reservation)
        except DuplicateRecordError as exc:
            raise ConflictError(f"Vendor {vendor_id} already holds {slot_key}") from exc

        log_transition(
            logger,
            "reservation",
            reservation.id,
            None,
            reservation.status.value,
            vendor=vendor_id,
            slot=str(slot_key),
            expires_at=reservation.expires_at.isoformat(),
        )
        self._dispatcher.emit(events.reservation_created(reservation, current))
        return reservation

    def get(self, reservation_id: str) -> TemporaryReservation:
        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    def list_for_vendor(
        self,
        vendor_id: str,
        statuses: Optional[Iterable[ReservationStatus]] = None,
    ) -> list[TemporaryReservation]:
        reservations = self._repository.list_reservations(
            ReservationFilters(vendor_id=vendor_id)
        )
        if statuses is None:
            return reservations
        wanted = set(statuses)
        return [reservation for reservation in reservations if reservation.status in wanted]

    def _load_owned(self, reservation_id: str, vendor_id: str) -> TemporaryReservation:
        reservation = self.get(reservation_id)
        if reservation.vendor_id != vendor_id:
            raise ForbiddenError("Reservation belongs to another vendor")
        return reservation

    def _check_deadline(self, reservation: TemporaryReservation, now: datetime) -> None:
        if reservation.status is ReservationStatus.EXPIRED:
            raise ExpiredError(f"Reservation {reservation.id} has expired")
        if reservation.status is ReservationStatus.ACTIVE and reservation.is_past_deadline(now):
            raise ExpiredError(f"Reservation {reservation.id} passed its deadline")

    def _ensure_transition(
        self,
        reservation: TemporaryReservation,
        target: ReservationStatus,
    ) -> None:
        try:
            ensure_reservation_transition(reservation.status, target)
        except TransitionError as exc:
            raise InvalidStateError(
                f"Reservation {reservation.id} is {reservation.status.value}"
            ) from exc

    def convert(
        self,
        reservation_id: str,
        vendor_id: str,
        proposal_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> TemporaryReservation:
        """Turn a live hold into a proposal.

        Checks run in a fixed order: existence, ownership, deadline, status.
        """
        current = resolve_now(now)
        if not proposal_id:
            raise ValidationError("proposal_id is required")
        reservation = self._load_owned(reservation_id, vendor_id)
        self._check_deadline(reservation, current)
        self._ensure_transition(reservation, ReservationStatus.CONVERTED)

        elapsed_hours = (current - reservation.created_at).total_seconds() / 3600.0
        conversion_time_hours = round(elapsed_hours, 2)
        notes = append_note(
            reservation.observations,
            current,
            f"Converted to proposal {proposal_id}",
        )
        if not self._repository.convert_reservation(
            reservation.id,
            vendor_id,
            proposal_id,
            conversion_time_hours,
            notes,
            current,
        ):
            raise InvalidStateError(f"Reservation {reservation.id} changed status concurrently")

        log_transition(
            logger,
            "reservation",
            reservation.id,
            reservation.status.value,
            ReservationStatus.CONVERTED.value,
            proposal=proposal_id,
            hours=conversion_time_hours,
        )
        return self.get(reservation.id)

    def _close(
        self,
        reservation_id: str,
        vendor_id: str,
        target: ReservationStatus,
        reason: Optional[str],
        now: datetime,
    ) -> TemporaryReservation:
        reservation = self._load_owned(reservation_id, vendor_id)
        self._ensure_transition(reservation, target)
        note = f"{target.value.capitalize()}"
        if reason:
            note = f"{note}: {reason}"
        moved = self._repository.transition_reservation(
            reservation.id,
            ReservationStatus.ACTIVE,
            target,
            now,
            observations=append_note(reservation.observations, now, note),
        )
        if not moved:
            raise InvalidStateError(f"Reservation {reservation.id} changed status concurrently")
        log_transition(
            logger,
            "reservation",
            reservation.id,
            reservation.status.value,
            target.value,
            vendor=vendor_id,
        )
        return self.get(reservation.id)

    def release(
        self,
        reservation_id: str,
        vendor_id: str,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TemporaryReservation:
        """Give the slot back and offer it to the head of its queue."""
        current = resolve_now(now)
        released = self._close(
            reservation_id,
            vendor_id,
            ReservationStatus.RELEASED,
            reason,
            current,
        )
        self._queue.notify_on_free(released.slot_key, reason="released", now=current)
        return released

    def cancel(
        self,
        reservation_id: str,
        vendor_id: str,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TemporaryReservation:
        current = resolve_now(now)
        return self._close(
            reservation_id,
            vendor_id,
            ReservationStatus.CANCELLED,
            reason,
            current,
        )

    def extend(
        self,
        reservation_id: str,
        vendor_id: str,
        additional_hours: float,
        *,
        now: Optional[datetime] = None,
    ) -> TemporaryReservation:
        current = resolve_now(now)
        if additional_hours <= 0:
            raise ValidationError("additional_hours must be > 0")
        reservation = self._load_owned(reservation_id, vendor_id)
        self._check_deadline(reservation, current)
        if reservation.status is not ReservationStatus.ACTIVE:
            raise InvalidStateError(
                f"Reservation {reservation.id} is {reservation.status.value}"
            )

        new_expires_at = reservation.expires_at + timedelta(hours=additional_hours)
        total_hours = (new_expires_at - reservation.created_at).total_seconds() / 3600.0
        if total_hours > self._settings.max_hold_duration_hours:
            raise ValidationError(
                "Extension exceeds the maximum hold of "
                f"{self._settings.max_hold_duration_hours} hours"
            )
        notes = append_note(
            reservation.observations,
            current,
            f"Extended by {additional_hours:g}h until {new_expires_at.isoformat()}",
        )
        if not self._repository.extend_reservation(
            reservation.id,
            new_expires_at,
            notes,
            current,
        ):
            raise InvalidStateError(f"Reservation {reservation.id} changed status concurrently")
        logger.info(
            "Reservation %s extended by %sh to %s",
            reservation.id,
            additional_hours,
            new_expires_at.isoformat(),
        )
        return self.get(reservation.id)
