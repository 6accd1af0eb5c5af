"""Waiting-queue management: enrollment, ranking, exit and freed-slot offers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from backend.domain import events
from backend.domain.constraints import validate_slot
from backend.domain.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from backend.domain.models import (
    QueueEntryStatus,
    SlotKey,
    WaitingQueueEntry,
)
from backend.domain.state_machine import TransitionError, ensure_queue_transition
from backend.repository.data_repository import DataRepository, DuplicateRecordError, new_id
from backend.repository.slot_locks import SlotLockRegistry
from backend.services.notification_service import (
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from backend.services.scoring_service import ScoringService
from backend.utils.clock import resolve_now
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, log_transition


logger = get_logger(__name__)


@dataclass(frozen=True)
class QueuePosition:
    entry: WaitingQueueEntry
    position: int
    score: int
    estimated_wait_hours: int


class QueueService:
    """Owns the per-slot ranked queue of vendors waiting for a held slot."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        scoring_service: Optional[ScoringService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
        slot_locks: Optional[SlotLockRegistry] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)
        self._scoring = scoring_service or ScoringService(
            repository=self._repository,
            settings=self._settings,
        )
        self._dispatcher = dispatcher or OutboxNotificationDispatcher(self._repository)
        self._slot_locks = slot_locks or SlotLockRegistry()

    def estimate_wait_hours(self, position: int) -> int:
        return max(0, position) * self._settings.queue_hours_per_position

    def enroll(
        self,
        vendor_id: str,
        slot_key: SlotKey,
        *,
        now: Optional[datetime] = None,
    ) -> WaitingQueueEntry:
        """Add a vendor to a slot's queue, or return the entry they already hold."""
        current = resolve_now(now)
        if not vendor_id:
            raise ValidationError("vendor_id is required")
        try:
            validate_slot(slot_key)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        with self._slot_locks.hold(slot_key):
            existing = self._repository.find_queue_entry(vendor_id, slot_key)
            if existing is not None:
                logger.info(
                    "Vendor %s already queued for %s as %s",
                    vendor_id,
                    slot_key,
                    existing.id,
                )
                return existing

            snapshot = self._scoring.compute_score(vendor_id, now=current)
            queued = self._repository.list_queue_entries(slot_key)
            entry = WaitingQueueEntry(
                id=new_id(),
                vendor_id=vendor_id,
                slot_key=slot_key,
                position=len(queued) + 1,
                score=snapshot.total,
                status=QueueEntryStatus.ACTIVE,
                created_at=current,
                updated_at=current,
            )
            try:
                self._repository.insert_queue_entry(entry)
            except DuplicateRecordError:
                # Another process enrolled the same vendor first.
                winner = self._repository.find_queue_entry(vendor_id, slot_key)
                if winner is None:
                    raise
                return winner

            ranked = self._repository.reorder_queue(slot_key, current)

        placed = next((item for item in ranked if item.id == entry.id), entry)
        log_transition(
            logger,
            "queue-entry",
            placed.id,
            None,
            placed.status.value,
            vendor=vendor_id,
            slot=str(slot_key),
            score=placed.score,
            position=placed.position,
        )
        self._dispatcher.emit(events.queue_position_updated(placed, current))
        return placed

    def leave(
        self,
        entry_id: str,
        vendor_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> WaitingQueueEntry:
        current = resolve_now(now)
        entry = self._repository.get_queue_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Queue entry {entry_id} not found")
        if entry.vendor_id != vendor_id:
            raise ForbiddenError("Queue entry belongs to another vendor")

        with self._slot_locks.hold(entry.slot_key):
            # A notify may have moved the entry between the read and the lock.
            entry = self._repository.get_queue_entry(entry_id) or entry
            try:
                ensure_queue_transition(entry.status, QueueEntryStatus.REMOVED)
            except TransitionError as exc:
                raise InvalidStateError(f"Queue entry is already {entry.status.value}") from exc
            moved = self._repository.transition_queue_entry(
                entry.id,
                entry.status,
                QueueEntryStatus.REMOVED,
                current,
            )
            if not moved:
                raise InvalidStateError("Queue entry changed status concurrently")
            self._repository.reorder_queue(entry.slot_key, current)

        log_transition(
            logger,
            "queue-entry",
            entry.id,
            entry.status.value,
            QueueEntryStatus.REMOVED.value,
            vendor=vendor_id,
        )
        removed = self._repository.get_queue_entry(entry.id)
        if removed is None:  # pragma: no cover - entries are never deleted
            raise NotFoundError(f"Queue entry {entry_id} not found")
        return removed

    def reorder(
        self,
        slot_key: SlotKey,
        *,
        now: Optional[datetime] = None,
    ) -> list[WaitingQueueEntry]:
        """Recompute dense positions for one slot."""
        current = resolve_now(now)
        with self._slot_locks.hold(slot_key):
            return self._repository.reorder_queue(slot_key, current)

    def notify_on_free(
        self,
        slot_key: SlotKey,
        *,
        reason: str = "released",
        now: Optional[datetime] = None,
    ) -> Optional[WaitingQueueEntry]:
        """Offer a freed slot to the top-ranked active entry only."""
        current = resolve_now(now)
        with self._slot_locks.hold(slot_key):
            candidates = self._repository.list_queue_entries(
                slot_key,
                statuses=(QueueEntryStatus.ACTIVE,),
            )
            chosen: Optional[WaitingQueueEntry] = None
            for candidate in candidates:
                if self._repository.transition_queue_entry(
                    candidate.id,
                    QueueEntryStatus.ACTIVE,
                    QueueEntryStatus.NOTIFIED,
                    current,
                ):
                    chosen = candidate
                    break

        if chosen is None:
            logger.info("Slot %s freed (%s) with no active queue entries", slot_key, reason)
            return None

        log_transition(
            logger,
            "queue-entry",
            chosen.id,
            QueueEntryStatus.ACTIVE.value,
            QueueEntryStatus.NOTIFIED.value,
            vendor=chosen.vendor_id,
            reason=reason,
        )
        self._dispatcher.emit(events.slot_available(chosen, slot_key, reason, current))
        notified = self._repository.get_queue_entry(chosen.id)
        return notified or chosen

    def get_position(self, vendor_id: str, slot_key: SlotKey) -> Optional[QueuePosition]:
        entry = self._repository.find_queue_entry(vendor_id, slot_key)
        if entry is None:
            return None
        return QueuePosition(
            entry=entry,
            position=entry.position,
            score=entry.score,
            estimated_wait_hours=self.estimate_wait_hours(entry.position),
        )

    def get_entry(self, entry_id: str) -> WaitingQueueEntry:
        entry = self._repository.get_queue_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Queue entry {entry_id} not found")
        return entry

    def list_slot_queue(self, slot_key: SlotKey) -> list[WaitingQueueEntry]:
        try:
            validate_slot(slot_key)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        return self._repository.list_queue_entries(slot_key)

    def list_vendor_entries(self, vendor_id: str) -> list[WaitingQueueEntry]:
        return self._repository.list_vendor_queue_entries(vendor_id)
