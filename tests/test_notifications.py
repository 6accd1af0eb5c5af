from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from backend.domain import events
from backend.domain.events import DomainEvent
from backend.domain.models import resolve_slot_key
from backend.repository.data_repository import DataRepository
from backend.repository.slot_locks import SlotLockRegistry
from backend.services.notification_service import (
    InMemoryNotificationDispatcher,
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from backend.services.reservation_service import ReservationService
from backend.utils.config import get_settings


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
SLOT = resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "18:00", "23:00")


def _build_repository(tmp_path) -> tuple[DataRepository, object]:
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / "outbox.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    return repository, settings


def test_outbox_dispatcher_persists_events(tmp_path):
    repository, settings = _build_repository(tmp_path)
    reservations = ReservationService(repository=repository, settings=settings)

    reservation = reservations.create("V1", "client-1", SLOT, now=NOW)

    queued = repository.list_outbox(kind=events.RESERVATION_CREATED)
    assert len(queued) == 1
    assert queued[0].recipient_id == "V1"
    assert queued[0].payload["reservation_id"] == reservation.id
    assert queued[0].payload["slot"] == SLOT.to_dict()
    assert queued[0].created_at == NOW


def test_emit_swallows_publish_failures():
    class _Broken(NotificationDispatcher):
        def publish(self, event):
            raise RuntimeError("queue full")

    event = DomainEvent(kind="reminder", recipient_id="V1", occurred_at=NOW)

    assert _Broken().emit(event) is False
    assert InMemoryNotificationDispatcher().emit(event) is True


def test_outbox_failure_is_reported_not_raised(tmp_path, monkeypatch):
    repository, _ = _build_repository(tmp_path)
    dispatcher = OutboxNotificationDispatcher(repository)

    def _fail(_event):
        raise OSError("disk full")

    monkeypatch.setattr(repository, "enqueue_notification", _fail)
    event = DomainEvent(kind="reminder", recipient_id="V1", occurred_at=NOW)

    assert dispatcher.emit(event) is False


def test_slot_lock_registry_serializes_and_evicts_idle_slots():
    registry = SlotLockRegistry()
    same = resolve_slot_key("hall-a", "2026-04-10", "2026-04-10", "18:00", "23:00")
    other = resolve_slot_key("hall-b", "2026-04-10", "2026-04-10", "18:00", "23:00")
    entered = threading.Event()

    def _contend():
        with registry.hold(same):
            entered.set()

    with registry.hold(SLOT):
        with registry.hold(other):
            assert len(registry) == 2
        assert len(registry) == 1
        worker = threading.Thread(target=_contend)
        worker.start()
        assert not entered.wait(0.2)
    worker.join(timeout=5)

    assert entered.is_set()
    assert len(registry) == 0

    with pytest.raises(RuntimeError):
        with registry.hold(SLOT):
            raise RuntimeError("boom")
    assert len(registry) == 0


def test_seed_demo_data_runs_once(tmp_path):
    repository, _ = _build_repository(tmp_path)

    repository.seed_demo_data(now=NOW)
    repository.seed_demo_data(now=NOW)

    vendor = repository.get_vendor("vendor-ana")
    assert vendor is not None
    assert (NOW - vendor.created_at).days == 400
    assert repository.get_vendor("vendor-unknown") is None
