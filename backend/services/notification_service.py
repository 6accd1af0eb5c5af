"""Event dispatch for vendor and operator notifications.

Delivery is best-effort: a failed publish is logged and dropped so the
state change that produced the event is never rolled back.
"""

from __future__ import annotations

import threading
from typing import Optional

from backend.domain.events import DomainEvent
from backend.repository.data_repository import DataRepository
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class NotificationDispatcher:
    """Base dispatcher; subclasses implement `publish`."""

    def publish(self, event: DomainEvent) -> None:
        raise NotImplementedError

    def emit(self, event: DomainEvent) -> bool:
        """Publish and swallow failures. Returns True when delivery succeeded."""
        try:
            self.publish(event)
        except Exception:
            logger.exception(
                "Dropped %s notification for recipient=%s",
                event.kind,
                event.recipient_id,
            )
            return False
        logger.info("Dispatched %s notification to %s", event.kind, event.recipient_id)
        return True


class OutboxNotificationDispatcher(NotificationDispatcher):
    """Queues events in the NotificationOutbox table for an external sender."""

    def __init__(self, repository: Optional[DataRepository] = None) -> None:
        self._repository = repository or DataRepository()

    def publish(self, event: DomainEvent) -> None:
        self._repository.enqueue_notification(event)


class InMemoryNotificationDispatcher(NotificationDispatcher):
    """Keeps published events in memory; used by tests and local runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[DomainEvent]:
        with self._lock:
            return list(self._events)

    def of_kind(self, kind: str) -> list[DomainEvent]:
        return [event for event in self.events if event.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
