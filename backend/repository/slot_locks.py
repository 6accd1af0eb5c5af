"""In-process serialization of queue mutations per slot."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from backend.domain.models import SlotKey


class SlotLockRegistry:
    """Hands out one `threading.Lock` per SlotKey while it is in use.

    Cross-process writers are serialized by the database write lock taken in
    `DataRepository.reorder_queue`; this registry covers threads sharing one
    service instance. A slot's lock is dropped once no thread holds or waits
    on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[SlotKey, threading.Lock] = {}
        self._users: dict[SlotKey, int] = {}

    @contextmanager
    def hold(self, slot_key: SlotKey) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(slot_key, threading.Lock())
            self._users[slot_key] = self._users.get(slot_key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                remaining = self._users[slot_key] - 1
                if remaining:
                    self._users[slot_key] = remaining
                else:
                    del self._users[slot_key]
                    del self._locks[slot_key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
