"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence
from uuid import uuid4

from backend.domain.errors import StoreUnavailableError
from backend.domain.events import DomainEvent
from backend.domain.models import (
    RANKED_QUEUE_STATUSES,
    ConfirmedBooking,
    QueueEntryStatus,
    ReservationStatus,
    SlotKey,
    TemporaryReservation,
    Vendor,
    VendorActivity,
    WaitingQueueEntry,
    slots_overlap,
)
from backend.utils.clock import from_storage, to_storage, utc_now
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class DuplicateRecordError(Exception):
    """Raised when an insert collides with a uniqueness invariant."""


@dataclass(frozen=True)
class OutboxRecord:
    """Queued notification projection."""

    id: str
    kind: str
    recipient_id: str
    payload: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class DemandGroup:
    space_id: str
    date_start: str
    date_end: str
    entry_count: int


@dataclass(frozen=True)
class VendorConversionStats:
    vendor_id: str
    reservations: int
    conversions: int
    mean_conversion_hours: Optional[float]


@dataclass(frozen=True)
class ReservationFilters:
    status: Optional[ReservationStatus] = None
    vendor_id: Optional[str] = None
    client_id: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    include_expired: bool = True


def new_id() -> str:
    return uuid4().hex


_SLOT_COLUMNS = ("space_id", "date_start", "date_end", "time_start", "time_end")
_SLOT_WHERE = " AND ".join(f"{column} = ?" for column in _SLOT_COLUMNS)


def _slot_params(slot_key: SlotKey) -> tuple[str, str, str, str, str]:
    return (
        slot_key.space_id,
        slot_key.date_start,
        slot_key.date_end,
        slot_key.time_start,
        slot_key.time_end,
    )


def _slot_from_row(row: sqlite3.Row) -> SlotKey:
    return SlotKey(
        space_id=str(row["space_id"]),
        date_start=str(row["date_start"]),
        date_end=str(row["date_end"]),
        time_start=str(row["time_start"]),
        time_end=str(row["time_end"]),
    )


def _reservation_from_row(row: sqlite3.Row) -> TemporaryReservation:
    return TemporaryReservation(
        id=str(row["id"]),
        client_id=str(row["client_id"]),
        vendor_id=str(row["vendor_id"]),
        slot_key=_slot_from_row(row),
        estimated_value=float(row["estimated_value"]),
        observations=str(row["observations"] or ""),
        status=ReservationStatus(row["status"]),
        expires_at=from_storage(row["expires_at"]),
        created_at=from_storage(row["created_at"]),
        updated_at=from_storage(row["updated_at"]),
        converted_proposal_id=(
            str(row["converted_proposal_id"])
            if row["converted_proposal_id"] is not None
            else None
        ),
        conversion_time_hours=(
            float(row["conversion_time_hours"])
            if row["conversion_time_hours"] is not None
            else None
        ),
    )


def _queue_entry_from_row(row: sqlite3.Row) -> WaitingQueueEntry:
    return WaitingQueueEntry(
        id=str(row["id"]),
        vendor_id=str(row["vendor_id"]),
        slot_key=_slot_from_row(row),
        position=int(row["position"]),
        score=int(row["score"]),
        status=QueueEntryStatus(row["status"]),
        created_at=from_storage(row["created_at"]),
        updated_at=from_storage(row["updated_at"]),
    )


def rank_queue_entries(entries: Sequence[WaitingQueueEntry]) -> list[WaitingQueueEntry]:
    """Order ranked entries: score desc, earlier enrollment first, id last."""
    return sorted(entries, key=lambda entry: (-entry.score, entry.created_at, entry.id))


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly in _session.
        connection = sqlite3.connect(self._db_path, timeout=10.0, isolation_level=None)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block inside one transaction.

        `immediate=True` takes the database write lock up front so a
        read-then-write sequence cannot interleave with another writer.
        """
        try:
            connection = self._connect()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Database connection failed: {exc}") from exc
        try:
            connection.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
            yield connection
            connection.execute("COMMIT;")
        except sqlite3.IntegrityError as exc:
            connection.execute("ROLLBACK;")
            raise DuplicateRecordError(str(exc)) from exc
        except sqlite3.Error as exc:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise StoreUnavailableError(f"Database operation failed: {exc}") from exc
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self._session(immediate=True) as conn:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Vendors (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ConfirmedBookings (
                    id TEXT PRIMARY KEY,
                    space_id TEXT NOT NULL,
                    date_start TEXT NOT NULL,
                    date_end TEXT NOT NULL,
                    time_start TEXT NOT NULL,
                    time_end TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'confirmed'
                        CHECK (status IN ('confirmed', 'pending', 'cancelled')),
                    title TEXT NOT NULL DEFAULT ''
                );
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS TemporaryReservations (
                    id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    vendor_id TEXT NOT NULL,
                    space_id TEXT NOT NULL,
                    date_start TEXT NOT NULL,
                    date_end TEXT NOT NULL,
                    time_start TEXT NOT NULL,
                    time_end TEXT NOT NULL,
                    estimated_value REAL NOT NULL DEFAULT 0 CHECK (estimated_value >= 0),
                    observations TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL CHECK (
                        status IN ('active', 'expired', 'converted', 'released', 'cancelled')
                    ),
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    converted_proposal_id TEXT,
                    conversion_time_hours REAL
                );
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS WaitingQueueEntries (
                    id TEXT PRIMARY KEY,
                    vendor_id TEXT NOT NULL,
                    space_id TEXT NOT NULL,
                    date_start TEXT NOT NULL,
                    date_end TEXT NOT NULL,
                    time_start TEXT NOT NULL,
                    time_end TEXT NOT NULL,
                    position INTEGER NOT NULL CHECK (position >= 0),
                    score INTEGER NOT NULL,
                    status TEXT NOT NULL CHECK (status IN ('active', 'notified', 'removed')),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ConversionHistory (
                    id TEXT PRIMARY KEY,
                    reservation_id TEXT NOT NULL,
                    proposal_id TEXT NOT NULL,
                    vendor_id TEXT NOT NULL,
                    conversion_time_hours REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (reservation_id) REFERENCES TemporaryReservations(id)
                );
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS NotificationOutbox (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    recipient_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )

            # Database-enforced "one active record per vendor and slot".
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_reservations_active_vendor_slot
                ON TemporaryReservations(
                    vendor_id, space_id, date_start, date_end, time_start, time_end
                )
                WHERE status = 'active';
                """
            )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_queue_active_vendor_slot
                ON WaitingQueueEntries(
                    vendor_id, space_id, date_start, date_end, time_start, time_end
                )
                WHERE status = 'active';
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reservations_status_expires
                ON TemporaryReservations(status, expires_at);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_queue_slot_status
                ON WaitingQueueEntries(space_id, date_start, date_end, time_start, time_end, status);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_bookings_space_dates
                ON ConfirmedBookings(space_id, date_start, date_end);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_conversions_vendor_created
                ON ConversionHistory(vendor_id, created_at);
                """
            )
        logger.info("Database initialized at %s", self._db_path)

    def seed_demo_data(self, now: Optional[datetime] = None) -> None:
        """Seed a few vendors and confirmed bookings only when tables are empty."""
        reference = now or utc_now()
        with self._session(immediate=True) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Vendors;")
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Demo data already present; skipping seed")
                return

            vendors = [
                ("vendor-ana", "Ana Souza", "ana@example.com", 400),
                ("vendor-bruno", "Bruno Lima", "bruno@example.com", 200),
                ("vendor-carla", "Carla Dias", "carla@example.com", 95),
                ("vendor-diego", "Diego Alves", "diego@example.com", 10),
            ]
            cursor.executemany(
                """
                INSERT INTO Vendors (id, name, email, created_at)
                VALUES (?, ?, ?, ?);
                """,
                [
                    (vendor_id, name, email, to_storage(reference - timedelta(days=age_days)))
                    for vendor_id, name, email, age_days in vendors
                ],
            )

            event_day = (reference + timedelta(days=30)).date().isoformat()
            bookings = [
                ("hall-main", event_day, event_day, "18:00", "23:00", "confirmed", "Wedding"),
                ("hall-garden", event_day, event_day, "10:00", "14:00", "pending", "Brunch"),
            ]
            cursor.executemany(
                """
                INSERT INTO ConfirmedBookings (
                    id, space_id, date_start, date_end, time_start, time_end, status, title
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                [(new_id(), *booking) for booking in bookings],
            )
        logger.info("Demo seed completed with %s vendors", len(vendors))

    # Vendors

    def add_vendor(
        self,
        vendor_id: str,
        name: str,
        created_at: datetime,
        email: str = "",
    ) -> Vendor:
        with self._session(immediate=True) as conn:
            conn.execute(
                "INSERT INTO Vendors (id, name, email, created_at) VALUES (?, ?, ?, ?);",
                (vendor_id, name, email, to_storage(created_at)),
            )
        return Vendor(id=vendor_id, name=name, email=email, created_at=created_at)

    def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT id, name, email, created_at FROM Vendors WHERE id = ?;",
                (vendor_id,),
            ).fetchone()
        if row is None:
            return None
        return Vendor(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=from_storage(row["created_at"]),
        )

    def get_vendor_activity(
        self,
        vendor_id: str,
        since: datetime,
        until: datetime,
    ) -> Optional[VendorActivity]:
        """Return trailing-window counters plus the vendor's account age."""
        window = (vendor_id, to_storage(since), to_storage(until))
        with self._session() as conn:
            vendor_row = conn.execute(
                "SELECT created_at FROM Vendors WHERE id = ?;",
                (vendor_id,),
            ).fetchone()
            if vendor_row is None:
                return None
            reservations_row = conn.execute(
                """
                SELECT COUNT(*) AS count
                FROM TemporaryReservations
                WHERE vendor_id = ? AND created_at >= ? AND created_at <= ?;
                """,
                window,
            ).fetchone()
            conversions_row = conn.execute(
                """
                SELECT COUNT(*) AS count
                FROM ConversionHistory
                WHERE vendor_id = ? AND created_at >= ? AND created_at <= ?;
                """,
                window,
            ).fetchone()
        return VendorActivity(
            vendor_id=vendor_id,
            reservations_created=int(reservations_row["count"]),
            conversions=int(conversions_row["count"]),
            account_created_at=from_storage(vendor_row["created_at"]),
        )

    # Confirmed bookings

    def add_confirmed_booking(
        self,
        slot_key: SlotKey,
        status: str = "confirmed",
        title: str = "",
    ) -> ConfirmedBooking:
        booking = ConfirmedBooking(id=new_id(), slot_key=slot_key, status=status, title=title)
        with self._session(immediate=True) as conn:
            conn.execute(
                """
                INSERT INTO ConfirmedBookings (
                    id, space_id, date_start, date_end, time_start, time_end, status, title
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (booking.id, *_slot_params(slot_key), status, title),
            )
        return booking

    def list_overlapping_bookings(self, slot_key: SlotKey) -> list[ConfirmedBooking]:
        """Return non-cancelled bookings on the same space that overlap the slot."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT id, space_id, date_start, date_end, time_start, time_end, status, title
                FROM ConfirmedBookings
                WHERE space_id = ?
                  AND date_end >= ?
                  AND date_start <= ?
                  AND status != 'cancelled'
                ORDER BY date_start ASC, time_start ASC;
                """,
                (slot_key.space_id, slot_key.date_start, slot_key.date_end),
            ).fetchall()
        bookings = [
            ConfirmedBooking(
                id=str(row["id"]),
                slot_key=_slot_from_row(row),
                status=str(row["status"]),
                title=str(row["title"]),
            )
            for row in rows
        ]
        return [booking for booking in bookings if slots_overlap(booking.slot_key, slot_key)]

    # Temporary reservations

    def insert_reservation(self, reservation: TemporaryReservation) -> None:
        with self._session(immediate=True) as conn:
            conn.execute(
                """
                INSERT INTO TemporaryReservations (
                    id, client_id, vendor_id,
                    space_id, date_start, date_end, time_start, time_end,
                    estimated_value, observations, status,
                    expires_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    reservation.id,
                    reservation.client_id,
                    reservation.vendor_id,
                    *_slot_params(reservation.slot_key),
                    reservation.estimated_value,
                    reservation.observations,
                    reservation.status.value,
                    to_storage(reservation.expires_at),
                    to_storage(reservation.created_at),
                    to_storage(reservation.updated_at),
                ),
            )

    def get_reservation(self, reservation_id: str) -> Optional[TemporaryReservation]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM TemporaryReservations WHERE id = ?;",
                (reservation_id,),
            ).fetchone()
        return _reservation_from_row(row) if row is not None else None

    def find_active_reservation(
        self,
        vendor_id: str,
        slot_key: SlotKey,
    ) -> Optional[TemporaryReservation]:
        with self._session() as conn:
            row = conn.execute(
                f"""
                SELECT *
                FROM TemporaryReservations
                WHERE vendor_id = ? AND {_SLOT_WHERE} AND status = 'active';
                """,
                (vendor_id, *_slot_params(slot_key)),
            ).fetchone()
        return _reservation_from_row(row) if row is not None else None

    def list_reservations_by_status(
        self,
        status: ReservationStatus,
    ) -> list[TemporaryReservation]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM TemporaryReservations
                WHERE status = ?
                ORDER BY expires_at ASC, id ASC;
                """,
                (status.value,),
            ).fetchall()
        return [_reservation_from_row(row) for row in rows]

    def list_reservations(self, filters: ReservationFilters) -> list[TemporaryReservation]:
        """Return reservations matching filters, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(filters.status.value)
        if filters.vendor_id:
            clauses.append("vendor_id = ?")
            params.append(filters.vendor_id)
        if filters.client_id:
            clauses.append("client_id = ?")
            params.append(filters.client_id)
        if filters.date_from:
            clauses.append("date_start >= ?")
            params.append(filters.date_from)
        if filters.date_to:
            clauses.append("date_start <= ?")
            params.append(filters.date_to)
        if not filters.include_expired:
            clauses.append("status != 'expired'")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM TemporaryReservations
                {where}
                ORDER BY created_at DESC, id ASC;
                """,
                tuple(params),
            ).fetchall()
        return [_reservation_from_row(row) for row in rows]

    def transition_reservation(
        self,
        reservation_id: str,
        expected_status: ReservationStatus,
        new_status: ReservationStatus,
        now: datetime,
        observations: Optional[str] = None,
    ) -> bool:
        """Conditionally move one reservation to `new_status`.

        Returns False when the row was no longer in `expected_status`.
        """
        with self._session(immediate=True) as conn:
            cursor = conn.execute(
                """
                UPDATE TemporaryReservations
                SET status = ?,
                    updated_at = ?,
                    observations = COALESCE(?, observations)
                WHERE id = ? AND status = ?;
                """,
                (
                    new_status.value,
                    to_storage(now),
                    observations,
                    reservation_id,
                    expected_status.value,
                ),
            )
            return cursor.rowcount == 1

    def convert_reservation(
        self,
        reservation_id: str,
        vendor_id: str,
        proposal_id: str,
        conversion_time_hours: float,
        observations: str,
        now: datetime,
    ) -> bool:
        """Mark converted and append the conversion audit row in one transaction."""
        with self._session(immediate=True) as conn:
            cursor = conn.execute(
                """
                UPDATE TemporaryReservations
                SET status = 'converted',
                    converted_proposal_id = ?,
                    conversion_time_hours = ?,
                    observations = ?,
                    updated_at = ?
                WHERE id = ? AND status = 'active';
                """,
                (
                    proposal_id,
                    conversion_time_hours,
                    observations,
                    to_storage(now),
                    reservation_id,
                ),
            )
            if cursor.rowcount != 1:
                return False
            conn.execute(
                """
                INSERT INTO ConversionHistory (
                    id, reservation_id, proposal_id, vendor_id,
                    conversion_time_hours, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    new_id(),
                    reservation_id,
                    proposal_id,
                    vendor_id,
                    conversion_time_hours,
                    to_storage(now),
                ),
            )
            return True

    def extend_reservation(
        self,
        reservation_id: str,
        new_expires_at: datetime,
        observations: str,
        now: datetime,
    ) -> bool:
        with self._session(immediate=True) as conn:
            cursor = conn.execute(
                """
                UPDATE TemporaryReservations
                SET expires_at = ?, observations = ?, updated_at = ?
                WHERE id = ? AND status = 'active';
                """,
                (to_storage(new_expires_at), observations, to_storage(now), reservation_id),
            )
            return cursor.rowcount == 1

    def expire_reservations(self, reservation_ids: Sequence[str], now: datetime) -> list[str]:
        """Batch-expire the given ids that are still active; return the ones changed."""
        if not reservation_ids:
            return []
        placeholders = ",".join("?" for _ in reservation_ids)
        with self._session(immediate=True) as conn:
            rows = conn.execute(
                f"""
                SELECT id
                FROM TemporaryReservations
                WHERE id IN ({placeholders}) AND status = 'active';
                """,
                tuple(reservation_ids),
            ).fetchall()
            still_active = [str(row["id"]) for row in rows]
            if not still_active:
                return []
            active_placeholders = ",".join("?" for _ in still_active)
            conn.execute(
                f"""
                UPDATE TemporaryReservations
                SET status = 'expired', updated_at = ?
                WHERE id IN ({active_placeholders});
                """,
                (to_storage(now), *still_active),
            )
        return still_active

    def count_reservations_created(self, since: datetime, until: datetime) -> int:
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS count
                FROM TemporaryReservations
                WHERE created_at >= ? AND created_at <= ?;
                """,
                (to_storage(since), to_storage(until)),
            ).fetchone()
        return int(row["count"])

    def count_reservations_moved_to(
        self,
        status: ReservationStatus,
        since: datetime,
        until: datetime,
    ) -> int:
        """Count reservations whose last status change to `status` fell in the window."""
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS count
                FROM TemporaryReservations
                WHERE status = ? AND updated_at >= ? AND updated_at <= ?;
                """,
                (status.value, to_storage(since), to_storage(until)),
            ).fetchone()
        return int(row["count"])

    # Waiting queue

    def insert_queue_entry(self, entry: WaitingQueueEntry) -> None:
        with self._session(immediate=True) as conn:
            conn.execute(
                """
                INSERT INTO WaitingQueueEntries (
                    id, vendor_id,
                    space_id, date_start, date_end, time_start, time_end,
                    position, score, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    entry.id,
                    entry.vendor_id,
                    *_slot_params(entry.slot_key),
                    entry.position,
                    entry.score,
                    entry.status.value,
                    to_storage(entry.created_at),
                    to_storage(entry.updated_at),
                ),
            )

    def get_queue_entry(self, entry_id: str) -> Optional[WaitingQueueEntry]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM WaitingQueueEntries WHERE id = ?;",
                (entry_id,),
            ).fetchone()
        return _queue_entry_from_row(row) if row is not None else None

    def find_queue_entry(
        self,
        vendor_id: str,
        slot_key: SlotKey,
        statuses: Sequence[QueueEntryStatus] = RANKED_QUEUE_STATUSES,
    ) -> Optional[WaitingQueueEntry]:
        """Return the vendor's open entry for a slot, preferring `active`."""
        placeholders = ",".join("?" for _ in statuses)
        with self._session() as conn:
            row = conn.execute(
                f"""
                SELECT *
                FROM WaitingQueueEntries
                WHERE vendor_id = ? AND {_SLOT_WHERE} AND status IN ({placeholders})
                ORDER BY CASE status WHEN 'active' THEN 0 ELSE 1 END, created_at ASC
                LIMIT 1;
                """,
                (vendor_id, *_slot_params(slot_key), *(status.value for status in statuses)),
            ).fetchone()
        return _queue_entry_from_row(row) if row is not None else None

    def list_queue_entries(
        self,
        slot_key: SlotKey,
        statuses: Sequence[QueueEntryStatus] = RANKED_QUEUE_STATUSES,
    ) -> list[WaitingQueueEntry]:
        """Return a slot's entries in stored rank order."""
        placeholders = ",".join("?" for _ in statuses)
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM WaitingQueueEntries
                WHERE {_SLOT_WHERE} AND status IN ({placeholders})
                ORDER BY position ASC, created_at ASC, id ASC;
                """,
                (*_slot_params(slot_key), *(status.value for status in statuses)),
            ).fetchall()
        return [_queue_entry_from_row(row) for row in rows]

    def list_vendor_queue_entries(
        self,
        vendor_id: str,
        statuses: Sequence[QueueEntryStatus] = RANKED_QUEUE_STATUSES,
    ) -> list[WaitingQueueEntry]:
        placeholders = ",".join("?" for _ in statuses)
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM WaitingQueueEntries
                WHERE vendor_id = ? AND status IN ({placeholders})
                ORDER BY created_at DESC, id ASC;
                """,
                (vendor_id, *(status.value for status in statuses)),
            ).fetchall()
        return [_queue_entry_from_row(row) for row in rows]

    def reorder_queue(self, slot_key: SlotKey, now: datetime) -> list[WaitingQueueEntry]:
        """Recompute dense positions for a slot inside a single write transaction."""
        placeholders = ",".join("?" for _ in RANKED_QUEUE_STATUSES)
        with self._session(immediate=True) as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM WaitingQueueEntries
                WHERE {_SLOT_WHERE} AND status IN ({placeholders});
                """,
                (*_slot_params(slot_key), *(status.value for status in RANKED_QUEUE_STATUSES)),
            ).fetchall()
            ranked = rank_queue_entries([_queue_entry_from_row(row) for row in rows])
            updates = [
                (position, to_storage(now), entry.id)
                for position, entry in enumerate(ranked, start=1)
                if entry.position != position
            ]
            if updates:
                conn.executemany(
                    "UPDATE WaitingQueueEntries SET position = ?, updated_at = ? WHERE id = ?;",
                    updates,
                )
        changed = {entry_id for _, _, entry_id in updates}
        return [
            WaitingQueueEntry(
                id=entry.id,
                vendor_id=entry.vendor_id,
                slot_key=entry.slot_key,
                position=position,
                score=entry.score,
                status=entry.status,
                created_at=entry.created_at,
                updated_at=now if entry.id in changed else entry.updated_at,
            )
            for position, entry in enumerate(ranked, start=1)
        ]

    def transition_queue_entry(
        self,
        entry_id: str,
        expected_status: QueueEntryStatus,
        new_status: QueueEntryStatus,
        now: datetime,
    ) -> bool:
        with self._session(immediate=True) as conn:
            cursor = conn.execute(
                """
                UPDATE WaitingQueueEntries
                SET status = ?, updated_at = ?
                WHERE id = ? AND status = ?;
                """,
                (new_status.value, to_storage(now), entry_id, expected_status.value),
            )
            return cursor.rowcount == 1

    def list_demand_groups(self, since: datetime) -> list[DemandGroup]:
        """Count active entries enrolled since `since`, grouped by space and dates."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT space_id, date_start, date_end, COUNT(*) AS entry_count
                FROM WaitingQueueEntries
                WHERE status = 'active' AND created_at >= ?
                GROUP BY space_id, date_start, date_end
                ORDER BY entry_count DESC, space_id ASC, date_start ASC;
                """,
                (to_storage(since),),
            ).fetchall()
        return [
            DemandGroup(
                space_id=str(row["space_id"]),
                date_start=str(row["date_start"]),
                date_end=str(row["date_end"]),
                entry_count=int(row["entry_count"]),
            )
            for row in rows
        ]

    def count_active_queue_by_slot(self) -> list[tuple[SlotKey, int]]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT space_id, date_start, date_end, time_start, time_end,
                       COUNT(*) AS entry_count
                FROM WaitingQueueEntries
                WHERE status = 'active'
                GROUP BY space_id, date_start, date_end, time_start, time_end
                ORDER BY entry_count DESC, space_id ASC;
                """
            ).fetchall()
        return [(_slot_from_row(row), int(row["entry_count"])) for row in rows]

    # Notification outbox

    def enqueue_notification(self, event: DomainEvent) -> str:
        outbox_id = new_id()
        with self._session(immediate=True) as conn:
            conn.execute(
                """
                INSERT INTO NotificationOutbox (id, kind, recipient_id, payload, created_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                (
                    outbox_id,
                    event.kind,
                    event.recipient_id,
                    json.dumps(event.payload, sort_keys=True, default=str),
                    to_storage(event.occurred_at),
                ),
            )
        return outbox_id

    def list_outbox(self, kind: Optional[str] = None) -> list[OutboxRecord]:
        query = "SELECT * FROM NotificationOutbox"
        params: tuple[Any, ...] = ()
        if kind is not None:
            query += " WHERE kind = ?"
            params = (kind,)
        query += " ORDER BY created_at ASC, id ASC;"
        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            OutboxRecord(
                id=str(row["id"]),
                kind=str(row["kind"]),
                recipient_id=str(row["recipient_id"]),
                payload=json.loads(row["payload"]),
                created_at=from_storage(row["created_at"]),
            )
            for row in rows
        ]

    def count_conversion_history(self) -> int:
        with self._session() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM ConversionHistory;").fetchone()
        return int(row["count"])


    def list_vendor_conversion_stats(self, since: datetime) -> list[VendorConversionStats]:
        """Aggregate holds created since `since` per vendor."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT vendor_id,
                       COUNT(*) AS reservations,
                       SUM(CASE WHEN status = 'converted' THEN 1 ELSE 0 END) AS conversions,
                       AVG(conversion_time_hours) AS mean_conversion_hours
                FROM TemporaryReservations
                WHERE created_at >= ?
                GROUP BY vendor_id
                ORDER BY vendor_id ASC;
                """,
                (to_storage(since),),
            ).fetchall()
        return [
            VendorConversionStats(
                vendor_id=str(row["vendor_id"]),
                reservations=int(row["reservations"]),
                conversions=int(row["conversions"] or 0),
                mean_conversion_hours=(
                    float(row["mean_conversion_hours"])
                    if row["mean_conversion_hours"] is not None
                    else None
                ),
            )
            for row in rows
        ]
