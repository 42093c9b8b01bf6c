"""Database setup, connection management and event/booking stores."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import aiosqlite
from pydantic import ValidationError

from devevent.models import Booking, Event

log = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        description TEXT NOT NULL DEFAULT '',
        overview TEXT NOT NULL DEFAULT '',
        image TEXT NOT NULL,
        venue TEXT NOT NULL DEFAULT '',
        location TEXT NOT NULL DEFAULT '',
        date TEXT NOT NULL DEFAULT '',
        time TEXT NOT NULL DEFAULT '',
        mode TEXT NOT NULL DEFAULT 'hybrid'
            CHECK (mode IN ('online', 'offline', 'hybrid')),
        audience TEXT NOT NULL DEFAULT '',
        agenda TEXT NOT NULL DEFAULT '[]',
        organizer TEXT NOT NULL DEFAULT '',
        tags TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS bookings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id INTEGER NOT NULL,
        email TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_bookings_event_id ON bookings(event_id);
"""

EVENT_COLUMNS = (
    "title", "slug", "description", "overview", "image", "venue", "location",
    "date", "time", "mode", "audience", "agenda", "organizer", "tags",
)
JSON_COLUMNS = ("agenda", "tags")


# ------------------------------------------------------------------
# Store errors
# ------------------------------------------------------------------


class StoreError(Exception):
    """Base class for failures raised by the stores."""


class DuplicateKeyError(StoreError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class RecordValidationError(StoreError):
    def __init__(self, errors: dict[str, str]) -> None:
        summary = "; ".join(f"{k}: {v}" for k, v in errors.items())
        super().__init__(f"Validation failed: {summary}")
        self.errors = errors


class StoreUnavailableError(StoreError):
    """The database file cannot be opened or is locked."""


class MalformedQueryError(StoreError):
    """The driver rejected the shape of a query or its parameters."""


class MissingReferenceError(StoreError):
    """A record points at a row that does not exist."""


UNIQUE_CODES = ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY")
UNAVAILABLE_CODES = ("SQLITE_BUSY", "SQLITE_LOCKED", "SQLITE_CANTOPEN", "SQLITE_IOERR")


def _duplicate(exc: sqlite3.Error) -> DuplicateKeyError:
    # The driver only names the column in the text: "UNIQUE constraint failed: events.slug"
    message = str(exc)
    column = message.rsplit(":", 1)[-1].strip()
    return DuplicateKeyError(column.rsplit(".", 1)[-1], message)


def _classify(exc: sqlite3.Error) -> StoreError:
    """Map a driver exception onto the store error hierarchy.

    Python 3.11+ exposes the SQLite result code as ``sqlite_errorname``; older
    interpreters only give the message, so those fall back to matching it.
    """
    message = str(exc)
    if isinstance(exc, (sqlite3.InterfaceError, sqlite3.ProgrammingError)):
        return MalformedQueryError(message)

    code = getattr(exc, "sqlite_errorname", None)
    if code is not None:
        if code in UNIQUE_CODES:
            return _duplicate(exc)
        # Extended codes carry a suffix, e.g. SQLITE_IOERR_WRITE or SQLITE_BUSY_SNAPSHOT
        if code.startswith(UNAVAILABLE_CODES):
            return StoreUnavailableError(message)
        return StoreError(message)

    if isinstance(exc, sqlite3.IntegrityError) and "UNIQUE constraint failed" in message:
        return _duplicate(exc)
    if isinstance(exc, sqlite3.OperationalError) and (
        "unable to open" in message or "locked" in message or "disk I/O" in message
    ):
        return StoreUnavailableError(message)
    return StoreError(message)


def validation_errors(exc: ValidationError) -> dict[str, str]:
    """Flatten pydantic errors into ``{field: message}``."""
    errors: dict[str, str] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "__root__"
        errors[field] = err["msg"].removeprefix("Value error, ")
    return errors


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ------------------------------------------------------------------
# Connection provider
# ------------------------------------------------------------------


class Database:
    """Owns the single process-wide aiosqlite connection.

    Every request shares the connection, so writes go through
    :meth:`transaction`, which lets one unit of work run at a time.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> aiosqlite.Connection:
        """Open the connection on first use and hand back the cached one after."""
        if self._conn is None:
            try:
                conn = await aiosqlite.connect(self.path)
            except sqlite3.Error as exc:
                raise _classify(exc) from exc
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            self._conn = conn
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock for one unit of work.

        Commits when the block exits cleanly and rolls back otherwise.
        """
        async with self._lock:
            conn = await self.connect()
            try:
                yield conn
                await conn.commit()
            except sqlite3.Error as exc:
                await conn.rollback()
                raise _classify(exc) from exc
            except BaseException:
                await conn.rollback()
                raise

    async def init_db(self) -> None:
        """Create tables and indexes if they are missing."""
        async with self.transaction() as conn:
            await conn.executescript(SCHEMA)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


# ------------------------------------------------------------------
# Stores
# ------------------------------------------------------------------


def _row_to_event(row: aiosqlite.Row) -> Event:
    data = dict(row)
    for column in JSON_COLUMNS:
        data[column] = json.loads(data[column] or "[]")
    return Event(**data)


def _event_params(event: Event) -> list[Any]:
    data = event.model_dump(mode="json")
    return [
        json.dumps(data[c]) if c in JSON_COLUMNS else data[c] for c in EVENT_COLUMNS
    ]


class EventStore:
    """CRUD gateway for the events table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        conn = await self.db.connect()
        try:
            cursor = await conn.execute(sql, params)
            return list(await cursor.fetchall())
        except sqlite3.Error as exc:
            raise _classify(exc) from exc

    async def insert(self, record: dict[str, Any]) -> Event:
        """Validate and insert *record*, returning the stored event."""
        try:
            event = Event.model_validate(record)
        except ValidationError as exc:
            raise RecordValidationError(validation_errors(exc)) from exc

        now = _now()
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                f"INSERT INTO events ({', '.join(EVENT_COLUMNS)}, created_at, updated_at) "
                f"VALUES ({', '.join('?' * (len(EVENT_COLUMNS) + 2))})",
                [*_event_params(event), now, now],
            )
            event_id = cursor.lastrowid

        stored = await self.get_by_id(event_id)
        if stored is None:
            raise StoreError(f"Inserted event {event_id} could not be read back")
        return stored

    async def upsert(self, event: Event) -> None:
        """Insert *event* or refresh the row that already owns its slug."""
        await self.upsert_many([event])

    async def upsert_many(self, events: Iterable[Event]) -> None:
        """Upsert *events* by slug in a single transaction."""
        updates = ", ".join(f"{c} = excluded.{c}" for c in EVENT_COLUMNS if c != "slug")
        sql = (
            f"INSERT INTO events ({', '.join(EVENT_COLUMNS)}, created_at, updated_at) "
            f"VALUES ({', '.join('?' * (len(EVENT_COLUMNS) + 2))}) "
            f"ON CONFLICT(slug) DO UPDATE SET {updates}, updated_at = excluded.updated_at"
        )
        async with self.db.transaction() as conn:
            for event in events:
                now = _now()
                await conn.execute(sql, [*_event_params(event), now, now])

    async def get_by_id(self, event_id: int) -> Event | None:
        rows = await self._fetchall("SELECT * FROM events WHERE id = ?", (event_id,))
        return _row_to_event(rows[0]) if rows else None

    async def get_by_slug(self, slug: str) -> Event | None:
        rows = await self._fetchall("SELECT * FROM events WHERE slug = ?", (slug,))
        return _row_to_event(rows[0]) if rows else None

    async def list_all(self) -> list[Event]:
        rows = await self._fetchall("SELECT * FROM events ORDER BY id ASC")
        return [_row_to_event(row) for row in rows]

    async def similar_to(self, event: Event, limit: int = 3) -> list[Event]:
        """Other events sharing at least one tag with *event*."""
        wanted = {tag.lower() for tag in event.tags}
        if not wanted:
            return []
        similar = [
            other
            for other in await self.list_all()
            if other.slug != event.slug and wanted & {t.lower() for t in other.tags}
        ]
        return similar[:limit]


class BookingStore:
    """Gateway for the bookings table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, event_id: int, email: str) -> Booking:
        """Record a booking, checking first that the event exists."""
        try:
            booking = Booking(event_id=event_id, email=email)
        except ValidationError as exc:
            raise RecordValidationError(validation_errors(exc)) from exc

        # The existence check and the insert share one transaction
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM events WHERE id = ?", (booking.event_id,)
            )
            if await cursor.fetchone() is None:
                raise MissingReferenceError(
                    f"Event with ID {booking.event_id} does not exist"
                )
            now = _now()
            cursor = await conn.execute(
                "INSERT INTO bookings (event_id, email, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (booking.event_id, booking.email, now, now),
            )
            booking_id = cursor.lastrowid

        log.info("Booked %s for event %s", booking.email, booking.event_id)
        return booking.model_copy(
            update={
                "id": booking_id,
                "created_at": datetime.fromisoformat(now),
                "updated_at": datetime.fromisoformat(now),
            }
        )

    async def count_for_event(self, event_id: int) -> int:
        conn = await self.db.connect()
        try:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM bookings WHERE event_id = ?", (event_id,)
            )
            row = await cursor.fetchone()
        except sqlite3.Error as exc:
            raise _classify(exc) from exc
        return row[0] if row else 0
