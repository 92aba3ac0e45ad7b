"""
SQLite Event Store - Append-only event log with multi-stream atomic commits

The event store is the source of truth for groups, ballots and polls. It
provides:
- Append-only semantics (events never modified or deleted)
- Optimistic locking on every stream an operation read
- All-or-nothing commits spanning several streams plus the deadline index
- Schema migrations for the store itself and upcasting for old payloads

Fun fact: SQLite's "BEGIN IMMEDIATE" grabs the write lock up front, which
is exactly the compare-and-swap primitive a ballot box needs - two voters
can read at once, but only one of them gets to close the ballot.
"""

import json
import sqlite3
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from group_governance.kernel.errors import EventStoreError, StreamVersionConflict
from group_governance.kernel.events import Event
from group_governance.kernel.logging import get_logger
from group_governance.kernel.metrics import (
    events_appended_total,
    events_loaded_total,
    events_upcast_total,
    stream_version_conflicts_total,
)
from group_governance.kernel.retry import retry_on_sqlite_lock
from group_governance.kernel.unit_of_work import Deadline, UnitOfWork
from group_governance.kernel.upcasting import UpcasterRegistry, upcasters

logger = get_logger(__name__)


def _migration_1(conn: sqlite3.Connection) -> None:
    """Initial events table"""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS events (
            event_id TEXT PRIMARY KEY,
            stream_id TEXT NOT NULL,
            stream_type TEXT NOT NULL,
            version INTEGER NOT NULL,
            command_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            occurred_at TEXT NOT NULL,
            actor_id TEXT,
            payload_json TEXT NOT NULL,

            UNIQUE(stream_id, version)
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_events_type ON events(stream_type, event_type)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_events_time ON events(occurred_at)")


def _migration_2(conn: sqlite3.Connection) -> None:
    """Payload schema versions and the deadline index used by the sweeper"""
    conn.execute(
        "ALTER TABLE events ADD COLUMN schema_version INTEGER NOT NULL DEFAULT 1"
    )
    conn.execute("""
        CREATE TABLE IF NOT EXISTS deadlines (
            stream_id TEXT PRIMARY KEY,
            stream_type TEXT NOT NULL,
            group_id TEXT NOT NULL,
            due_at TEXT NOT NULL
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_deadlines_due ON deadlines(stream_type, due_at)"
    )


# Position in this list + 1 is the value stored in PRAGMA user_version
MIGRATIONS: list[Callable[[sqlite3.Connection], None]] = [
    _migration_1,
    _migration_2,
]

SCHEMA_VERSION = len(MIGRATIONS)


def _timestamp(dt: datetime) -> str:
    """UTC ISO-8601 with fixed precision, so string order matches time order"""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


_EVENT_COLUMNS = """
    event_id, stream_id, stream_type, version, command_id,
    event_type, occurred_at, actor_id, payload_json, schema_version
"""


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    Uses WAL mode for crash safety and concurrent readers. Writers serialize
    on ``BEGIN IMMEDIATE``; within that lock every expected stream version
    is re-checked before anything is written.

    Schema:
    - events: append-only event log, UNIQUE(stream_id, version)
    - deadlines: one row per open ballot/poll that must be swept at due_at
    """

    def __init__(
        self,
        db_path: str | Path,
        upcaster_registry: UpcasterRegistry | None = None,
        busy_timeout: float = 5.0,
    ) -> None:
        """
        Initialize event store with SQLite database

        Args:
            db_path: Path to SQLite database file
            upcaster_registry: Payload upgrade steps (global registry if None)
            busy_timeout: Seconds a writer waits for the lock before erroring
        """
        self.db_path = Path(db_path)
        self.upcasters = upcaster_registry or upcasters
        self.busy_timeout = busy_timeout
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Apply pending migrations, tracked in PRAGMA user_version"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            current = conn.execute("PRAGMA user_version").fetchone()[0]
            if current > SCHEMA_VERSION:
                raise EventStoreError(
                    f"Database schema v{current} is newer than this build (v{SCHEMA_VERSION})"
                )

            for number, migration in enumerate(MIGRATIONS[current:], start=current + 1):
                conn.execute("BEGIN IMMEDIATE")
                try:
                    # Another process may have migrated while we waited for the lock
                    if conn.execute("PRAGMA user_version").fetchone()[0] >= number:
                        conn.execute("COMMIT")
                        continue
                    migration(conn)
                    # PRAGMA does not accept bound parameters
                    conn.execute(f"PRAGMA user_version = {number}")
                    conn.execute("COMMIT")
                except Exception:
                    conn.rollback()
                    raise
                logger.info("Event store migrated", schema_version=number)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Connections run in autocommit mode; write paths open their own
        transaction explicitly so the lock is taken before any read.
        """
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.busy_timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def schema_version(self) -> int:
        with self._connect() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    @retry_on_sqlite_lock()
    def commit(self, uow: UnitOfWork) -> list[Event]:
        """
        Atomically commit a unit of work

        Inside one write transaction:
        1. Every expected stream version is compared with the stored one
        2. All staged events are inserted
        3. Deadlines are cleared and scheduled

        Args:
            uow: Unit of work produced by a handler

        Returns:
            The committed events

        Raises:
            StreamVersionConflict: If any stream moved since it was read
            EventStoreError: On other database errors
        """
        if uow.is_empty:
            return []

        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for stream_id, expected_version in uow.expected_versions.items():
                    current_version = self._get_stream_version(conn, stream_id)
                    if current_version != expected_version:
                        raise StreamVersionConflict(
                            stream_id, expected_version, current_version
                        )

                for event in uow.events:
                    conn.execute(
                        f"INSERT INTO events ({_EVENT_COLUMNS}) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            event.event_id,
                            event.stream_id,
                            event.stream_type,
                            event.version,
                            event.command_id,
                            event.event_type,
                            event.occurred_at.isoformat(),
                            event.actor_id,
                            json.dumps(event.payload),
                            event.schema_version,
                        ),
                    )

                for stream_id in uow.cleared_deadlines:
                    conn.execute("DELETE FROM deadlines WHERE stream_id = ?", (stream_id,))

                for deadline in uow.deadlines.values():
                    conn.execute(
                        "INSERT OR REPLACE INTO deadlines "
                        "(stream_id, stream_type, group_id, due_at) VALUES (?, ?, ?, ?)",
                        (
                            deadline.stream_id,
                            deadline.stream_type,
                            deadline.group_id,
                            _timestamp(deadline.due_at),
                        ),
                    )

                conn.execute("COMMIT")

            except StreamVersionConflict as e:
                conn.rollback()
                stream_type = self._stream_type_of(uow, e.stream_id)
                stream_version_conflicts_total.labels(stream_type=stream_type).inc()
                logger.info(
                    "Commit rejected: stream moved",
                    stream_id=e.stream_id,
                    expected_version=e.expected_version,
                    actual_version=e.actual_version,
                )
                raise

            except sqlite3.IntegrityError as e:
                conn.rollback()
                error_msg = str(e).lower()
                if "stream_id" in error_msg and "version" in error_msg:
                    # Backstop: the version check above should have caught this
                    stream_version_conflicts_total.labels(stream_type="unknown").inc()
                    raise StreamVersionConflict("unknown", -1, -1) from e
                raise EventStoreError(f"Failed to commit events: {e}") from e

            except sqlite3.OperationalError:
                conn.rollback()
                raise

            except Exception as e:
                conn.rollback()
                raise EventStoreError(f"Unexpected error committing events: {e}") from e

        for event in uow.events:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()

        return list(uow.events)

    def load_stream(self, stream_id: str) -> list[Event]:
        """
        Load all events for a stream in version order

        Old payloads are upcast to the current schema before they are
        returned.

        Args:
            stream_id: Aggregate root identifier

        Returns:
            List of events in version order (empty if stream doesn't exist)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE stream_id = ? ORDER BY version ASC",
                (stream_id,),
            )
            events = [self._row_to_event(row) for row in cursor.fetchall()]

        if events:
            events_loaded_total.labels(stream_type=events[0].stream_type).inc(len(events))
        return events

    def list_streams(self, stream_type: str) -> list[str]:
        """Stream ids of the given type, oldest first"""
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT stream_id FROM events WHERE stream_type = ? AND version = 1 "
                "ORDER BY occurred_at ASC, event_id ASC",
                (stream_type,),
            )
            return [row["stream_id"] for row in cursor.fetchall()]

    def get_stream_version(self, stream_id: str) -> int:
        """
        Get current version of a stream

        Returns:
            Current stream version (0 if stream doesn't exist)
        """
        with self._connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        cursor = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def due_deadlines(
        self, now: datetime, stream_type: str | None = None
    ) -> list[Deadline]:
        """
        Deadlines at or before ``now``, oldest first

        Served by the (stream_type, due_at) index; the sweeper never scans
        the event log.
        """
        with self._connect() as conn:
            if stream_type:
                cursor = conn.execute(
                    "SELECT stream_id, stream_type, group_id, due_at FROM deadlines "
                    "WHERE stream_type = ? AND due_at <= ? ORDER BY due_at ASC",
                    (stream_type, _timestamp(now)),
                )
            else:
                cursor = conn.execute(
                    "SELECT stream_id, stream_type, group_id, due_at FROM deadlines "
                    "WHERE due_at <= ? ORDER BY due_at ASC",
                    (_timestamp(now),),
                )
            return [
                Deadline(
                    stream_id=row["stream_id"],
                    stream_type=row["stream_type"],
                    group_id=row["group_id"],
                    due_at=datetime.fromisoformat(row["due_at"]),
                )
                for row in cursor.fetchall()
            ]

    def get_deadline(self, stream_id: str) -> Deadline | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT stream_id, stream_type, group_id, due_at FROM deadlines "
                "WHERE stream_id = ?",
                (stream_id,),
            ).fetchone()
        if row is None:
            return None
        return Deadline(
            stream_id=row["stream_id"],
            stream_type=row["stream_type"],
            group_id=row["group_id"],
            due_at=datetime.fromisoformat(row["due_at"]),
        )

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        """Convert SQLite row to Event object, upcasting old payloads"""
        event = Event(
            event_id=row["event_id"],
            stream_id=row["stream_id"],
            stream_type=row["stream_type"],
            version=row["version"],
            command_id=row["command_id"],
            event_type=row["event_type"],
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            actor_id=row["actor_id"],
            payload=json.loads(row["payload_json"]),
            schema_version=row["schema_version"],
        )
        upgraded = self.upcasters.upcast(event)
        if upgraded is not event:
            events_upcast_total.labels(event_type=event.event_type).inc()
        return upgraded

    @staticmethod
    def _stream_type_of(uow: UnitOfWork, stream_id: str) -> str:
        for event in uow.events:
            if event.stream_id == stream_id:
                return event.stream_type
        return "read_guard"

    def count_events(self) -> int:
        """Get total number of events in store"""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def count_streams(self) -> int:
        """Get total number of distinct streams"""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(DISTINCT stream_id) FROM events").fetchone()[0]
