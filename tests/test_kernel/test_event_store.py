"""
Tests for SQLite Event Store

Verifies core event sourcing properties:
- Multi-stream units of work commit all-or-nothing
- Optimistic locking on every stream an operation read
- The deadline index used by the sweeper
- Schema migrations and payload upcasting

Fun fact: Event sourcing tests are like archaeology - we're verifying
that the historical record is complete, immutable, and replayable!
"""

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic import BaseModel

from group_governance.kernel.errors import EventStoreError, StreamVersionConflict
from group_governance.kernel.event_store import SCHEMA_VERSION, SQLiteEventStore, _migration_1
from group_governance.kernel.ids import generate_id
from group_governance.kernel.time import TestTimeProvider
from group_governance.kernel.unit_of_work import Deadline, UnitOfWork

# Registers the GroupCreated v1 -> v2 upcaster
import group_governance.membership.events  # noqa: F401


class Note(BaseModel):
    text: str


def make_uow(test_time: TestTimeProvider, actor_id: str | None = "alice") -> UnitOfWork:
    return UnitOfWork(occurred_at=test_time.now(), actor_id=actor_id)


def test_commit_and_load_single_event(
    event_store: SQLiteEventStore, test_time: TestTimeProvider
) -> None:
    """Test committing and loading a single event"""
    uow = make_uow(test_time)
    uow.expect("stream-1", 0)
    event = uow.record("stream-1", "test", "NoteAdded", Note(text="Hello, World!"))

    committed = event_store.commit(uow)
    assert [e.event_id for e in committed] == [event.event_id]

    loaded = event_store.load_stream("stream-1")
    assert len(loaded) == 1
    assert loaded[0].event_id == event.event_id
    assert loaded[0].version == 1
    assert loaded[0].actor_id == "alice"
    assert loaded[0].payload == {"text": "Hello, World!"}
    assert loaded[0].occurred_at == test_time.now()


def test_versions_continue_across_commits(
    event_store: SQLiteEventStore, test_time: TestTimeProvider
) -> None:
    """Test that stream versions increase by one per event"""
    uow = make_uow(test_time)
    uow.expect("stream-1", 0)
    uow.record("stream-1", "test", "NoteAdded", Note(text="one"))
    uow.record("stream-1", "test", "NoteAdded", Note(text="two"))
    event_store.commit(uow)

    uow = make_uow(test_time)
    uow.expect("stream-1", event_store.get_stream_version("stream-1"))
    third = uow.record("stream-1", "test", "NoteAdded", Note(text="three"))
    event_store.commit(uow)

    assert third.version == 3
    assert [e.version for e in event_store.load_stream("stream-1")] == [1, 2, 3]
    assert event_store.get_stream_version("stream-1") == 3


def test_stale_write_raises_conflict(
    event_store: SQLiteEventStore, test_time: TestTimeProvider
) -> None:
    """Test that two writers starting from the same version can't both commit"""
    first = make_uow(test_time)
    first.expect("stream-1", 0)
    first.record("stream-1", "test", "NoteAdded", Note(text="first"))

    second = make_uow(test_time)
    second.expect("stream-1", 0)
    second.record("stream-1", "test", "NoteAdded", Note(text="second"))

    event_store.commit(first)

    with pytest.raises(StreamVersionConflict) as exc_info:
        event_store.commit(second)

    assert exc_info.value.stream_id == "stream-1"
    assert exc_info.value.expected_version == 0
    assert exc_info.value.actual_version == 1
    assert [e.payload["text"] for e in event_store.load_stream("stream-1")] == ["first"]


def test_read_guard_conflict_writes_nothing(
    event_store: SQLiteEventStore, test_time: TestTimeProvider
) -> None:
    """
    Test that a moved read-only stream rejects the whole unit

    The unit writes to stream-a but only read stream-b; stream-b moving
    must still abort it, deadlines included.
    """
    setup = make_uow(test_time)
    setup.expect("stream-b", 0)
    setup.record("stream-b", "test", "NoteAdded", Note(text="b1"))
    event_store.commit(setup)

    uow = make_uow(test_time)
    uow.expect("stream-b", 1)
    uow.expect("stream-a", 0)
    uow.record("stream-a", "test", "NoteAdded", Note(text="a1"))
    uow.schedule(
        Deadline(
            stream_id="stream-a",
            stream_type="test",
            group_id="g-1",
            due_at=test_time.now(),
        )
    )

    # Someone else moves stream-b in between
    other = make_uow(test_time)
    other.expect("stream-b", 1)
    other.record("stream-b", "test", "NoteAdded", Note(text="b2"))
    event_store.commit(other)

    with pytest.raises(StreamVersionConflict):
        event_store.commit(uow)

    assert event_store.load_stream("stream-a") == []
    assert event_store.get_deadline("stream-a") is None


def test_empty_unit_commits_nothing(
    event_store: SQLiteEventStore, test_time: TestTimeProvider
) -> None:
    uow = make_uow(test_time)
    uow.expect("stream-1", 0)
    assert uow.is_empty
    assert event_store.commit(uow) == []
    assert event_store.count_events() == 0


def test_due_deadlines_and_clearing(
    event_store: SQLiteEventStore, test_time: TestTimeProvider
) -> None:
    """Test the deadline index: due filtering, ordering, type filter and clearing"""
    now = test_time.now()
    uow = make_uow(test_time)
    for stream_id, stream_type, offset_hours in [
        ("ballot-late", "ballot", 5),
        ("ballot-early", "ballot", 1),
        ("poll-1", "poll", 2),
        ("ballot-future", "ballot", 100),
    ]:
        uow.expect(stream_id, 0)
        uow.record(stream_id, stream_type, "NoteAdded", Note(text=stream_id))
        uow.schedule(
            Deadline(
                stream_id=stream_id,
                stream_type=stream_type,
                group_id="g-1",
                due_at=now + timedelta(hours=offset_hours),
            )
        )
    event_store.commit(uow)

    later = now + timedelta(hours=10)
    due_ballots = event_store.due_deadlines(later, "ballot")
    assert [d.stream_id for d in due_ballots] == ["ballot-early", "ballot-late"]
    assert [d.stream_id for d in event_store.due_deadlines(later)] == [
        "ballot-early",
        "poll-1",
        "ballot-late",
    ]
    assert event_store.due_deadlines(now, "ballot") == []

    # A deadline is due at exactly its due_at
    assert [d.stream_id for d in event_store.due_deadlines(now + timedelta(hours=1), "ballot")] == [
        "ballot-early"
    ]

    clear = make_uow(test_time)
    clear.expect("ballot-early", 1)
    clear.record("ballot-early", "ballot", "NoteAdded", Note(text="closed"))
    clear.clear_deadline("ballot-early")
    event_store.commit(clear)

    assert [d.stream_id for d in event_store.due_deadlines(later, "ballot")] == ["ballot-late"]
    assert event_store.get_deadline("ballot-early") is None
    assert event_store.get_deadline("poll-1").due_at == now + timedelta(hours=2)


def test_list_streams_by_type(event_store: SQLiteEventStore, test_time: TestTimeProvider) -> None:
    uow = make_uow(test_time)
    for stream_id, stream_type in [("g-1", "group"), ("b-1", "ballot"), ("g-2", "group")]:
        uow.expect(stream_id, 0)
        uow.record(stream_id, stream_type, "NoteAdded", Note(text=stream_id))
    event_store.commit(uow)

    assert sorted(event_store.list_streams("group")) == ["g-1", "g-2"]
    assert event_store.count_streams() == 3
    assert event_store.count_events() == 3


def test_fresh_store_is_at_current_schema(event_store: SQLiteEventStore) -> None:
    assert event_store.schema_version() == SCHEMA_VERSION


def test_migrates_a_version_one_database(temp_db: Path) -> None:
    """Test that a database created before the deadline index is upgraded in place"""
    conn = sqlite3.connect(str(temp_db))
    _migration_1(conn)
    conn.execute(
        "INSERT INTO events (event_id, stream_id, stream_type, version, command_id, "
        "event_type, occurred_at, actor_id, payload_json) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            generate_id(),
            "stream-1",
            "test",
            1,
            "cmd-1",
            "NoteAdded",
            datetime(2024, 6, 1, tzinfo=timezone.utc).isoformat(),
            "alice",
            json.dumps({"text": "old"}),
        ),
    )
    conn.execute("PRAGMA user_version = 1")
    conn.commit()
    conn.close()

    store = SQLiteEventStore(temp_db)

    assert store.schema_version() == SCHEMA_VERSION
    loaded = store.load_stream("stream-1")
    assert loaded[0].payload == {"text": "old"}
    assert loaded[0].schema_version == 1
    assert store.due_deadlines(datetime(2030, 1, 1, tzinfo=timezone.utc)) == []


def test_refuses_newer_schema(temp_db: Path) -> None:
    conn = sqlite3.connect(str(temp_db))
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    conn.commit()
    conn.close()

    with pytest.raises(EventStoreError):
        SQLiteEventStore(temp_db)


def test_group_created_v1_is_upcast_on_read(event_store: SQLiteEventStore) -> None:
    """Test that a stored v1 GroupCreated payload reads back in the v2 shape"""
    conn = sqlite3.connect(str(event_store.db_path))
    conn.execute(
        "INSERT INTO events (event_id, stream_id, stream_type, version, command_id, "
        "event_type, occurred_at, actor_id, payload_json, schema_version) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            generate_id(),
            "g-legacy",
            "group",
            1,
            "cmd-1",
            "GroupCreated",
            datetime(2024, 6, 1, tzinfo=timezone.utc).isoformat(),
            "alice",
            json.dumps(
                {
                    "group_id": "g-legacy",
                    "name": "Old Guard",
                    "founder_id": "alice",
                    "is_public": True,
                    "created_at": datetime(2024, 6, 1, tzinfo=timezone.utc).isoformat(),
                }
            ),
            1,
        ),
    )
    conn.commit()
    conn.close()

    event = event_store.load_stream("g-legacy")[0]

    assert event.schema_version == 2
    assert "is_public" not in event.payload
    assert event.payload["transparency_mode"] == "public_all"
    assert event.payload["founders_only_rules"] is False


def test_new_group_created_events_are_written_at_v2(
    event_store: SQLiteEventStore, test_time: TestTimeProvider
) -> None:
    uow = make_uow(test_time)
    uow.expect("g-1", 0)
    event = uow.record("g-1", "group", "GroupCreated", Note(text="payload shape not checked"))
    assert event.schema_version == 2
