"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from group_governance.governance import GroupGovernance
from group_governance.kernel.bus import ALL_EVENTS, InProcessBus
from group_governance.kernel.event_store import SQLiteEventStore
from group_governance.kernel.events import Event
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.time import TestTimeProvider


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL mode leaves two sidecar files)
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC. Proposals opened "now" expire
    at 2025-01-17 12:00:00 UTC under the default 48 hour TTL.
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> GovernancePolicy:
    """
    Provide the default governance policy for tests

    Fun fact: The "more than three members, at least two leaders" rule
    means a group of four is the smallest one that can be captured.
    """
    return GovernancePolicy()


@pytest.fixture
def bus() -> InProcessBus:
    return InProcessBus()


@pytest.fixture
def published(bus: InProcessBus) -> list[Event]:
    """Every event and alert published on the bus, in order"""
    seen: list[Event] = []
    bus.register_event_handler(ALL_EVENTS, seen.append)
    return seen


@pytest.fixture
def gov(
    temp_db: Path,
    policy: GovernancePolicy,
    test_time: TestTimeProvider,
    bus: InProcessBus,
) -> GroupGovernance:
    """
    Provide a governance core on a fresh database with frozen time

    Every public method is a self-contained operation, so a second
    GroupGovernance on the same ``temp_db`` behaves like another process.
    """
    return GroupGovernance(temp_db, policy=policy, time_provider=test_time, bus=bus)
