"""
Tests for health server

Tests Flask-based health check endpoints for Kubernetes liveness and
readiness checks, plus the sweeper backlog reported by /health.

Fun fact: Kubernetes restarts a pod that fails its liveness check but only
stops routing traffic to one that fails readiness - two different verdicts
for two different kinds of sick.
"""

import sqlite3
from pathlib import Path

import pytest

from group_governance import __version__, health_server
from group_governance.governance import GroupGovernance
from group_governance.health_server import app, initialize_health_server
from group_governance.kernel.time import TestTimeProvider
from tests.helpers import make_group


@pytest.fixture
def seeded_db(tmp_path: Path) -> Path:
    """A minimal events table with three events over two streams"""
    db_path = tmp_path / "health.db"
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE events (event_id TEXT PRIMARY KEY, stream_id TEXT NOT NULL)")
    conn.executemany(
        "INSERT INTO events (event_id, stream_id) VALUES (?, ?)",
        [("evt-1", "stream-1"), ("evt-2", "stream-1"), ("evt-3", "stream-2")],
    )
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def client():
    """Flask test client; global server state is reset afterwards"""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client
    health_server._db_path = None
    health_server._governance = None


def test_initialize_accepts_string_path(client, seeded_db: Path) -> None:
    initialize_health_server(str(seeded_db))
    assert health_server._db_path == seeded_db


def test_liveness_works_without_initialization(client) -> None:
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.get_json() == {"status": "alive", "service": "group-governance"}


class TestReadiness:
    def test_ready(self, client, seeded_db: Path) -> None:
        initialize_health_server(seeded_db)

        response = client.get("/health/ready")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "ready"
        assert data["event_count"] == 3

    def test_not_initialized(self, client) -> None:
        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.get_json()["reason"] == "database_path_not_initialized"

    def test_missing_file(self, client, tmp_path: Path) -> None:
        initialize_health_server(tmp_path / "missing.db")

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.get_json()["reason"] == "database_file_not_found"

    def test_missing_table(self, client, seeded_db: Path) -> None:
        initialize_health_server(seeded_db)
        conn = sqlite3.connect(str(seeded_db))
        conn.execute("DROP TABLE events")
        conn.commit()
        conn.close()

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.get_json()["reason"] == "database_operational_error"

    def test_unexpected_error(self, client, seeded_db: Path, monkeypatch) -> None:
        initialize_health_server(seeded_db)

        def broken_connect(*args, **kwargs):
            raise RuntimeError("Unexpected database connection error")

        monkeypatch.setattr(health_server.sqlite3, "connect", broken_connect)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.get_json()["reason"] == "unexpected_error"


class TestDetailedHealth:
    def test_database_metrics(self, client, seeded_db: Path) -> None:
        initialize_health_server(seeded_db)

        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["database"]["event_count"] == 3
        assert data["database"]["stream_count"] == 2
        assert "size_mb" in data["database"]
        assert "sweeper" not in data

    def test_degraded_when_not_initialized(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 503
        data = response.get_json()
        assert data["status"] == "degraded"
        assert data["database"]["status"] == "not_initialized"

    def test_degraded_on_database_error(self, client, seeded_db: Path) -> None:
        initialize_health_server(seeded_db)
        conn = sqlite3.connect(str(seeded_db))
        conn.execute("DROP TABLE events")
        conn.commit()
        conn.close()

        response = client.get("/health")

        assert response.status_code == 503
        assert response.get_json()["database"]["status"] == "unhealthy"

    def test_sweeper_backlog(
        self, client, gov: GroupGovernance, test_time: TestTimeProvider
    ) -> None:
        group_id = make_group(gov, "alice", managers=["bob", "carol"], members=["dave"])
        gov.open_proposal(group_id, "kick", "dave", "Spam", actor_id="alice")
        initialize_health_server(gov.sqlite_path, governance=gov)

        before = client.get("/health").get_json()
        assert before["sweeper"]["overdue_deadlines"] == 0
        assert before["sweeper"]["oldest_due_at"] is None

        test_time.advance_hours(49)
        overdue = client.get("/health").get_json()
        assert overdue["sweeper"]["overdue_deadlines"] == 1
        assert overdue["sweeper"]["oldest_due_at"].startswith("2025-01-17T12:00:00")

        gov.sweep()
        after = client.get("/health").get_json()
        assert after["sweeper"]["overdue_deadlines"] == 0
        assert after["database"]["schema_version"] == 2
