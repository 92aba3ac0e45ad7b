"""
Health check HTTP server for Kubernetes liveness and readiness checks.

Provides endpoints for monitoring the health and readiness of the
governance core and the sweeper backlog.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from flask import Flask, jsonify

from group_governance.kernel.logging import get_logger

logger = get_logger(__name__)

app = Flask(__name__)

# Global state - will be set by initialize_health_server()
_db_path: Path | None = None
_governance: Any = None  # GroupGovernance instance for detailed checks


def initialize_health_server(db_path: str | Path, governance: Any = None) -> None:
    """
    Initialize the health server with a database path.

    Args:
        db_path: Path to SQLite database
        governance: Optional GroupGovernance instance for detailed checks
    """
    global _db_path, _governance
    _db_path = Path(db_path)
    _governance = governance
    logger.info("Health server initialized", db_path=str(_db_path))


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[dict[str, Any], int]:
    """
    Liveness check - checks if the process is running.

    Returns:
        JSON response with status and 200 OK
    """
    return jsonify({"status": "alive", "service": "group-governance"}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[dict[str, Any], int]:
    """
    Readiness check - checks if the service is ready to accept requests.

    Checks:
    - Database path is configured and the file exists
    - The events table can be queried

    Returns:
        JSON response with status and 200 OK if ready, 503 if not ready
    """
    if _db_path is None:
        logger.error("Readiness check failed: DB path not initialized")
        return jsonify({"status": "not_ready", "reason": "database_path_not_initialized"}), 503

    if not _db_path.exists():
        logger.error("Readiness check failed: DB file does not exist", db_path=str(_db_path))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_file_not_found",
                    "db_path": str(_db_path),
                }
            ),
            503,
        )

    try:
        conn = sqlite3.connect(str(_db_path), timeout=1.0)
        try:
            event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        finally:
            conn.close()
    except sqlite3.OperationalError as e:
        logger.error("Readiness check failed: DB operational error", error=str(e))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_operational_error",
                    "error": str(e),
                }
            ),
            503,
        )
    except Exception as e:
        logger.error("Readiness check failed: Unexpected error", error=str(e), exc_info=True)
        return (
            jsonify({"status": "not_ready", "reason": "unexpected_error", "error": str(e)}),
            503,
        )

    logger.debug("Readiness check passed", event_count=event_count)
    return jsonify({"status": "ready", "database": "accessible", "event_count": event_count}), 200


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[dict[str, Any], int]:
    """
    Detailed health check - storage stats and sweeper backlog.

    ``overdue_deadlines`` counts proposals and polls whose deadline has
    passed but which no sweep has handled yet; a growing number means the
    scheduler isn't running.

    Returns:
        JSON response with detailed health information
    """
    from group_governance import __version__

    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": "group-governance",
        "version": __version__,
    }

    if _db_path and _db_path.exists():
        try:
            conn = sqlite3.connect(str(_db_path), timeout=1.0)
            try:
                event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
                stream_count = conn.execute(
                    "SELECT COUNT(DISTINCT stream_id) FROM events"
                ).fetchone()[0]
                schema_version = conn.execute("PRAGMA user_version").fetchone()[0]
                page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            finally:
                conn.close()

            health_data["database"] = {
                "status": "healthy",
                "path": str(_db_path),
                "event_count": event_count,
                "stream_count": stream_count,
                "schema_version": schema_version,
                "size_mb": round((page_count * page_size) / (1024 * 1024), 2),
            }

        except sqlite3.Error as e:
            logger.error("Database health check failed", error=str(e))
            health_data["database"] = {"status": "unhealthy", "error": str(e)}
            health_data["status"] = "degraded"
    else:
        health_data["database"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"

    if _governance is not None and health_data["status"] == "healthy":
        now = _governance.time_provider.now()
        overdue = _governance.event_store.due_deadlines(now)
        health_data["sweeper"] = {
            "overdue_deadlines": len(overdue),
            "oldest_due_at": overdue[0].due_at.isoformat() if overdue else None,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    """
    Run the health check server.

    Args:
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting health check server", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)
