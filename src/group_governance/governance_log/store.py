"""
Governance Log Store - append-only audit table with gated reads

The log lives in its own table next to the event store. Appends are
fire-and-forget: a failure is logged and counted, and the governance action
that produced the entry stands. Reads are gated by the group's
transparency mode and the viewer's role.

Fun fact: Medieval guilds kept their minutes in a chest with three locks;
who held the keys decided who could read the record. ``transparency_mode``
is the same idea with fewer locksmiths.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from group_governance.governance_log.models import GovernanceLogEntry
from group_governance.kernel.errors import Forbidden, Unauthorized
from group_governance.kernel.logging import get_logger
from group_governance.kernel.metrics import governance_log_append_failures_total
from group_governance.membership.models import TransparencyMode
from group_governance.membership.projections import GroupState

logger = get_logger(__name__)


class GovernanceLogStore:
    """
    SQLite-backed governance log

    Schema:
    - governance_log: one row per entry, UNIQUE(cause_event_id), indexed by
      (group_id, created_at)
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize log store with SQLite database

        Args:
            db_path: Path to SQLite database file (can be same as event store)
        """
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables if they don't exist"""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS governance_log (
                    entry_id TEXT PRIMARY KEY,
                    group_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    actor_id TEXT,
                    target_user_id TEXT,
                    ballot_id TEXT,
                    details_json TEXT NOT NULL,
                    summary TEXT NOT NULL,
                    cause_event_id TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_log_group ON governance_log(group_id, created_at)"
            )
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections"""
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def append(self, entry: GovernanceLogEntry) -> bool:
        """
        Durably record an entry; never raises

        Re-appending an entry derived from the same event is a no-op.

        Returns:
            True if the entry is stored (now or previously), False on failure
        """
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO governance_log (
                        entry_id, group_id, action_type, actor_id, target_user_id,
                        ballot_id, details_json, summary, cause_event_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.entry_id,
                        entry.group_id,
                        entry.action_type,
                        entry.actor_id,
                        entry.target_user_id,
                        entry.ballot_id,
                        json.dumps(entry.details.model_dump(mode="json")),
                        entry.summary,
                        entry.cause_event_id,
                        entry.created_at.isoformat(),
                    ),
                )
                conn.commit()
        except Exception as e:
            governance_log_append_failures_total.inc()
            logger.error(
                "Governance log append failed",
                group_id=entry.group_id,
                action_type=entry.action_type,
                cause_event_id=entry.cause_event_id,
                error=str(e),
            )
            return False
        return True

    def append_all(self, entries: list[GovernanceLogEntry]) -> int:
        """Append entries in order; returns how many were stored"""
        return sum(1 for entry in entries if self.append(entry))

    def query(
        self,
        group: GroupState,
        viewer_id: str | None,
        *,
        action_type: str | None = None,
        target_user_id: str | None = None,
        limit: int | None = None,
    ) -> list[GovernanceLogEntry]:
        """
        Entries for a group, newest first

        Args:
            group: Current group state (for transparency mode and roster)
            viewer_id: Caller identity; None for unauthenticated visitors
            action_type: Only entries of this type
            target_user_id: Only entries about this user
            limit: Maximum number of entries

        Raises:
            Unauthorized: Anonymous viewer on a non-public log
            Forbidden: Viewer's role is not allowed to read this log
        """
        self.check_access(group, viewer_id)

        sql = "SELECT * FROM governance_log WHERE group_id = ?"
        params: list = [group.group_id]
        if action_type:
            sql += " AND action_type = ?"
            params.append(action_type)
        if target_user_id:
            sql += " AND target_user_id = ?"
            params.append(target_user_id)
        sql += " ORDER BY created_at DESC, entry_id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def check_access(group: GroupState, viewer_id: str | None) -> None:
        """
        Enforce the transparency mode

        private -> leaders only; public_members -> any member;
        public_all -> anyone, signed in or not.
        """
        mode = group.transparency_mode
        if mode == TransparencyMode.PUBLIC_ALL:
            return
        if not viewer_id:
            raise Unauthorized("sign in to view this group's governance log")

        role = group.role_of(viewer_id)
        if mode == TransparencyMode.PUBLIC_MEMBERS and role is not None:
            return
        if mode == TransparencyMode.PRIVATE and role is not None and role.is_leader:
            return
        raise Forbidden(f"the governance log of this group is {mode.value}")

    def count(self, group_id: str) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM governance_log WHERE group_id = ?", (group_id,)
            ).fetchone()[0]

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> GovernanceLogEntry:
        return GovernanceLogEntry(
            entry_id=row["entry_id"],
            group_id=row["group_id"],
            actor_id=row["actor_id"],
            target_user_id=row["target_user_id"],
            ballot_id=row["ballot_id"],
            details=json.loads(row["details_json"]),
            summary=row["summary"],
            cause_event_id=row["cause_event_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
