"""Audit sinks, including an append-only SQLite event log."""

import json
import logging
import sqlite3
from typing import List, Optional

from bantai.audit.explain import AuditNode, build_explain_tree
from bantai.audit.models import AuditEvent, AuditEventType


logger = logging.getLogger(__name__)


class MemoryAuditSink:
    """Collects events in a list. Handy for tests and short-lived tools."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def __call__(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self.events if e.type == event_type]

    def clear(self) -> None:
        self.events.clear()


class LoggingAuditSink:
    """Writes one log record per event."""

    def __init__(self, logger_name: str = "bantai.audit.events", level: int = logging.INFO):
        self.logger = logging.getLogger(logger_name)
        self.level = level

    def __call__(self, event: AuditEvent) -> None:
        outcome = f" -> {event.decision.outcome}" if event.decision else ""
        subject = event.rule.name if event.rule else event.policy.name
        self.logger.log(
            self.level,
            f"[{event.evaluation_id}] {event.type.value} {subject}{outcome}",
        )


class AuditLog:
    """
    Append-only audit event log.

    Features:
    - Events are only ever inserted, never updated or deleted
    - Lookup by event id, by evaluation id, or most recent first
    - ``explain`` rebuilds the causal tree of one evaluation on demand
    - SQLite storage, in-memory by default

    Instances are callable and can be registered directly as audit sinks.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the audit log.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory DB.
        """
        self.db_path = db_path or ":memory:"

        # Keep persistent connection for in-memory DBs
        self._conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._conn = sqlite3.connect(":memory:")

        self._init_db()

        logger.info(f"Audit log initialized: {self.db_path}")

    def __call__(self, event: AuditEvent) -> None:
        self.append(event)

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        if self._conn:
            return self._conn
        return sqlite3.connect(self.db_path)

    def _close_connection(self, conn: sqlite3.Connection) -> None:
        """Close connection if not persistent."""
        if conn != self._conn:
            conn.close()

    def append(self, event: AuditEvent) -> None:
        """Store one event."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            """INSERT INTO audit_events
               (seq, event_id, evaluation_id, event_type, parent_id, timestamp, body)
               VALUES ((SELECT COALESCE(MAX(seq), 0) + 1 FROM audit_events), ?, ?, ?, ?, ?, ?)""",
            (
                event.id,
                event.evaluation_id,
                event.type.value,
                event.parent_id,
                event.timestamp,
                event.model_dump_json(),
            )
        )

        conn.commit()
        self._close_connection(conn)

        logger.debug(f"Audit log append: {event.type.value} [{event.id}]")

    def get_event(self, event_id: str) -> Optional[AuditEvent]:
        """Get a specific event by ID."""
        rows = self._query("SELECT body FROM audit_events WHERE event_id = ?", (event_id,))
        return rows[0] if rows else None

    def get_events_by_evaluation(self, evaluation_id: str) -> List[AuditEvent]:
        """All events of one evaluation, in emission order."""
        return self._query(
            "SELECT body FROM audit_events WHERE evaluation_id = ? ORDER BY seq",
            (evaluation_id,)
        )

    def get_recent_events(self, limit: int = 20) -> List[AuditEvent]:
        """Most recent events first."""
        return self._query(
            "SELECT body FROM audit_events ORDER BY seq DESC LIMIT ?",
            (limit,)
        )

    def get_event_count(self) -> int:
        """Get total number of events."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM audit_events")
        count = cursor.fetchone()[0]
        self._close_connection(conn)
        return count

    def explain(self, evaluation_id: str) -> List[AuditNode]:
        """Causal tree (forest) of one evaluation."""
        return build_explain_tree(self.get_events_by_evaluation(evaluation_id))

    def _query(self, sql: str, params: tuple) -> List[AuditEvent]:
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute(sql, params)
        rows = cursor.fetchall()
        self._close_connection(conn)
        return [AuditEvent.model_validate(json.loads(row[0])) for row in rows]

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_events (
                seq INTEGER NOT NULL UNIQUE,
                event_id TEXT PRIMARY KEY,
                evaluation_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                parent_id TEXT,
                timestamp INTEGER NOT NULL,
                body TEXT NOT NULL
            )
        """)

        # Create indexes for common queries
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_evaluation_id ON audit_events(evaluation_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_timestamp ON audit_events(timestamp)"
        )

        conn.commit()
        self._close_connection(conn)

    def close(self) -> None:
        """Close persistent connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
