import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from .config import database_path
from .errors import PersistenceError
from .models import AlertRecord, AlertSummary, Machine, Report, SnapshotIn


SCHEMA = """
    CREATE TABLE IF NOT EXISTS machines (
        machine_id TEXT PRIMARY KEY,
        hostname TEXT,
        platform TEXT,
        os_info JSON,
        last_seen TEXT,
        is_active INTEGER NOT NULL DEFAULT 1
    );

    CREATE TABLE IF NOT EXISTS reports (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        machine_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        received_at TEXT NOT NULL,
        payload JSON,
        FOREIGN KEY (machine_id) REFERENCES machines (machine_id)
    );
    CREATE INDEX IF NOT EXISTS idx_reports_machine ON reports (machine_id, timestamp);

    CREATE TABLE IF NOT EXISTS alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        machine_id TEXT NOT NULL,
        alert_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        is_resolved INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        resolved_at TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_alerts_machine ON alerts (machine_id, is_resolved);
    -- at most one open alert per machine and type
    CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open
        ON alerts (machine_id, alert_type) WHERE is_resolved = 0;
"""

ALERT_COLUMNS = "id, machine_id, alert_type, severity, title, message, is_resolved, created_at, resolved_at"


def to_iso(value: datetime) -> str:
    """
    Timestamps are stored as fixed width UTC ISO strings so they sort and
    compare correctly as text.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _alert_from_row(row) -> AlertRecord:
    return AlertRecord(
        id=row["id"],
        machine_id=row["machine_id"],
        alert_type=row["alert_type"],
        severity=row["severity"],
        title=row["title"],
        message=row["message"],
        is_resolved=bool(row["is_resolved"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        resolved_at=datetime.fromisoformat(row["resolved_at"]) if row["resolved_at"] else None,
    )


def _machine_from_row(row) -> Machine:
    return Machine(
        machine_id=row["machine_id"],
        hostname=row["hostname"],
        platform=row["platform"],
        os_info=json.loads(row["os_info"]) if row["os_info"] else None,
        last_seen=datetime.fromisoformat(row["last_seen"]) if row["last_seen"] else None,
        is_active=bool(row["is_active"]),
    )


def _report_from_row(row) -> Report:
    return Report(
        id=row["id"],
        machine_id=row["machine_id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        received_at=datetime.fromisoformat(row["received_at"]),
        payload=json.loads(row["payload"]),
    )


class AlertStore:
    """
    sqlite backed store for machines, reports and alerts.

    Every sqlite failure surfaces as PersistenceError. Each call opens its
    own connection, so a store can be shared between request threads.
    """

    def __init__(self, db_path=None):
        self.db_path = db_path or database_path()

    @contextmanager
    def connection(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Database error: {e}") from e
        finally:
            conn.close()

    def create_tables(self):
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # Alerts

    def find_open_alert(self, machine_id, alert_type) -> Optional[AlertRecord]:
        with self.connection() as conn:
            row = conn.execute(
                f"SELECT {ALERT_COLUMNS} FROM alerts WHERE machine_id = ? AND alert_type = ? AND is_resolved = 0",
                (machine_id, alert_type)
            ).fetchone()
        return _alert_from_row(row) if row else None

    def insert_alert(self, machine_id, alert_type, severity, title, message, created_at=None) -> Optional[AlertRecord]:
        """
        Inserts an open alert. Returns None when an open alert of the same
        type already exists for the machine; the partial unique index makes
        this a single atomic check.
        """
        created_at = to_iso(created_at or utcnow())
        with self.connection() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO alerts (machine_id, alert_type, severity, title, message, is_resolved, created_at) "
                    "VALUES (?, ?, ?, ?, ?, 0, ?)",
                    (machine_id, alert_type, severity, title, message, created_at)
                )
            except sqlite3.IntegrityError:
                return None
            row = conn.execute(f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _alert_from_row(row)

    def resolve_open_alerts(self, machine_id, alert_type, resolved_at=None) -> int:
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE alerts SET is_resolved = 1, resolved_at = ? "
                "WHERE machine_id = ? AND alert_type = ? AND is_resolved = 0",
                (to_iso(resolved_at or utcnow()), machine_id, alert_type)
            )
            return cursor.rowcount

    def resolve_alert(self, alert_id, resolved_at=None) -> Optional[AlertRecord]:
        with self.connection() as conn:
            conn.execute(
                "UPDATE alerts SET is_resolved = 1, resolved_at = ? WHERE id = ? AND is_resolved = 0",
                (to_iso(resolved_at or utcnow()), alert_id)
            )
            row = conn.execute(f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id = ?", (alert_id,)).fetchone()
        return _alert_from_row(row) if row else None

    def list_open_alerts(self, machine_id) -> List[AlertRecord]:
        return self.list_alerts(machine_id=machine_id, resolved=False, limit=None)

    def list_alerts(self, machine_id=None, resolved=None, limit=100) -> List[AlertRecord]:
        query = f"SELECT {ALERT_COLUMNS} FROM alerts"
        clauses, params = [], []
        if machine_id is not None:
            clauses.append("machine_id = ?")
            params.append(machine_id)
        if resolved is not None:
            clauses.append("is_resolved = ?")
            params.append(1 if resolved else 0)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_alert_from_row(row) for row in rows]

    def delete_resolved_before(self, cutoff: datetime) -> int:
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM alerts WHERE is_resolved = 1 AND resolved_at < ?",
                (to_iso(cutoff),)
            )
            return cursor.rowcount

    def alert_summary(self, since: datetime) -> AlertSummary:
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_alerts,
                    SUM(CASE WHEN severity = 'critical' THEN 1 ELSE 0 END) AS critical,
                    SUM(CASE WHEN severity = 'high' THEN 1 ELSE 0 END) AS high,
                    SUM(CASE WHEN severity = 'medium' THEN 1 ELSE 0 END) AS medium,
                    SUM(CASE WHEN severity = 'low' THEN 1 ELSE 0 END) AS low,
                    SUM(CASE WHEN created_at > ? THEN 1 ELSE 0 END) AS last_24h
                FROM alerts
                WHERE is_resolved = 0
                """,
                (to_iso(since),)
            ).fetchone()
        # SUM over no rows is NULL
        return AlertSummary(**{key: row[key] or 0 for key in row.keys()})

    # Machines and reports

    def upsert_machine(self, snapshot: SnapshotIn):
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO machines (machine_id, hostname, platform, os_info, last_seen, is_active)
                VALUES (?, ?, ?, ?, ?, 1)
                ON CONFLICT (machine_id) DO UPDATE SET
                    hostname = excluded.hostname,
                    platform = excluded.platform,
                    os_info = excluded.os_info,
                    last_seen = excluded.last_seen,
                    is_active = 1
                """,
                (
                    snapshot.machine_id,
                    snapshot.hostname,
                    snapshot.platform,
                    json.dumps(snapshot.os_info.model_dump(by_alias=True)),
                    to_iso(snapshot.timestamp),
                )
            )

    def get_machine(self, machine_id) -> Optional[Machine]:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM machines WHERE machine_id = ?", (machine_id,)).fetchone()
        return _machine_from_row(row) if row else None

    def list_machines(self, limit=50, offset=0) -> List[Machine]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM machines ORDER BY machine_id LIMIT ? OFFSET ?", (limit, offset)
            ).fetchall()
        return [_machine_from_row(row) for row in rows]

    def insert_report(self, snapshot: SnapshotIn) -> int:
        payload = snapshot.model_dump(mode="json", by_alias=True, exclude={"machine_id", "timestamp"})
        with self.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO reports (machine_id, timestamp, received_at, payload) VALUES (?, ?, ?, ?)",
                (snapshot.machine_id, to_iso(snapshot.timestamp), to_iso(utcnow()), json.dumps(payload))
            )
            return cursor.lastrowid

    def latest_report(self, machine_id) -> Optional[Report]:
        reports = self.list_reports(machine_id, limit=1)
        return reports[0] if reports else None

    def list_reports(self, machine_id, limit=50, offset=0) -> List[Report]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM reports WHERE machine_id = ? ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
                (machine_id, limit, offset)
            ).fetchall()
        return [_report_from_row(row) for row in rows]
