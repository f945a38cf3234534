"""SQLite persistence for queue config, traffic samples and alert records.

All methods are synchronous and serialized by a lock around a single
connection; async callers wrap them in ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from threading import Lock

from .models.alerts import (
    AlertHistoryEntry,
    AlertRecord,
    AlertStatistics,
    Stage,
)
from .models.traffic import HistoryPoint, MonitoredEntity, TrafficSample

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS statuses (
    name TEXT PRIMARY KEY,
    status TEXT CHECK(status IN ('Active', 'Inactive')) DEFAULT 'Inactive',
    threshold_kb INTEGER DEFAULT NULL,
    updated_at INTEGER DEFAULT (strftime('%s', 'now'))
);

CREATE TABLE IF NOT EXISTS traffic_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    rx INTEGER NOT NULL,
    tx INTEGER NOT NULL,
    timestamp INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    start_time REAL NOT NULL,
    end_time REAL,
    first_alert_sent_at REAL,
    notified_first INTEGER NOT NULL DEFAULT 0,
    notified_second INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS alert_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    alert_type TEXT NOT NULL,
    traffic_kb REAL NOT NULL,
    threshold_kb REAL NOT NULL,
    triggered_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS health_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_name TEXT NOT NULL,
    metric_value REAL NOT NULL,
    recorded_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_traffic_name_time ON traffic_log(name, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_alerts_active ON alerts(name, end_time) WHERE end_time IS NULL;
CREATE INDEX IF NOT EXISTS idx_history_time ON alert_history(triggered_at);
"""

_ALERT_COLUMNS = (
    "id, name, start_time, end_time, first_alert_sent_at, "
    "notified_first, notified_second"
)


@dataclass(frozen=True)
class OpenAlertResult:
    record: AlertRecord
    created: bool
    repaired: int = 0


def _row_to_alert(row: sqlite3.Row) -> AlertRecord:
    return AlertRecord(
        id=int(row["id"]),
        name=str(row["name"]),
        start_time=float(row["start_time"]),
        end_time=float(row["end_time"]) if row["end_time"] is not None else None,
        notified_first=bool(row["notified_first"]),
        notified_second=bool(row["notified_second"]),
        first_alert_sent_at=(
            float(row["first_alert_sent_at"])
            if row["first_alert_sent_at"] is not None
            else None
        ),
    )


class Store:
    """Durable state shared by the sampler, alert manager and queries."""

    def __init__(self, path: str | Path = "./gpon.db"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(
            self.path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        if self.path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.executescript(_SCHEMA)
        logger.info("Opened store at %s", self.path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def ping(self) -> bool:
        with self._lock:
            self._conn.execute("SELECT 1").fetchone()
        return True

    # Queue configuration (owned by the external config API)

    def upsert_entity(
        self,
        name: str,
        active: bool,
        threshold_kb: int | None = None,
        updated_at: int | None = None,
    ) -> None:
        if threshold_kb is not None and int(threshold_kb) <= 0:
            raise ValueError("threshold_kb must be a positive integer")
        status = "Active" if active else "Inactive"
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO statuses (name, status, threshold_kb, updated_at)
                VALUES (?, ?, ?, COALESCE(?, strftime('%s', 'now')))
                ON CONFLICT(name) DO UPDATE SET
                    status = excluded.status,
                    threshold_kb = excluded.threshold_kb,
                    updated_at = excluded.updated_at
                """,
                (name, status, threshold_kb, updated_at),
            )

    def monitored_entities(self) -> dict[str, MonitoredEntity]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT name, status, threshold_kb, updated_at FROM statuses"
            ).fetchall()
        out: dict[str, MonitoredEntity] = {}
        for row in rows:
            threshold = row["threshold_kb"]
            out[row["name"]] = MonitoredEntity(
                name=row["name"],
                active=row["status"] == "Active",
                threshold_kb=threshold,
                updated_at=row["updated_at"],
            )
        return out

    # Traffic samples

    def append_sample(self, sample: TrafficSample) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO traffic_log (name, rx, tx, timestamp) VALUES (?, ?, ?, ?)",
                (sample.name, sample.rx, sample.tx, sample.timestamp),
            )

    def traffic_history(self, name: str, since: int) -> list[HistoryPoint]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT timestamp, rx, tx FROM traffic_log
                WHERE name = ? AND timestamp >= ?
                ORDER BY timestamp ASC, id ASC
                """,
                (name, since),
            ).fetchall()
        return [
            HistoryPoint(timestamp=int(r["timestamp"]), rx=int(r["rx"]), tx=int(r["tx"]))
            for r in rows
        ]

    def prune_samples(self, before: int) -> int:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM traffic_log WHERE timestamp < ?", (before,)
            )
        return cur.rowcount

    # Alert records

    def _open_rows(self, name: str) -> list[sqlite3.Row]:
        return self._conn.execute(
            f"""
            SELECT {_ALERT_COLUMNS} FROM alerts
            WHERE name = ? AND end_time IS NULL
            ORDER BY start_time DESC, id DESC
            """,
            (name,),
        ).fetchall()

    def _close_older(self, rows: list[sqlite3.Row], end_time: float) -> int:
        """Close every open row except the newest (rows sorted newest first)."""
        stale = [int(r["id"]) for r in rows[1:]]
        for alert_id in stale:
            self._conn.execute(
                "UPDATE alerts SET end_time = ? WHERE id = ?", (end_time, alert_id)
            )
        return len(stale)

    def find_open_alert(self, name: str) -> AlertRecord | None:
        with self._lock:
            rows = self._open_rows(name)
        return _row_to_alert(rows[0]) if rows else None

    def open_alert(self, name: str, start_time: float) -> OpenAlertResult:
        """Return the entity's open alert, creating it only if none exists.

        The lookup and insert run in one IMMEDIATE transaction so two callers
        can never both create an open record for the same entity.
        """
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                rows = self._open_rows(name)
                if rows:
                    repaired = self._close_older(rows, start_time)
                    self._conn.execute("COMMIT")
                    return OpenAlertResult(
                        record=_row_to_alert(rows[0]), created=False, repaired=repaired
                    )
                cur = self._conn.execute(
                    "INSERT INTO alerts (name, start_time) VALUES (?, ?)",
                    (name, start_time),
                )
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
        record = AlertRecord(id=int(cur.lastrowid), name=name, start_time=start_time)
        return OpenAlertResult(record=record, created=True)

    def mark_notified(self, name: str, stage: Stage, at: float) -> int:
        if stage == "first":
            sql = (
                "UPDATE alerts SET notified_first = 1, first_alert_sent_at = ? "
                "WHERE name = ? AND end_time IS NULL"
            )
            params: tuple = (at, name)
        elif stage == "second":
            sql = (
                "UPDATE alerts SET notified_second = 1 "
                "WHERE name = ? AND end_time IS NULL"
            )
            params = (name,)
        else:
            raise ValueError(f"Stage {stage!r} has no notification flag")
        with self._lock:
            cur = self._conn.execute(sql, params)
        return cur.rowcount

    def close_alert(self, name: str, end_time: float) -> int:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE alerts SET end_time = ? WHERE name = ? AND end_time IS NULL",
                (end_time, name),
            )
        return cur.rowcount

    def close_all_open_alerts(self, end_time: float) -> int:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE alerts SET end_time = ? WHERE end_time IS NULL", (end_time,)
            )
        return cur.rowcount

    def open_alerts(self) -> list[AlertRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_ALERT_COLUMNS} FROM alerts
                WHERE end_time IS NULL
                ORDER BY name ASC, start_time DESC, id DESC
                """
            ).fetchall()
        return [_row_to_alert(r) for r in rows]

    def alerts_for(self, name: str) -> list[AlertRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE name = ? ORDER BY id ASC",
                (name,),
            ).fetchall()
        return [_row_to_alert(r) for r in rows]

    def repair_open_alerts(self, end_time: float) -> dict[str, int]:
        """Close duplicate open alerts, keeping the newest per entity."""
        repaired: dict[str, int] = {}
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                names = [
                    r["name"]
                    for r in self._conn.execute(
                        """
                        SELECT name FROM alerts WHERE end_time IS NULL
                        GROUP BY name HAVING COUNT(*) > 1
                        """
                    ).fetchall()
                ]
                for name in names:
                    repaired[name] = self._close_older(self._open_rows(name), end_time)
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
        return repaired

    # Alert history and health metrics

    def record_alert_history(self, entry: AlertHistoryEntry) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO alert_history
                    (name, alert_type, traffic_kb, threshold_kb, triggered_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.name,
                    entry.alert_type,
                    entry.traffic_kb,
                    entry.threshold_kb,
                    entry.triggered_at,
                ),
            )

    def alert_history(
        self, name: str | None = None, limit: int = 50
    ) -> list[AlertHistoryEntry]:
        sql = "SELECT name, alert_type, traffic_kb, threshold_kb, triggered_at FROM alert_history"
        params: tuple = ()
        if name is not None:
            sql += " WHERE name = ?"
            params = (name,)
        sql += " ORDER BY triggered_at DESC, id DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(sql, (*params, limit)).fetchall()
        return [
            AlertHistoryEntry(
                name=r["name"],
                alert_type=r["alert_type"],
                traffic_kb=float(r["traffic_kb"]),
                threshold_kb=float(r["threshold_kb"]),
                triggered_at=float(r["triggered_at"]),
            )
            for r in rows
        ]

    def alert_statistics(self, since: float) -> AlertStatistics:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    COUNT(*) AS total_alerts,
                    COALESCE(SUM(CASE WHEN end_time IS NULL THEN 1 ELSE 0 END), 0) AS active_alerts,
                    COALESCE(SUM(notified_first), 0) AS first_notifications,
                    COALESCE(SUM(notified_second), 0) AS second_notifications
                FROM alerts
                WHERE start_time > ?
                """,
                (since,),
            ).fetchone()
            by_stage = self._conn.execute(
                """
                SELECT alert_type, COUNT(*) AS n FROM alert_history
                WHERE triggered_at > ? GROUP BY alert_type
                """,
                (since,),
            ).fetchall()
        return AlertStatistics(
            total_alerts=int(row["total_alerts"]),
            active_alerts=int(row["active_alerts"]),
            first_notifications=int(row["first_notifications"]),
            second_notifications=int(row["second_notifications"]),
            history_by_stage={r["alert_type"]: int(r["n"]) for r in by_stage},
        )

    def record_health_metric(self, name: str, value: float, at: float) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO health_metrics (metric_name, metric_value, recorded_at)
                VALUES (?, ?, ?)
                """,
                (name, value, at),
            )

    def health_metrics(self, name: str, limit: int = 20) -> list[tuple[float, float]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT recorded_at, metric_value FROM health_metrics
                WHERE metric_name = ? ORDER BY id DESC LIMIT ?
                """,
                (name, limit),
            ).fetchall()
        return [(float(r["recorded_at"]), float(r["metric_value"])) for r in rows]
