"""Storage backends for the usage ledger, cost alerts and chat history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol
import sqlite3
import threading

from aigateway.models import AlertType, CostAlert, UsageRecord
from aigateway.schemas import Direction, HistoryEntry


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime) -> str:
    # Fixed width so stored timestamps sort and compare as text
    return _utc(value).isoformat(timespec="microseconds")


def _parse(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return _utc(datetime.fromisoformat(value))


class StorageBackend(Protocol):
    """Storage backend interface."""

    def add_usage(self, record: UsageRecord) -> UsageRecord:
        ...

    def sum_cost_since(self, device_id: str, since: datetime) -> float:
        """Total cost of successful records at or after ``since``."""
        ...

    def list_usage(
        self,
        device_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[UsageRecord]:
        ...

    def insert_alert_if_absent(self, alert: CostAlert) -> Optional[CostAlert]:
        """Insert unless an unresolved alert with the same key exists."""
        ...

    def resolve_alert(self, alert_id: str, resolved_at: Optional[datetime] = None) -> bool:
        ...

    def list_alerts(
        self,
        device_id: Optional[str] = None,
        unresolved_only: bool = False,
        since: Optional[datetime] = None,
    ) -> List[CostAlert]:
        ...

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        ...

    def fetch_history(
        self,
        device_id: str,
        chat_id: str,
        since: Optional[datetime] = None,
        limit: int = 10,
    ) -> List[HistoryEntry]:
        """Most recent entries first."""
        ...


class InMemoryStorage:
    """In-memory storage backend (default)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._usage: List[UsageRecord] = []
        self._alerts: Dict[str, CostAlert] = {}
        self._history: List[HistoryEntry] = []

    def add_usage(self, record: UsageRecord) -> UsageRecord:
        with self._lock:
            self._usage.append(record)
        return record

    def sum_cost_since(self, device_id: str, since: datetime) -> float:
        since = _utc(since)
        with self._lock:
            return sum(
                r.cost_usd
                for r in self._usage
                if r.device_id == device_id and r.success and _utc(r.created_at) >= since
            )

    def list_usage(self, device_id=None, since=None) -> List[UsageRecord]:
        with self._lock:
            records = list(self._usage)
        if device_id is not None:
            records = [r for r in records if r.device_id == device_id]
        if since is not None:
            records = [r for r in records if _utc(r.created_at) >= _utc(since)]
        return sorted(records, key=lambda r: _utc(r.created_at))

    def insert_alert_if_absent(self, alert: CostAlert) -> Optional[CostAlert]:
        with self._lock:
            for existing in self._alerts.values():
                if existing.key == alert.key and not existing.resolved:
                    return None
            self._alerts[alert.alert_id] = alert
        return alert

    def resolve_alert(self, alert_id: str, resolved_at: Optional[datetime] = None) -> bool:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.resolved:
                return False
            alert.resolved = True
            alert.resolved_at = resolved_at or datetime.now(timezone.utc)
        return True

    def list_alerts(self, device_id=None, unresolved_only=False, since=None) -> List[CostAlert]:
        with self._lock:
            alerts = list(self._alerts.values())
        if device_id is not None:
            alerts = [a for a in alerts if a.device_id == device_id]
        if unresolved_only:
            alerts = [a for a in alerts if not a.resolved]
        if since is not None:
            alerts = [a for a in alerts if _utc(a.created_at) >= _utc(since)]
        return sorted(alerts, key=lambda a: _utc(a.created_at), reverse=True)

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        with self._lock:
            self._history.append(entry)
        return entry

    def fetch_history(self, device_id, chat_id, since=None, limit=10) -> List[HistoryEntry]:
        with self._lock:
            entries = [
                e for e in self._history
                if e.device_id == device_id and e.chat_id == chat_id
            ]
        # Later appends win ties on timestamp
        entries.reverse()
        if since is not None:
            entries = [e for e in entries if _utc(e.timestamp) >= _utc(since)]
        entries.sort(key=lambda e: _utc(e.timestamp), reverse=True)
        return entries[:limit] if limit > 0 else []

    def close(self) -> None:
        pass


class SQLiteStorage:
    """SQLite-backed storage backend."""

    def __init__(self, db_path: str = "aigateway.db"):
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS usage (
                record_id TEXT PRIMARY KEY,
                device_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                model TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL DEFAULT 0,
                completion_tokens INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                cost_usd REAL NOT NULL DEFAULT 0,
                success INTEGER NOT NULL,
                response_time_ms INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                chat_id TEXT,
                message_preview TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS alerts (
                alert_id TEXT PRIMARY KEY,
                device_id TEXT NOT NULL,
                alert_type TEXT NOT NULL,
                period TEXT NOT NULL,
                current_cost REAL NOT NULL,
                limit_amount REAL NOT NULL,
                resolved INTEGER NOT NULL DEFAULT 0,
                resolved_at TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                device_id TEXT NOT NULL,
                chat_id TEXT NOT NULL,
                direction TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_usage_device_time ON usage(device_id, created_at)"
        )
        # At most one open alert per (device, type, period)
        self._conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open
            ON alerts(device_id, alert_type, period) WHERE resolved = 0
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_history_chat ON history(device_id, chat_id, timestamp)"
        )
        self._conn.commit()

    def add_usage(self, record: UsageRecord) -> UsageRecord:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO usage (
                    record_id, device_id, provider, model, prompt_tokens,
                    completion_tokens, total_tokens, cost_usd, success,
                    response_time_ms, error_message, chat_id, message_preview, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.record_id,
                    record.device_id,
                    record.provider,
                    record.model,
                    record.prompt_tokens,
                    record.completion_tokens,
                    record.total_tokens,
                    record.cost_usd,
                    1 if record.success else 0,
                    record.response_time_ms,
                    record.error_message,
                    record.chat_id,
                    record.message_preview,
                    _iso(record.created_at),
                ),
            )
            self._conn.commit()
        return record

    def sum_cost_since(self, device_id: str, since: datetime) -> float:
        row = self._conn.execute(
            """
            SELECT COALESCE(SUM(cost_usd), 0) AS total FROM usage
            WHERE device_id = ? AND success = 1 AND created_at >= ?
            """,
            (device_id, _iso(since)),
        ).fetchone()
        return float(row["total"])

    def _row_to_usage(self, row: sqlite3.Row) -> UsageRecord:
        return UsageRecord(
            device_id=row["device_id"],
            provider=row["provider"],
            model=row["model"],
            prompt_tokens=row["prompt_tokens"],
            completion_tokens=row["completion_tokens"],
            total_tokens=row["total_tokens"],
            cost_usd=row["cost_usd"],
            success=bool(row["success"]),
            response_time_ms=row["response_time_ms"],
            error_message=row["error_message"],
            chat_id=row["chat_id"],
            message_preview=row["message_preview"],
            created_at=_parse(row["created_at"]),
            record_id=row["record_id"],
        )

    def list_usage(self, device_id=None, since=None) -> List[UsageRecord]:
        query = "SELECT * FROM usage WHERE 1 = 1"
        params: list = []
        if device_id is not None:
            query += " AND device_id = ?"
            params.append(device_id)
        if since is not None:
            query += " AND created_at >= ?"
            params.append(_iso(since))
        query += " ORDER BY created_at ASC"
        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_usage(row) for row in rows]

    def insert_alert_if_absent(self, alert: CostAlert) -> Optional[CostAlert]:
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO alerts (
                    alert_id, device_id, alert_type, period, current_cost,
                    limit_amount, resolved, resolved_at, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (
                    alert.alert_id,
                    alert.device_id,
                    alert.alert_type.value,
                    alert.period,
                    alert.current_cost,
                    alert.limit_amount,
                    1 if alert.resolved else 0,
                    _iso(alert.resolved_at) if alert.resolved_at else None,
                    _iso(alert.created_at),
                ),
            )
            self._conn.commit()
        return alert if cur.rowcount > 0 else None

    def resolve_alert(self, alert_id: str, resolved_at: Optional[datetime] = None) -> bool:
        resolved_at = resolved_at or datetime.now(timezone.utc)
        with self._lock:
            cur = self._conn.execute(
                "UPDATE alerts SET resolved = 1, resolved_at = ? WHERE alert_id = ? AND resolved = 0",
                (_iso(resolved_at), alert_id),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def _row_to_alert(self, row: sqlite3.Row) -> CostAlert:
        return CostAlert(
            device_id=row["device_id"],
            alert_type=AlertType(row["alert_type"]),
            period=row["period"],
            current_cost=row["current_cost"],
            limit_amount=row["limit_amount"],
            resolved=bool(row["resolved"]),
            resolved_at=_parse(row["resolved_at"]),
            created_at=_parse(row["created_at"]),
            alert_id=row["alert_id"],
        )

    def list_alerts(self, device_id=None, unresolved_only=False, since=None) -> List[CostAlert]:
        query = "SELECT * FROM alerts WHERE 1 = 1"
        params: list = []
        if device_id is not None:
            query += " AND device_id = ?"
            params.append(device_id)
        if unresolved_only:
            query += " AND resolved = 0"
        if since is not None:
            query += " AND created_at >= ?"
            params.append(_iso(since))
        query += " ORDER BY created_at DESC"
        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_alert(row) for row in rows]

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO history (device_id, chat_id, direction, content, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.device_id,
                    entry.chat_id,
                    entry.direction.value,
                    entry.content,
                    _iso(entry.timestamp),
                ),
            )
            self._conn.commit()
        return entry

    def fetch_history(self, device_id, chat_id, since=None, limit=10) -> List[HistoryEntry]:
        if limit <= 0:
            return []
        query = "SELECT * FROM history WHERE device_id = ? AND chat_id = ?"
        params: list = [device_id, chat_id]
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(_iso(since))
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)
        rows = self._conn.execute(query, params).fetchall()
        return [
            HistoryEntry(
                device_id=row["device_id"],
                chat_id=row["chat_id"],
                direction=Direction(row["direction"]),
                content=row["content"],
                timestamp=_parse(row["timestamp"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        self._conn.close()
