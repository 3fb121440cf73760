"""DuckDB-backed store for Tasks and the notification audit trail."""
from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

import duckdb

from taxbot.automation.models import (
    Notification,
    ProcessingResult,
    Task,
    ensure_utc,
)


class DuckDBTaskStore:
    def __init__(self, db_path: Optional[Path] = None) -> None:
        if db_path is None:
            base = Path(__file__).resolve().parents[2] / "data"
            base.mkdir(parents=True, exist_ok=True)
            db_path = base / "automation.duckdb"
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.con = duckdb.connect(str(self.db_path))
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self.con.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                customer_id TEXT,
                task_type TEXT,
                priority TEXT,
                status TEXT,
                scheduled_at TEXT,
                executed_at TEXT,
                created_at TEXT,
                retry_count INTEGER,
                max_retries INTEGER,
                payload TEXT,
                result TEXT
            )
            """
        )
        self.con.execute(
            """
            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT,
                customer_id TEXT,
                schedule_id TEXT,
                message TEXT,
                type TEXT,
                status TEXT,
                channel TEXT,
                sent_at TEXT
            )
            """
        )

    # ---- helpers ----
    @staticmethod
    def _dt_to_str(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _str_to_dt(value: Optional[str]) -> Optional[datetime]:
        return ensure_utc(datetime.fromisoformat(value)) if value else None

    @staticmethod
    def _json_dump(data: Any) -> Optional[str]:
        return json.dumps(data, ensure_ascii=False, default=str) if data is not None else None

    @staticmethod
    def _json_load(text: Optional[str]) -> Any:
        return json.loads(text) if text else None

    # ---- tasks ----
    def save_task(self, task: Task) -> None:
        with self._lock:
            self.con.execute("DELETE FROM tasks WHERE id = ?", (task.id,))
            self.con.execute(
                """
                INSERT INTO tasks (
                    id, customer_id, task_type, priority, status, scheduled_at,
                    executed_at, created_at, retry_count, max_retries, payload, result
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.customer_id,
                    task.task_type.value,
                    task.priority.value,
                    task.status.value,
                    self._dt_to_str(task.scheduled_at),
                    self._dt_to_str(task.executed_at),
                    self._dt_to_str(task.created_at),
                    task.retry_count,
                    task.max_retries,
                    self._json_dump(task.payload),
                    self._json_dump(task.result.to_dict() if task.result else None),
                ),
            )

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            row = self.con.execute(
                f"SELECT {self._TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self) -> List[Task]:
        with self._lock:
            rows = self.con.execute(
                f"SELECT {self._TASK_COLUMNS} FROM tasks ORDER BY created_at"
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    # ---- notifications ----
    def append_notification(self, notification: Notification) -> None:
        with self._lock:
            self.con.execute(
                """
                INSERT INTO notifications (
                    id, customer_id, schedule_id, message, type, status, channel, sent_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.id,
                    notification.customer_id,
                    notification.schedule_id,
                    notification.message,
                    notification.type.value,
                    notification.status.value,
                    notification.channel,
                    self._dt_to_str(notification.sent_at),
                ),
            )

    def list_notifications(self) -> List[Notification]:
        with self._lock:
            rows = self.con.execute(
                """
                SELECT id, customer_id, schedule_id, message, type, status, channel, sent_at
                FROM notifications ORDER BY sent_at
                """
            ).fetchall()
        return [
            Notification(
                id=row[0],
                customer_id=row[1],
                schedule_id=row[2],
                message=row[3],
                type=row[4],
                status=row[5],
                channel=row[6],
                sent_at=self._str_to_dt(row[7]),
            )
            for row in rows
        ]

    def close(self) -> None:
        self.con.close()

    # ---- internal ----
    _TASK_COLUMNS = (
        "id, customer_id, task_type, priority, status, scheduled_at, executed_at, "
        "created_at, retry_count, max_retries, payload, result"
    )

    def _row_to_task(self, row) -> Task:
        result = self._json_load(row[11])
        return Task(
            id=row[0],
            customer_id=row[1],
            task_type=row[2],
            priority=row[3],
            status=row[4],
            scheduled_at=self._str_to_dt(row[5]),
            executed_at=self._str_to_dt(row[6]),
            created_at=self._str_to_dt(row[7]),
            retry_count=row[8] or 0,
            max_retries=row[9] or 0,
            payload=self._json_load(row[10]) or {},
            result=ProcessingResult.from_dict(result) if result else None,
        )


__all__ = ["DuckDBTaskStore"]
