from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .models import Task
from .waiting import WaitProgress

LOGGER = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass(slots=True)
class SavedWait:
    progress: WaitProgress
    url: Optional[str]


class ProgressStore:
    """Persist task records and wait markers so an interrupted run can pick up again."""

    def __init__(self, path: Path, scope: str) -> None:
        self._path = path
        self._scope = scope  # spreadsheet id and gid of the processed sheet
        self._lock = threading.Lock()
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        # Written from asyncio.to_thread workers as well as the event loop thread.
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS task_records (
                    scope TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    record_json TEXT NOT NULL,
                    status TEXT NOT NULL,
                    error TEXT,
                    url TEXT,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (scope, task_id)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wait_progress (
                    scope TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    progress_json TEXT NOT NULL,
                    url TEXT,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (scope, task_id)
                )
                """
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def record_task(
        self,
        task: Task,
        status: str,
        *,
        error: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        record_json = json.dumps(task.to_record(), ensure_ascii=False)
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO task_records (scope, task_id, record_json, status, error, url, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(scope, task_id)
                    DO UPDATE SET
                        record_json = excluded.record_json,
                        status = excluded.status,
                        error = excluded.error,
                        url = COALESCE(excluded.url, task_records.url),
                        updated_at = excluded.updated_at
                    """,
                    (self._scope, task.task_id, record_json, status, error, url, time.time()),
                )

    def get_task_record(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored task record plus ``status``/``error``/``url``."""

        with self._lock:
            row = self._conn.execute(
                """
                SELECT record_json, status, error, url
                FROM task_records
                WHERE scope = ? AND task_id = ?
                """,
                (self._scope, task_id),
            ).fetchone()

        if not row:
            return None
        record = json.loads(row["record_json"])
        record.update(status=row["status"], error=row["error"], url=row["url"])
        return record

    def save_wait(self, task_id: str, progress: WaitProgress, url: Optional[str]) -> None:
        payload = json.dumps(progress.to_dict())
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO wait_progress (scope, task_id, progress_json, url, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(scope, task_id)
                    DO UPDATE SET
                        progress_json = excluded.progress_json,
                        url = COALESCE(excluded.url, wait_progress.url),
                        updated_at = excluded.updated_at
                    """,
                    (self._scope, task_id, payload, url, time.time()),
                )

    def load_wait(self, task_id: str) -> Optional[SavedWait]:
        with self._lock:
            row = self._conn.execute(
                "SELECT progress_json, url FROM wait_progress WHERE scope = ? AND task_id = ?",
                (self._scope, task_id),
            ).fetchone()

        if not row:
            return None
        try:
            progress = WaitProgress.from_dict(json.loads(row["progress_json"]))
        except (json.JSONDecodeError, ValueError):
            LOGGER.warning("Stored wait progress for %s is unreadable; ignoring", task_id)
            return None
        return SavedWait(progress=progress, url=row["url"])

    def clear_wait(self, task_id: str) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "DELETE FROM wait_progress WHERE scope = ? AND task_id = ?",
                    (self._scope, task_id),
                )
