# src/taskpilot/scheduling/feedback_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)


class InMemoryBiasRepo:
    """Dict-backed BiasRepo for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, float] | None = None) -> None:
        self._values: dict[str, float] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> float | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: float) -> None:
        with self._lock:
            self._values[key] = float(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def items(self, prefix: str = "") -> list[tuple[str, float]]:
        with self._lock:
            return sorted((k, v) for k, v in self._values.items() if k.startswith(prefix))


class SqliteBiasRepo:
    """
    SQLite key/value store for learned feedback state.

    Keys are namespaced strings ("bias:work:morning", "adj:<task id>",
    "snooze:<task id>"); values are floats.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "feedback.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SqliteBiasRepo ready db=%s keys=%s", self._db_path, len(self.items()))

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS feedback_state (
                    key TEXT PRIMARY KEY,
                    value REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> float | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT value FROM feedback_state WHERE key = ?", (key,)
            ).fetchone()
            return float(row["value"]) if row else None
        finally:
            conn.close()

    def set(self, key: str, value: float) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO feedback_state(key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, float(value), time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM feedback_state WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def items(self, prefix: str = "") -> list[tuple[str, float]]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT key, value FROM feedback_state WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
            ).fetchall()
            return [(str(r["key"]), float(r["value"])) for r in rows]
        finally:
            conn.close()
