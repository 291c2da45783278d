# src/taskpilot/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Any

from ..scheduling.models import (
    Priority,
    RecurrenceValidationError,
    RecurringFrequency,
    RecurringRule,
    Task,
    TaskCategory,
    TaskStatus,
)

logger = logging.getLogger(__name__)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def _td_to_secs(value: timedelta | None) -> float | None:
    return value.total_seconds() if value is not None else None


def _secs_to_td(raw: float | None) -> timedelta | None:
    return timedelta(seconds=float(raw)) if raw is not None else None


def rule_to_dict(rule: RecurringRule) -> dict[str, Any]:
    return {
        "frequency": rule.frequency.value,
        "anchor": rule.anchor.isoformat(),
        "interval": rule.interval,
        "days_of_week": sorted(int(d) for d in rule.days_of_week),
        "hour_interval": rule.hour_interval,
        "times_per_day": rule.times_per_day,
        "specific_times": (
            [t.isoformat() for t in rule.specific_times] if rule.specific_times is not None else None
        ),
        "active_hours_start": rule.active_hours_start.isoformat(),
        "active_hours_end": rule.active_hours_end.isoformat(),
        "end_date": _dt_to_str(rule.end_date),
    }


def rule_from_dict(data: dict[str, Any]) -> RecurringRule:
    specific = data.get("specific_times")
    return RecurringRule(
        frequency=RecurringFrequency(data["frequency"]),
        anchor=datetime.fromisoformat(data["anchor"]),
        interval=int(data.get("interval", 1)),
        days_of_week=frozenset(int(d) for d in data.get("days_of_week") or ()),
        hour_interval=data.get("hour_interval"),
        times_per_day=data.get("times_per_day"),
        specific_times=tuple(time.fromisoformat(t) for t in specific) if specific is not None else None,
        active_hours_start=time.fromisoformat(data.get("active_hours_start", "08:00:00")),
        active_hours_end=time.fromisoformat(data.get("active_hours_end", "20:00:00")),
        end_date=_str_to_dt(data.get("end_date")),
    )


class TaskStore:
    """
    SQLite task store.

    The schema is simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Deletion has two modes:
    - soft (allow_undo=True): rows get deleted_at and disappear from list_current()
    - hard: rows are removed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    def close(self) -> None:
        """Shutdown hook (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    due_at TEXT,
                    estimated_seconds REAL,
                    priority INTEGER NOT NULL DEFAULT 0,
                    category TEXT NOT NULL DEFAULT 'uncategorized',
                    status TEXT NOT NULL DEFAULT 'pending',
                    completed_at TEXT,
                    is_archived INTEGER NOT NULL DEFAULT 0,
                    worked_seconds REAL NOT NULL DEFAULT 0,
                    recurring_rule TEXT,
                    parent_id TEXT,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    deleted_at TEXT
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("worked_seconds", "REAL NOT NULL DEFAULT 0")
            add_col("recurring_rule", "TEXT")
            add_col("parent_id", "TEXT")
            add_col("notes", "TEXT")
            add_col("deleted_at", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due_status ON tasks(status, due_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _rule_to_str(rule: RecurringRule | None) -> str | None:
        if rule is None:
            return None
        return json.dumps(rule_to_dict(rule), ensure_ascii=False)

    @staticmethod
    def _str_to_rule(raw: str | None) -> RecurringRule | None:
        if not raw:
            return None
        try:
            return rule_from_dict(json.loads(raw))
        except RecurrenceValidationError as e:
            logger.warning("Stored recurring rule is invalid (%s); ignoring it", e)
        except (ValueError, KeyError, TypeError):
            logger.warning("Failed to decode recurring rule %r; ignoring it", raw)
        return None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            due_at=_str_to_dt(row["due_at"]),
            estimated_duration=_secs_to_td(row["estimated_seconds"]),
            priority=Priority.from_db(row["priority"]),
            category=TaskCategory.from_db(row["category"]),
            status=TaskStatus.from_db(row["status"]),
            completed_at=_str_to_dt(row["completed_at"]),
            is_archived=bool(row["is_archived"]),
            worked_duration=_secs_to_td(row["worked_seconds"]) or timedelta(0),
            recurring_rule=self._str_to_rule(row["recurring_rule"]),
            parent_id=row["parent_id"],
            notes=row["notes"],
            created_at=_str_to_dt(row["created_at"]) or datetime.min,
            updated_at=_str_to_dt(row["updated_at"]) or datetime.min,
        )

    def _task_params(self, task: Task) -> tuple[Any, ...]:
        return (
            task.title,
            _dt_to_str(task.due_at),
            _td_to_secs(task.estimated_duration),
            int(task.priority),
            task.category.value,
            task.status.value,
            _dt_to_str(task.completed_at),
            1 if task.is_archived else 0,
            task.worked_duration.total_seconds(),
            self._rule_to_str(task.recurring_rule),
            task.parent_id,
            task.notes,
            _dt_to_str(task.created_at),
            _dt_to_str(task.updated_at),
        )

    # ---- public API ----

    def count_tasks(self, *, include_deleted: bool = False) -> int:
        conn = self._get_conn()
        try:
            sql = "SELECT COUNT(*) FROM tasks"
            if not include_deleted:
                sql += " WHERE deleted_at IS NULL"
            (n,) = conn.execute(sql).fetchone()
            return int(n)
        finally:
            conn.close()

    def create(self, task: Task) -> Task:
        if not task.title or not task.title.strip():
            raise ValueError("title is required")
        if task.estimated_duration is not None and task.estimated_duration < timedelta(0):
            raise ValueError("estimated_duration must not be negative")

        if not task.id:
            task.id = uuid.uuid4().hex

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    title, due_at, estimated_seconds, priority, category, status,
                    completed_at, is_archived, worked_seconds, recurring_rule,
                    parent_id, notes, created_at, updated_at, id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*self._task_params(task), task.id),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise ValueError(f"task id already exists: {task.id}") from e
        finally:
            conn.close()

        logger.debug(
            "Task added id=%s title=%r due_at=%s parent=%s",
            task.id,
            task.title,
            _dt_to_str(task.due_at),
            task.parent_id,
        )
        return task

    def get(self, task_id: str, *, include_deleted: bool = False) -> Task | None:
        conn = self._get_conn()
        try:
            sql = "SELECT * FROM tasks WHERE id = ?"
            if not include_deleted:
                sql += " AND deleted_at IS NULL"
            row = conn.execute(sql, (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def update(self, task: Task) -> None:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET title = ?, due_at = ?, estimated_seconds = ?, priority = ?,
                    category = ?, status = ?, completed_at = ?, is_archived = ?,
                    worked_seconds = ?, recurring_rule = ?, parent_id = ?, notes = ?,
                    created_at = ?, updated_at = ?
                WHERE id = ? AND deleted_at IS NULL
                """,
                (*self._task_params(task), task.id),
            )
            conn.commit()
            if cur.rowcount != 1:
                raise ValueError(f"unknown task id: {task.id}")
        finally:
            conn.close()

    def delete(self, task_ids: Iterable[str], *, allow_undo: bool = False) -> None:
        ids = [str(i) for i in task_ids]
        if not ids:
            return

        placeholders = ",".join("?" for _ in ids)
        conn = self._get_conn()
        try:
            if allow_undo:
                conn.execute(
                    f"UPDATE tasks SET deleted_at = ? WHERE id IN ({placeholders})",
                    (datetime.now().isoformat(), *ids),
                )
            else:
                conn.execute(f"DELETE FROM tasks WHERE id IN ({placeholders})", ids)
            conn.commit()
        finally:
            conn.close()
        logger.debug("Tasks deleted ids=%s soft=%s", ids, allow_undo)

    def restore(self, tasks: Iterable[Task]) -> None:
        """Write snapshots back verbatim and clear any soft-delete marker."""
        rows = [(*self._task_params(t), t.id) for t in tasks]
        if not rows:
            return

        conn = self._get_conn()
        try:
            conn.executemany(
                """
                INSERT INTO tasks(
                    title, due_at, estimated_seconds, priority, category, status,
                    completed_at, is_archived, worked_seconds, recurring_rule,
                    parent_id, notes, created_at, updated_at, id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    due_at = excluded.due_at,
                    estimated_seconds = excluded.estimated_seconds,
                    priority = excluded.priority,
                    category = excluded.category,
                    status = excluded.status,
                    completed_at = excluded.completed_at,
                    is_archived = excluded.is_archived,
                    worked_seconds = excluded.worked_seconds,
                    recurring_rule = excluded.recurring_rule,
                    parent_id = excluded.parent_id,
                    notes = excluded.notes,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    deleted_at = NULL
                """,
                rows,
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("Tasks restored count=%d", len(rows))

    def list_current(self) -> list[Task]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE deleted_at IS NULL
                ORDER BY due_at IS NULL, due_at ASC, created_at ASC
                """
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def list_subtasks(self, parent_id: str, *, include_deleted: bool = False) -> list[Task]:
        conn = self._get_conn()
        try:
            sql = "SELECT * FROM tasks WHERE parent_id = ?"
            if not include_deleted:
                sql += " AND deleted_at IS NULL"
            sql += " ORDER BY created_at ASC"
            rows = conn.execute(sql, (parent_id,)).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()
