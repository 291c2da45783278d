# tests/test_task_store.py

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime, time, timedelta
from pathlib import Path

import pytest

from taskpilot.scheduling.models import (
    Priority,
    RecurringFrequency,
    RecurringRule,
    Task,
    TaskCategory,
    TaskStatus,
)
from taskpilot.tasks.task_store import TaskStore

NOW = datetime(2025, 3, 3, 10, 0)


def _task(tid: str, **kw) -> Task:
    kw.setdefault("created_at", NOW)
    kw.setdefault("updated_at", NOW)
    return Task(id=tid, title=kw.pop("title", tid.capitalize()), **kw)


def test_round_trip_keeps_every_field(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    rule = RecurringRule(
        frequency=RecurringFrequency.TIMES_PER_DAY,
        anchor=NOW,
        times_per_day=2,
        specific_times=(time(9, 0), time(18, 30)),
        end_date=NOW + timedelta(days=30),
    )
    task = _task(
        "meds",
        title="Take meds",
        due_at=NOW.replace(hour=9),
        estimated_duration=timedelta(minutes=5),
        priority=Priority.HIGH,
        category=TaskCategory.HEALTH,
        status=TaskStatus.IN_PROGRESS,
        worked_duration=timedelta(minutes=2, seconds=30),
        recurring_rule=rule,
        notes="with water",
    )

    store.create(task)

    assert store.get("meds") == task
    assert store.count_tasks() == 1


def test_create_generates_id_and_validates(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")

    created = store.create(Task(id="", title="Call mom", created_at=NOW, updated_at=NOW))
    assert created.id
    assert store.get(created.id) is not None

    with pytest.raises(ValueError):
        store.create(_task("blank", title="   "))
    with pytest.raises(ValueError):
        store.create(_task("neg", estimated_duration=timedelta(minutes=-5)))
    with pytest.raises(ValueError):
        store.create(Task(id=created.id, title="Duplicate", created_at=NOW, updated_at=NOW))


def test_update_and_unknown_id(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    task = store.create(_task("a"))

    done = replace(task, status=TaskStatus.COMPLETED, completed_at=NOW, updated_at=NOW)
    store.update(done)
    assert store.get("a") == done

    with pytest.raises(ValueError):
        store.update(_task("missing"))


def test_soft_delete_hides_and_restore_brings_back(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    a = store.create(_task("a", due_at=NOW))
    b = store.create(_task("b"))

    store.delete(["a"], allow_undo=True)

    assert [t.id for t in store.list_current()] == ["b"]
    assert store.get("a") is None
    assert store.get("a", include_deleted=True) == a
    assert store.count_tasks() == 1
    assert store.count_tasks(include_deleted=True) == 2
    with pytest.raises(ValueError):
        store.update(replace(a, title="edited"))

    store.restore([a])
    assert store.get("a") == a
    assert [t.id for t in store.list_current()] == ["a", "b"]

    store.delete(["a", "b"])
    assert store.count_tasks(include_deleted=True) == 0
    assert b not in store.list_current()


def test_list_current_orders_by_due_then_created(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    store.create(_task("undated-old", created_at=NOW - timedelta(days=2)))
    store.create(_task("late", due_at=NOW + timedelta(days=2)))
    store.create(_task("early", due_at=NOW + timedelta(hours=1)))
    store.create(_task("undated-new", created_at=NOW - timedelta(days=1)))

    assert [t.id for t in store.list_current()] == ["early", "late", "undated-old", "undated-new"]


def test_subtasks(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    store.create(_task("parent"))
    store.create(_task("child-1", parent_id="parent", created_at=NOW))
    store.create(_task("child-2", parent_id="parent", created_at=NOW + timedelta(seconds=1)))
    store.create(_task("other"))

    assert [t.id for t in store.list_subtasks("parent")] == ["child-1", "child-2"]
    assert store.get("child-1").is_subtask

    store.delete(["child-1"], allow_undo=True)
    assert [t.id for t in store.list_subtasks("parent")] == ["child-2"]
    assert len(store.list_subtasks("parent", include_deleted=True)) == 2


def test_invalid_stored_rule_is_ignored(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    store = TaskStore(db)
    store.create(_task("a"))

    conn = sqlite3.connect(db)
    try:
        conn.execute(
            "UPDATE tasks SET recurring_rule = ? WHERE id = 'a'",
            ('{"frequency": "daily", "anchor": "2025-03-03T08:00:00", "interval": 0}',),
        )
        conn.commit()
    finally:
        conn.close()

    loaded = store.get("a")
    assert loaded is not None
    assert loaded.recurring_rule is None


def test_schema_migration_adds_missing_columns(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    conn = sqlite3.connect(db)
    try:
        conn.execute(
            """
            CREATE TABLE tasks (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                due_at TEXT,
                estimated_seconds REAL,
                priority INTEGER NOT NULL DEFAULT 0,
                category TEXT NOT NULL DEFAULT 'uncategorized',
                status TEXT NOT NULL DEFAULT 'pending',
                completed_at TEXT,
                is_archived INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT INTO tasks(id, title, created_at, updated_at) VALUES ('old', 'Legacy', ?, ?)",
            (NOW.isoformat(), NOW.isoformat()),
        )
        conn.commit()
    finally:
        conn.close()

    store = TaskStore(db)

    conn = sqlite3.connect(db)
    try:
        cols = {row[1] for row in conn.execute("PRAGMA table_info(tasks)")}
    finally:
        conn.close()
    assert {"worked_seconds", "recurring_rule", "parent_id", "notes", "deleted_at"} <= cols

    legacy = store.get("old")
    assert legacy is not None
    assert legacy.title == "Legacy"
    assert legacy.worked_duration == timedelta(0)
    assert legacy.recurring_rule is None
