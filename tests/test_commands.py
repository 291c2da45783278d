# tests/test_commands.py

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from taskpilot.cli.commands import (
    CommandRegistry,
    parse_duration,
    parse_task_tokens,
    parse_when,
    registry,
)
from taskpilot.scheduling.models import (
    Priority,
    RecurringFrequency,
    RecurringRule,
    TaskCategory,
    TaskStatus,
)

from .conftest import NOW


def test_command_registry_routes_2_and_3_params(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return "h2:" + ",".join(args)

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a", aliases=["alpha"])
    reg.register("b", h3, "b")

    assert reg.handle(state, "/a x y") == "h2:x,y"
    assert reg.handle(state, "/ALPHA") == "h2:"
    assert reg.handle(state, "/b", emit=notes.append) == "h3"
    assert called == {"h2": 2, "h3": 1}
    assert notes == ["note"]
    assert "/a - a" in reg.build_help()


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_parsers() -> None:
    assert parse_when("14:30", NOW) == NOW.replace(hour=14, minute=30)
    assert parse_when("2025-03-05T09:00", NOW) == datetime(2025, 3, 5, 9, 0)
    with pytest.raises(ValueError):
        parse_when("soon", NOW)

    assert parse_duration("45") == timedelta(minutes=45)
    assert parse_duration("45m") == timedelta(minutes=45)
    assert parse_duration("2h") == timedelta(hours=2)
    assert parse_duration("1h30m") == timedelta(hours=1, minutes=30)
    with pytest.raises(ValueError):
        parse_duration("abc")

    task = parse_task_tokens(["Write", "@14:00", "report", "~1h", "!high", "#work"], NOW)
    assert task.title == "Write report"
    assert task.due_at == NOW.replace(hour=14)
    assert task.estimated_duration == timedelta(hours=1)
    assert task.priority == Priority.HIGH
    assert task.category == TaskCategory.WORK
    assert task.created_at == NOW


def test_add_and_list(state) -> None:
    reply = registry.handle(state, "/add Write report @14:00 ~1h !high #work")
    assert reply is not None and reply.startswith("Added: Write report")

    assert "Cannot add task" in (registry.handle(state, "/add @15:00") or "")

    listing = registry.handle(state, "/list") or ""
    assert "1. Write report @2025-03-03 14:00 ~1h !high #work" in listing
    assert len(state.last_listed) == 1


def test_add_warns_about_overlap_and_resolve_fixes_it(state) -> None:
    registry.handle(state, "/add Report @14:00 ~1h !medium")
    reply = registry.handle(state, "/event add 14:30 15:00 Standup") or ""
    assert "clashes with 1 task(s)" in reply

    conflicts = registry.handle(state, "/conflicts") or ""
    assert "[High] Report: Conflicts with \"Standup\" at 14:30 (30m overlap)" in conflicts

    options = registry.handle(state, "/resched 1") or ""
    assert "urgency: medium" in options
    assert "Right after \"Standup\" ends" in options

    plan = registry.handle(state, "/resolve") or ""
    assert "1/1 conflict(s) resolvable" in plan
    assert registry.handle(state, "/resolve apply") == "Rescheduled 1 task(s)."

    (task,) = state.task_store.list_current()
    assert task.due_at == NOW.replace(hour=15, minute=15)
    assert registry.handle(state, "/conflicts") == "No conflicts."


def test_next_and_feedback(state) -> None:
    registry.handle(state, "/add Pay rent !high")
    registry.handle(state, "/add Water plants !low")

    reply = registry.handle(state, "/next") or ""
    assert reply.splitlines()[1].startswith("  1. Pay rent [Consider, 25] - High priority")
    assert [s.task.title for s in state.last_suggestions] == ["Pay rent", "Water plants"]

    why = registry.handle(state, "/next why", emit=lambda _: None) or ""
    assert "Start with the first paragraph." in why

    assert "Snoozed 'Pay rent' until" in (registry.handle(state, "/fb 1 snooze") or "")
    reply = registry.handle(state, "/next") or ""
    assert "Pay rent" not in reply

    assert "Noted: started_immediately" in (registry.handle(state, "/fb 1 start") or "")
    water = next(t for t in state.task_store.list_current() if t.title == "Water plants")
    assert water.status == TaskStatus.IN_PROGRESS
    assert "Unknown reaction" in (registry.handle(state, "/fb 1 meh") or "")


def test_delete_undo_and_commit(state) -> None:
    registry.handle(state, "/add Old task")
    registry.handle(state, "/list")

    reply = registry.handle(state, "/delete 1") or ""
    assert reply == "Deleted 'Old task'. Use /undo within 60s."
    assert state.task_store.list_current() == []
    assert "delete of" in (registry.handle(state, "/status") or "")

    assert registry.handle(state, "/undo") == "Restored."
    assert [t.title for t in state.task_store.list_current()] == ["Old task"]
    assert registry.handle(state, "/undo") == "Nothing to undo."

    registry.handle(state, "/list")
    registry.handle(state, "/delete 1")
    assert registry.handle(state, "/commit") == "Committed."
    assert state.task_store.count_tasks(include_deleted=True) == 0


def test_done_repeat_and_upcoming(state) -> None:
    registry.handle(state, "/add Stretch @2025-03-03T09:00")
    registry.handle(state, "/list")

    reply = registry.handle(state, "/repeat 1 weekly mon,wed") or ""
    assert reply == "'Stretch' repeats Weekly on Mon, Wed."

    upcoming = registry.handle(state, "/upcoming 1 3") or ""
    assert upcoming.splitlines()[1:] == [
        "  - Wed 2025-03-05 09:00",
        "  - Mon 2025-03-10 09:00",
        "  - Wed 2025-03-12 09:00",
    ]

    assert "Cannot set repeat" in (registry.handle(state, "/repeat 1 times_per_day 1") or "")

    assert registry.handle(state, "/done 1") == "Completed: Stretch\nNext: Stretch @2025-03-05 09:00 (2/wk)"
    listing = registry.handle(state, "/list") or ""
    assert listing.splitlines()[1:] == ["  1. Stretch @2025-03-05 09:00 (2/wk)"]
    assert "[done]" in (registry.handle(state, "/list all") or "")
    assert len(state.task_store.list_current()) == 2


def test_event_list_and_remove(state) -> None:
    reply = registry.handle(state, "/event add 09:00 10:00 Gym") or ""
    event_id = reply.split()[1]

    assert "Gym" in (registry.handle(state, "/event list") or "")
    assert registry.handle(state, f"/event rm {event_id}") == "Removed."
    assert registry.handle(state, "/event list") == "No events in the next 7 days."
    assert registry.handle(state, "/event add 10:00 09:00 Backwards") == "Event must end after it starts."


def test_done_on_a_one_off_task_creates_nothing(state) -> None:
    registry.handle(state, "/add Call bank @15:00")
    registry.handle(state, "/list")

    assert registry.handle(state, "/done 1") == "Completed: Call bank"
    assert state.task_store.count_tasks() == 1
    assert registry.handle(state, "/list") == "No tasks."


def test_done_on_a_finished_series_creates_nothing(state) -> None:
    task = parse_task_tokens(["Course", "@2025-03-03T09:00"], NOW)
    task.recurring_rule = RecurringRule(
        frequency=RecurringFrequency.DAILY,
        anchor=NOW.replace(hour=9),
        end_date=NOW.replace(hour=9),
    )
    state.task_store.create(task)
    registry.handle(state, "/list")

    assert registry.handle(state, "/done 1") == "Completed: Course (series ended)"
    assert state.task_store.count_tasks() == 1


def test_resched_does_not_revert_a_task_completed_after_the_scan(state) -> None:
    registry.handle(state, "/add Report @14:00 ~1h !medium")
    registry.handle(state, "/event add 14:30 15:00 Standup")
    registry.handle(state, "/conflicts")
    registry.handle(state, "/list")
    registry.handle(state, "/done 1")

    reply = registry.handle(state, "/resched 1 1") or ""

    assert reply == "Cannot reschedule: task 'Report' is already completed. Run /conflicts again."
    (task,) = state.task_store.list_current()
    assert task.status == TaskStatus.COMPLETED
    assert task.due_at == NOW.replace(hour=14)


def test_resched_and_resolve_report_deleted_tasks(state) -> None:
    registry.handle(state, "/add Report @14:00 ~1h !medium")
    registry.handle(state, "/event add 14:30 15:00 Standup")
    registry.handle(state, "/conflicts")
    registry.handle(state, "/list")
    registry.handle(state, "/delete 1")

    assert "no longer exists" in (registry.handle(state, "/resched 1 1") or "")

    registry.handle(state, "/undo")
    assert "1/1 conflict(s) resolvable" in (registry.handle(state, "/resolve") or "")
    registry.handle(state, "/list")
    registry.handle(state, "/delete 1")

    reply = registry.handle(state, "/resolve apply")
    assert reply == "Rescheduled 0 task(s). Skipped 1 task(s) changed since the plan."


def test_feedback_uses_the_current_task(state) -> None:
    registry.handle(state, "/add Pay rent !high")
    registry.handle(state, "/next")
    registry.handle(state, "/list")
    registry.handle(state, "/done 1")

    assert "Noted: started_immediately" in (registry.handle(state, "/fb 1 start") or "")
    (task,) = state.task_store.list_current()
    assert task.status == TaskStatus.COMPLETED

    registry.handle(state, "/add Water plants")
    registry.handle(state, "/next")
    registry.handle(state, "/list")
    registry.handle(state, "/delete 1 now")
    assert registry.handle(state, "/fb 1 skip") == "'Water plants' no longer exists. Run /next again."
