# tests/test_conflicts.py

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from taskpilot.scheduling.conflicts import ConflictDetector, classify_severity
from taskpilot.scheduling.models import (
    CalendarEvent,
    ConflictKind,
    ConflictSeverity,
    Interval,
    Priority,
    Task,
    TaskStatus,
)

from .fakes import FakeCalendar

DAY = datetime(2025, 3, 3)


def _at(hour: int, minute: int = 0, *, days: int = 0) -> datetime:
    return DAY + timedelta(days=days, hours=hour, minutes=minute)


def _task(tid: str, start: datetime | None, minutes: int | None, priority=Priority.NONE, **kw) -> Task:
    return Task(
        id=tid,
        title=tid.capitalize(),
        due_at=start,
        estimated_duration=timedelta(minutes=minutes) if minutes is not None else None,
        priority=priority,
        created_at=DAY,
        updated_at=DAY,
        **kw,
    )


def _event(eid: str, start: datetime, end: datetime, **kw) -> CalendarEvent:
    return CalendarEvent(id=eid, title=eid.capitalize(), start=start, end=end, **kw)


def test_event_fully_covering_short_meeting_is_high() -> None:
    task = _task("report", _at(14), 60)
    meeting = _event("standup", _at(14, 30), _at(15))

    conflicts = ConflictDetector().scan_for_conflicts([task], [meeting])

    assert len(conflicts) == 1
    c = conflicts[0]
    assert c.kind == ConflictKind.CALENDAR_EVENT
    assert c.task.id == "report"
    assert c.event == meeting
    assert c.overlap == Interval(_at(14, 30), _at(15))
    assert c.severity == ConflictSeverity.HIGH
    assert c.formatted_overlap == "30m overlap"
    assert c.description == 'Conflicts with "Standup"'


def test_touching_endpoints_do_not_conflict() -> None:
    task = _task("report", _at(14), 60)
    after = _event("after", _at(15), _at(16))
    before = _event("before", _at(13), _at(14))
    other = _task("other", _at(15), 30)

    assert ConflictDetector().scan_for_conflicts([task, other], [after, before]) == []


def test_severity_rules() -> None:
    a = Interval(_at(9), _at(10))
    b = Interval(_at(9, 50), _at(10, 50))
    small = timedelta(minutes=10)

    assert classify_severity(small, a, b, Priority.LOW) == ConflictSeverity.LOW
    assert classify_severity(small, a, b, Priority.NONE) == ConflictSeverity.LOW
    assert classify_severity(small, a, b, Priority.MEDIUM) == ConflictSeverity.MEDIUM
    assert classify_severity(small, a, b, Priority.HIGH) == ConflictSeverity.HIGH
    # Half of the shorter interval is enough regardless of priority.
    assert classify_severity(timedelta(minutes=30), a, b, Priority.LOW) == ConflictSeverity.HIGH


def test_severity_never_decreases_as_overlap_grows() -> None:
    a = Interval(_at(9), _at(10))
    b = Interval(_at(9), _at(11))
    for priority in Priority:
        previous = ConflictSeverity.LOW
        for minutes in range(0, 61, 5):
            sev = classify_severity(timedelta(minutes=minutes), a, b, priority)
            assert sev >= previous
            previous = sev


def test_unschedulable_tasks_are_skipped() -> None:
    meeting = _event("meeting", _at(9), _at(12))
    tasks = [
        _task("no-due", None, 60),
        _task("no-duration", _at(10), None),
        _task("zero-duration", _at(10), 0),
        _task("done", _at(10), 30, status=TaskStatus.COMPLETED),
        _task("archived", _at(10), 30, is_archived=True),
    ]

    assert ConflictDetector().scan_for_conflicts(tasks, [meeting]) == []


def test_all_day_events_are_ignored() -> None:
    task = _task("report", _at(14), 60)
    holiday = _event("holiday", _at(0), _at(0, days=1), is_all_day=True)

    assert ConflictDetector().scan_for_conflicts([task], [holiday]) == []


def test_task_overlap_reported_once_with_lower_priority_task_moving() -> None:
    important = _task("important", _at(9), 60, Priority.HIGH)
    minor = _task("minor", _at(9, 30), 60, Priority.LOW)

    conflicts = ConflictDetector().scan_for_conflicts([important, minor])

    assert len(conflicts) == 1
    c = conflicts[0]
    assert c.kind == ConflictKind.TASK_OVERLAP
    assert c.task.id == "minor"
    assert c.other_task is not None and c.other_task.id == "important"
    assert c.overlap == Interval(_at(9, 30), _at(10))
    assert c.severity == ConflictSeverity.HIGH
    assert c.counterpart_interval == Interval(_at(9), _at(10))


def test_equal_priority_overlap_moves_the_later_task() -> None:
    first = _task("first", _at(9), 60, Priority.MEDIUM)
    second = _task("second", _at(9, 45), 60, Priority.MEDIUM)

    (c,) = ConflictDetector().scan_for_conflicts([second, first])

    assert c.task.id == "second"
    assert c.other_task is not None and c.other_task.id == "first"
    assert c.severity == ConflictSeverity.MEDIUM


def test_results_sorted_most_severe_first() -> None:
    low = _task("low", _at(9), 120, Priority.LOW)
    high = _task("high", _at(16), 60, Priority.HIGH)
    events = [
        _event("brief", _at(10, 50), _at(12)),
        _event("review", _at(16, 50), _at(17, 30)),
    ]

    conflicts = ConflictDetector().scan_for_conflicts([low, high], events)

    assert [c.task.id for c in conflicts] == ["high", "low"]
    assert conflicts[0].severity == ConflictSeverity.HIGH
    assert conflicts[1].severity == ConflictSeverity.LOW


def test_events_are_fetched_for_the_days_the_tasks_cover() -> None:
    cal = FakeCalendar([_event("meeting", _at(14, 30), _at(15))])
    task = _task("report", _at(14), 60)
    later = _task("later", _at(9, days=2), 30)

    conflicts = ConflictDetector(cal).scan_for_conflicts([task, later])

    assert len(conflicts) == 1
    assert cal.calls == [(DAY, DAY + timedelta(days=3))]


def test_calendar_failure_falls_back_to_task_overlap(caplog) -> None:
    cal = FakeCalendar([_event("meeting", _at(9), _at(10))], fail=True)
    a = _task("a", _at(9), 60, Priority.HIGH)
    b = _task("b", _at(9, 30), 60)

    with caplog.at_level(logging.WARNING, logger="taskpilot.scheduling.conflicts"):
        conflicts = ConflictDetector(cal).scan_for_conflicts([a, b])

    assert len(conflicts) == 1
    assert conflicts[0].kind == ConflictKind.TASK_OVERLAP
    assert any("Calendar unavailable" in r.getMessage() for r in caplog.records)


def test_detector_without_calendar_scans_tasks_only() -> None:
    a = _task("a", _at(9), 60)
    assert ConflictDetector().scan_for_conflicts([a]) == []


def test_detect_conflicts_for_single_event() -> None:
    tasks = [
        _task("a", _at(9), 60, Priority.MEDIUM),
        _task("b", _at(11), 30),
        _task("c", _at(9, 30), 30, Priority.LOW),
    ]
    event = _event("sync", _at(9, 45), _at(10, 15))

    conflicts = ConflictDetector().detect_conflicts_for_event(event, tasks)

    assert {c.task.id for c in conflicts} == {"a", "c"}
    assert all(c.event == event for c in conflicts)
    assert ConflictDetector().detect_conflicts_for_event(
        _event("off", _at(0), _at(0, days=1), is_all_day=True), tasks
    ) == []
