# src/taskpilot/scheduling/conflicts.py

"""
Conflict detection.

Scans a snapshot of tasks against calendar events and against each other.

Only tasks with both a due time and a positive estimated duration have a
concrete interval [due_at, due_at + duration); anything else is skipped.
That is a known limitation of the heuristic, not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from ..core.ports import CalendarAccessError, CalendarAccessProvider
from .models import (
    CalendarEvent,
    Conflict,
    ConflictSeverity,
    Interval,
    Priority,
    Task,
    day_start,
)

logger = logging.getLogger(__name__)

HIGH_OVERLAP_FRACTION = 0.5


def classify_severity(overlap: timedelta, a: Interval, b: Interval, priority: Priority) -> ConflictSeverity:
    """
    - HIGH: overlap covers at least half of the shorter interval, or the task is high priority
    - MEDIUM: any overlap on a medium-priority task
    - LOW: everything else
    """
    shorter = min(a.duration, b.duration)
    fraction = overlap / shorter if shorter > timedelta(0) else 0.0
    if fraction >= HIGH_OVERLAP_FRACTION or priority >= Priority.HIGH:
        return ConflictSeverity.HIGH
    if overlap > timedelta(0) and priority == Priority.MEDIUM:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def schedulable_tasks(tasks: Iterable[Task]) -> list[Task]:
    return [
        t
        for t in tasks
        if not t.is_completed and not t.is_archived and t.interval is not None
    ]


def _movability_key(task: Task) -> tuple:
    # Lower priority and later start are easier to move.
    assert task.due_at is not None
    return (int(task.priority), -task.due_at.timestamp(), task.id)


class ConflictDetector:
    def __init__(self, calendar: CalendarAccessProvider | None = None) -> None:
        self._calendar = calendar

    def scan_for_conflicts(
        self,
        tasks: Sequence[Task],
        events: Sequence[CalendarEvent] | None = None,
    ) -> list[Conflict]:
        """
        Return every conflict in the snapshot, most severe first.

        If `events` is None they are fetched from the calendar provider for the
        days the tasks cover; a provider failure narrows the scan to
        task-vs-task instead of aborting it.
        """
        scheduled = schedulable_tasks(tasks)
        if not scheduled:
            return []

        if events is None:
            events = self._fetch_events(scheduled)

        timed_events = [e for e in events if not e.is_all_day and e.end > e.start]

        seen: set[tuple[str, str]] = set()
        conflicts: list[Conflict] = []

        for task in scheduled:
            for conflict in self._event_conflicts(task, timed_events):
                key = (task.id, conflict.counterpart_id)
                if key in seen:
                    continue
                seen.add(key)
                conflicts.append(conflict)

        for conflict in self._task_conflicts(scheduled):
            key = (conflict.task.id, conflict.counterpart_id)
            if key in seen:
                continue
            seen.add(key)
            conflicts.append(conflict)

        conflicts.sort(key=lambda c: (-int(c.severity), c.overlap.start, c.task.id))
        logger.debug(
            "Conflict scan: tasks=%d scheduled=%d events=%d conflicts=%d",
            len(tasks),
            len(scheduled),
            len(timed_events),
            len(conflicts),
        )
        return conflicts

    def detect_conflicts_for_event(self, event: CalendarEvent, tasks: Sequence[Task]) -> list[Conflict]:
        """Conflicts a single (e.g. newly added) event causes with the given tasks."""
        if event.is_all_day:
            return []
        out: list[Conflict] = []
        for task in schedulable_tasks(tasks):
            out.extend(self._event_conflicts(task, [event]))
        out.sort(key=lambda c: (-int(c.severity), c.overlap.start, c.task.id))
        return out

    # ---- helpers ----

    def _fetch_events(self, scheduled: list[Task]) -> list[CalendarEvent]:
        if self._calendar is None:
            return []

        starts = [t.interval.start for t in scheduled if t.interval is not None]
        ends = [t.interval.end for t in scheduled if t.interval is not None]
        window_start = day_start(min(starts))
        window_end = day_start(max(ends)) + timedelta(days=1)

        try:
            return list(self._calendar.events_in_range(window_start, window_end))
        except CalendarAccessError as e:
            logger.warning("Calendar unavailable (%s); scanning task-vs-task only", e)
        except Exception:
            logger.exception("Calendar fetch failed; scanning task-vs-task only")
        return []

    @staticmethod
    def _event_conflicts(task: Task, events: Iterable[CalendarEvent]) -> list[Conflict]:
        iv = task.interval
        assert iv is not None
        day = day_start(iv.start)
        day_iv = Interval(day, day + timedelta(days=1))

        out: list[Conflict] = []
        for event in events:
            ev_iv = event.interval
            if not ev_iv.overlaps(day_iv):
                continue
            overlap = iv.intersection(ev_iv)
            if overlap is None:
                continue
            out.append(
                Conflict(
                    task=task,
                    event=event,
                    overlap=overlap,
                    severity=classify_severity(overlap.duration, iv, ev_iv, task.priority),
                )
            )
        return out

    @staticmethod
    def _task_conflicts(scheduled: list[Task]) -> list[Conflict]:
        ordered = sorted(scheduled, key=lambda t: (t.interval.start, t.id))  # type: ignore[union-attr]
        out: list[Conflict] = []
        for i, first in enumerate(ordered):
            a = first.interval
            assert a is not None
            for second in ordered[i + 1:]:
                b = second.interval
                assert b is not None
                if b.start >= a.end:
                    # Sorted by start: nothing later can overlap `first`.
                    break
                if first.id == second.id:
                    continue
                overlap = a.intersection(b)
                if overlap is None:
                    continue

                mover, other = (
                    (first, second)
                    if _movability_key(first) < _movability_key(second)
                    else (second, first)
                )
                mover_iv = mover.interval
                other_iv = other.interval
                assert mover_iv is not None and other_iv is not None
                out.append(
                    Conflict(
                        task=mover,
                        other_task=other,
                        overlap=overlap,
                        severity=classify_severity(
                            overlap.duration, mover_iv, other_iv, mover.priority
                        ),
                    )
                )
        return out
