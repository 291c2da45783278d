# src/taskpilot/scheduling/reschedule.py

"""
Reschedule suggestions.

For one conflict we generate a handful of candidate start times, score them and
return them ranked. For many conflicts we greedily assign one option per task
so that the accepted options never overlap each other. This is a heuristic
advisor, not a constraint solver: it does not search for a global optimum.

Candidates:
- after_conflict:   first free slot after the counterpart ends (plus a buffer), same day
- earlier_today:    first free slot today that ends before the counterpart starts
- tomorrow:         same time of day on the following day (nudged to a free slot)
- push_to_tomorrow: for overdue tasks, tomorrow relative to "now"

No candidate ever starts before "now".
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, time, timedelta

from ..core.ports import TaskRepo
from .conflicts import schedulable_tasks
from .models import (
    BatchRescheduleSuggestion,
    CalendarEvent,
    Conflict,
    ConflictSeverity,
    Interval,
    Priority,
    RescheduleKind,
    RescheduleOption,
    RescheduleSuggestion,
    RescheduleUrgency,
    Task,
    at_time,
)

logger = logging.getLogger(__name__)

SAME_SLOT_TOLERANCE = timedelta(minutes=5)

BASE_SCORE = 50.0
SAME_DAY_BONUS = 20.0
DISPLACEMENT_PER_HOUR = 1.0
MAX_DISPLACEMENT_PENALTY = 25.0
BUSY_PENALTY = 40.0
HIGH_PRIORITY_TOMORROW_PENALTY = 10.0
PRODUCTIVE_HOURS_BONUS = 5.0


def _ceil_to_snap(moment: datetime) -> datetime:
    base = moment.replace(second=0, microsecond=0)
    if base < moment:
        base += timedelta(minutes=1)
    rem = base.minute % 5
    if rem:
        base += timedelta(minutes=5 - rem)
    return base


def union_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    ordered = sorted(intervals, key=lambda iv: (iv.start, iv.end))
    out: list[Interval] = []
    for iv in ordered:
        if out and iv.start <= out[-1].end:
            if iv.end > out[-1].end:
                out[-1] = Interval(out[-1].start, iv.end)
        else:
            out.append(iv)
    return out


def find_free_slot(
    search_start: datetime,
    duration: timedelta,
    busy: Sequence[Interval],
    window_end: datetime,
) -> datetime | None:
    """
    First snapped start >= search_start such that [start, start + duration)
    avoids every busy interval and ends by window_end. `busy` must be unioned.
    """
    cur = _ceil_to_snap(search_start)
    for iv in busy:
        if iv.end <= cur:
            continue
        if iv.start >= cur + duration:
            break
        cur = _ceil_to_snap(max(cur, iv.end))
    if cur + duration <= window_end:
        return cur
    return None


def _fmt_time(moment: datetime) -> str:
    return moment.strftime("%H:%M")


class RescheduleSuggester:
    def __init__(
        self,
        store: TaskRepo | None = None,
        *,
        day_start_hour: int = 7,
        day_end_hour: int = 22,
        buffer: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not 0 <= day_start_hour < day_end_hour <= 24:
            raise ValueError(f"invalid working day {day_start_hour}-{day_end_hour}")
        self._store = store
        self._day_start = time(day_start_hour, 0)
        self._day_end_hour = day_end_hour
        self._buffer = buffer
        self._clock = clock

    # ---- single conflict ----

    def suggest_reschedule(
        self,
        conflict: Conflict,
        *,
        tasks: Sequence[Task] = (),
        events: Sequence[CalendarEvent] = (),
        now: datetime | None = None,
    ) -> RescheduleSuggestion:
        now = now or self._clock()
        task = conflict.task
        task_iv = task.interval
        if task_iv is None:
            raise ValueError(f"task {task.id} has no scheduled interval")

        duration = task_iv.duration
        original = task_iv.start
        counterpart = conflict.counterpart_interval
        busy = self._busy_intervals(task, counterpart, tasks, events)

        raw: list[tuple[datetime, RescheduleKind, str]] = []

        # (a) right after the counterpart, same day
        after_start = max(counterpart.end + self._buffer, now)
        if after_start.date() == original.date():
            slot = find_free_slot(after_start, duration, busy, self._window_end(original))
            if slot is not None:
                raw.append(
                    (slot, RescheduleKind.AFTER_CONFLICT, f'Right after "{conflict.counterpart_title}" ends')
                )

        # (d) earlier today, before the counterpart starts
        earliest = max(at_time(original, self._day_start), now)
        if earliest.date() == original.date() and earliest < counterpart.start:
            slot = find_free_slot(earliest, duration, busy, counterpart.start)
            if slot is not None:
                raw.append((slot, RescheduleKind.EARLIER_TODAY, "Earlier today before the conflict"))

        # (b) same time tomorrow
        tomorrow = original + timedelta(days=1)
        if tomorrow >= now:
            slot = self._nudge_to_free(tomorrow, duration, busy)
            raw.append((slot, RescheduleKind.TOMORROW, f"Tomorrow at {_fmt_time(slot)}"))

        # (c) overdue: push to tomorrow relative to now
        if task.is_overdue(now):
            target = at_time(now + timedelta(days=1), original.time())
            slot = self._nudge_to_free(target, duration, busy)
            raw.append((slot, RescheduleKind.PUSH_TO_TOMORROW, f"Push to tomorrow at {_fmt_time(slot)}"))

        options = [
            RescheduleOption(
                start=start,
                duration=duration,
                reason=reason,
                score=self._score(start, duration, original, kind, task, busy),
                kind=kind,
            )
            for start, kind, reason in raw
            if start >= now
        ]
        options = self._rank(options)

        suggestion = RescheduleSuggestion(
            conflict=conflict,
            options=tuple(options),
            recommended_option=options[0] if options else None,
            urgency=self._urgency(conflict, now),
        )
        logger.debug(
            "Reschedule task=%s counterpart=%s options=%d",
            task.id,
            conflict.counterpart_id,
            len(options),
        )
        return suggestion

    # ---- batch ----

    def suggest_batch_reschedule(
        self,
        conflicts: Sequence[Conflict],
        *,
        tasks: Sequence[Task] = (),
        events: Sequence[CalendarEvent] = (),
        now: datetime | None = None,
    ) -> BatchRescheduleSuggestion:
        """
        Greedy assignment: most severe conflicts pick first; each takes its best
        option that is free of known busy time and does not overlap an option
        accepted for a different task. A conflict whose options are all busy
        stays unresolved.
        """
        now = now or self._clock()
        ordered = sorted(
            enumerate(conflicts),
            key=lambda item: (
                -int(item[1].severity),
                item[1].task.due_at or datetime.max.replace(tzinfo=now.tzinfo),
                item[0],
            ),
        )

        suggestions: list[RescheduleSuggestion] = []
        accepted: list[RescheduleOption | None] = []
        by_task: dict[str, RescheduleOption] = {}

        for _, conflict in ordered:
            suggestion = self.suggest_reschedule(conflict, tasks=tasks, events=events, now=now)
            suggestions.append(suggestion)
            task_id = conflict.task.id

            existing = by_task.get(task_id)
            if existing is not None:
                # The task already moved for another conflict; keep a single new time.
                ok = not existing.interval.overlaps(conflict.counterpart_interval)
                accepted.append(existing if ok else None)
                continue

            # Tasks already moved in this batch no longer block their old time.
            busy = self._busy_intervals(
                conflict.task,
                conflict.counterpart_interval,
                [t for t in tasks if t.id not in by_task],
                events,
            )
            chosen: RescheduleOption | None = None
            for option in suggestion.options:
                if self._overlaps_busy(option.start, option.duration, busy):
                    continue
                clash = any(
                    option.interval.overlaps(other.interval)
                    for other_id, other in by_task.items()
                    if other_id != task_id
                )
                if not clash:
                    chosen = option
                    break

            if chosen is not None:
                by_task[task_id] = chosen
            accepted.append(chosen)

        batch = BatchRescheduleSuggestion(
            suggestions=tuple(suggestions),
            accepted=tuple(accepted),
            can_auto_resolve=all(opt is not None for opt in accepted),
        )
        logger.info(
            "Batch reschedule: conflicts=%d resolved=%d auto=%s",
            batch.total_conflicts,
            batch.resolved_count,
            batch.can_auto_resolve,
        )
        return batch

    # ---- apply ----

    def apply_reschedule(self, option: RescheduleOption, task: Task, *, now: datetime | None = None) -> Task:
        """
        Move the stored task to `option`. The task is re-read first so edits made
        since the conflict scan are kept; raises ValueError when it is gone or done.
        """
        current = self._current(task)
        updated = dataclasses.replace(
            current,
            due_at=option.start,
            estimated_duration=option.duration,
            updated_at=now or self._clock(),
        )
        self._store.update(updated)
        logger.info("Rescheduled task=%s -> %s", task.id, option.start.isoformat())
        return updated

    def apply_batch(self, batch: BatchRescheduleSuggestion, *, now: datetime | None = None) -> list[Task]:
        planned: dict[str, RescheduleOption] = {}
        for suggestion, option in zip(batch.suggestions, batch.accepted):
            if option is not None:
                planned.setdefault(suggestion.conflict.task.id, option)

        # Check every task before writing any of them.
        pending: list[tuple[RescheduleOption, Task]] = []
        for suggestion in batch.suggestions:
            task = suggestion.conflict.task
            option = planned.pop(task.id, None)
            if option is None:
                continue
            try:
                pending.append((option, self._current(task)))
            except ValueError as e:
                logger.info("Batch reschedule skips task=%s: %s", task.id, e)

        return [self.apply_reschedule(option, task, now=now) for option, task in pending]

    def _current(self, task: Task) -> Task:
        if self._store is None:
            raise RuntimeError("RescheduleSuggester has no task store to apply changes to")
        current = self._store.get(task.id)
        if current is None:
            raise ValueError(f"task {task.title!r} no longer exists")
        if current.is_completed:
            raise ValueError(f"task {task.title!r} is already completed")
        return current

    # ---- helpers ----

    def _window_end(self, day: datetime) -> datetime:
        if self._day_end_hour >= 24:
            return at_time(day, time(0, 0)) + timedelta(days=1)
        return at_time(day, time(self._day_end_hour, 0))

    def _busy_intervals(
        self,
        task: Task,
        counterpart: Interval,
        tasks: Sequence[Task],
        events: Sequence[CalendarEvent],
    ) -> list[Interval]:
        busy = [counterpart]
        busy.extend(e.interval for e in events if not e.is_all_day and e.end > e.start)
        busy.extend(
            t.interval for t in schedulable_tasks(tasks) if t.id != task.id and t.interval is not None
        )
        return union_intervals(busy)

    def _nudge_to_free(self, start: datetime, duration: timedelta, busy: list[Interval]) -> datetime:
        slot = find_free_slot(start, duration, busy, self._window_end(start))
        return slot if slot is not None else start

    @staticmethod
    def _overlaps_busy(start: datetime, duration: timedelta, busy: list[Interval]) -> bool:
        iv = Interval(start, start + duration)
        return any(iv.overlaps(b) for b in busy)

    def _score(
        self,
        start: datetime,
        duration: timedelta,
        original: datetime,
        kind: RescheduleKind,
        task: Task,
        busy: list[Interval],
    ) -> float:
        score = BASE_SCORE
        if start.date() == original.date():
            score += SAME_DAY_BONUS

        hours_moved = abs((start - original).total_seconds()) / 3600.0
        score -= min(MAX_DISPLACEMENT_PENALTY, hours_moved * DISPLACEMENT_PER_HOUR)

        if self._overlaps_busy(start, duration, busy):
            score -= BUSY_PENALTY

        if kind in (RescheduleKind.TOMORROW, RescheduleKind.PUSH_TO_TOMORROW) and task.priority >= Priority.HIGH:
            score -= HIGH_PRIORITY_TOMORROW_PENALTY

        if 9 <= start.hour < 17:
            score += PRODUCTIVE_HOURS_BONUS

        return round(score, 2)

    @staticmethod
    def _rank(options: list[RescheduleOption]) -> list[RescheduleOption]:
        ordered = sorted(options, key=lambda o: (-o.score, o.start))
        out: list[RescheduleOption] = []
        for option in ordered:
            if any(abs(option.start - kept.start) < SAME_SLOT_TOLERANCE for kept in out):
                continue
            out.append(option)
        return out

    @staticmethod
    def _urgency(conflict: Conflict, now: datetime) -> RescheduleUrgency:
        minutes = (conflict.conflict_time - now).total_seconds() / 60.0
        if minutes < 30:
            return RescheduleUrgency.IMMEDIATE
        if minutes < 120 or conflict.task.priority >= Priority.HIGH:
            return RescheduleUrgency.HIGH
        if conflict.severity == ConflictSeverity.HIGH:
            return RescheduleUrgency.MEDIUM
        return RescheduleUrgency.LOW
