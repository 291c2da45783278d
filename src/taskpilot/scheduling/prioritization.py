# src/taskpilot/scheduling/prioritization.py

"""
"What should I do next" ranking.

Each incomplete, unarchived, un-snoozed task gets a score in [0, 100] built
from independent terms:

    priority      0 / 8 / 16 / 25
    overdue       22 + 6 per full day overdue, capped at 40
    proximity     due today 20, this week 10, later 2
    duration fit  10 when the estimate fits today's remaining free time,
                  scaled by the learned focus bias
    affinity      10 * learned category/time-of-day affinity
    adjustment    learned per-task adjustment (+-15)

Terms whose magnitude reaches MATERIALITY become human-readable reasons.
Optional LLM insight is fetched separately and never blocks scoring.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from collections.abc import Callable, Sequence
from datetime import datetime, time, timedelta

from ..core.ports import AIInsightProvider, CalendarAccessError, CalendarAccessProvider, TaskRepo
from .conflicts import schedulable_tasks
from .feedback import FeedbackLearner, hour_bucket
from .models import (
    CalendarEvent,
    ConfidenceTier,
    Interval,
    Priority,
    Task,
    TaskSuggestion,
    at_time,
    day_start,
)
from .reschedule import union_intervals

logger = logging.getLogger(__name__)

PRIORITY_WEIGHTS: dict[Priority, float] = {
    Priority.NONE: 0.0,
    Priority.LOW: 8.0,
    Priority.MEDIUM: 16.0,
    Priority.HIGH: 25.0,
}

OVERDUE_BASE = 22.0
OVERDUE_PER_DAY = 6.0
OVERDUE_CAP = 40.0

DUE_TODAY_BONUS = 20.0
DUE_THIS_WEEK_BONUS = 10.0
DUE_LATER_BONUS = 2.0

DURATION_FIT_BONUS = 10.0
AFFINITY_WEIGHT = 10.0

MATERIALITY = 3.0
TOP_N = 3
DEFAULT_INSIGHT_TIMEOUT = 8.0


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


class PrioritizationEngine:
    def __init__(
        self,
        task_repo: TaskRepo,
        learner: FeedbackLearner,
        *,
        calendar: CalendarAccessProvider | None = None,
        insight_provider: AIInsightProvider | None = None,
        day_end_hour: int = 22,
        insight_timeout: float = DEFAULT_INSIGHT_TIMEOUT,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repo = task_repo
        self._learner = learner
        self._calendar = calendar
        self._insight_provider = insight_provider
        self._day_end_hour = day_end_hour
        self._insight_timeout = insight_timeout
        self._clock = clock

    # ---- queries ----

    def get_top_three_suggestions(self, *, now: datetime | None = None) -> list[TaskSuggestion]:
        now = now or self._clock()
        tasks = self._repo.list_current()
        candidates = [
            t
            for t in tasks
            if not t.is_completed and not t.is_archived and not self._learner.is_snoozed(t.id, now)
        ]
        if not candidates:
            return []

        free = self.free_time_today(now, tasks=tasks)
        suggestions = [self._build(t, now, free) for t in candidates]
        suggestions.sort(key=self._rank_key)
        top = suggestions[:TOP_N]
        logger.debug(
            "Suggestions: candidates=%d free=%s top=%s",
            len(candidates),
            free,
            [(s.task.id, s.score) for s in top],
        )
        return top

    def get_next_task_suggestion(self, *, now: datetime | None = None) -> TaskSuggestion | None:
        top = self.get_top_three_suggestions(now=now)
        return top[0] if top else None

    def get_suggestion(self, task: Task, *, now: datetime | None = None) -> TaskSuggestion:
        now = now or self._clock()
        free = self.free_time_today(now)
        return self._build(task, now, free)

    def score_task(self, task: Task, *, now: datetime | None = None) -> float:
        return self.get_suggestion(task, now=now).score

    async def with_insight(
        self,
        suggestion: TaskSuggestion,
        *,
        timeout: float | None = None,
    ) -> TaskSuggestion:
        """Attach LLM insight if it arrives in time; otherwise return the suggestion unchanged."""
        if self._insight_provider is None:
            return suggestion

        limit = self._insight_timeout if timeout is None else timeout
        try:
            text = await asyncio.wait_for(self._insight_provider.insight(suggestion.task), timeout=limit)
        except TimeoutError:
            logger.info("Insight timed out after %.1fs task=%s", limit, suggestion.task.id)
            return suggestion
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info("Insight provider cancelled task=%s", suggestion.task.id)
            return suggestion
        except Exception as e:
            logger.info("Insight failed task=%s: %s", suggestion.task.id, e)
            return suggestion

        if not text or not text.strip():
            return suggestion
        return dataclasses.replace(suggestion, insight=text.strip())

    async def with_insights(
        self,
        suggestions: Sequence[TaskSuggestion],
        *,
        timeout: float | None = None,
    ) -> list[TaskSuggestion]:
        return list(await asyncio.gather(*(self.with_insight(s, timeout=timeout) for s in suggestions)))

    # ---- free time ----

    def free_time_today(self, now: datetime, *, tasks: Sequence[Task] | None = None) -> timedelta:
        """Unbooked time between now and the end of the working day."""
        end = self._day_end(now)
        if now >= end:
            return timedelta(0)

        window = Interval(now, end)
        if tasks is None:
            tasks = self._repo.list_current()

        busy = [e.interval for e in self._events_today(now) if not e.is_all_day and e.end > e.start]
        busy.extend(t.interval for t in schedulable_tasks(tasks) if t.interval is not None)

        booked = timedelta(0)
        for iv in union_intervals(busy):
            clipped = iv.intersection(window)
            if clipped is not None:
                booked += clipped.duration
        return window.duration - booked

    def _day_end(self, now: datetime) -> datetime:
        if self._day_end_hour >= 24:
            return day_start(now) + timedelta(days=1)
        return at_time(now, time(self._day_end_hour, 0))

    def _events_today(self, now: datetime) -> list[CalendarEvent]:
        if self._calendar is None:
            return []
        start = day_start(now)
        try:
            return list(self._calendar.events_in_range(start, start + timedelta(days=1)))
        except CalendarAccessError as e:
            logger.warning("Calendar unavailable (%s); assuming no events today", e)
        except Exception:
            logger.exception("Calendar fetch failed; assuming no events today")
        return []

    # ---- scoring ----

    def _build(self, task: Task, now: datetime, free: timedelta) -> TaskSuggestion:
        terms = self._terms(task, now, free)
        raw = sum(value for value, _ in terms)
        score = round(max(0.0, min(100.0, raw)), 2)

        material = [(value, reason) for value, reason in terms if reason and abs(value) >= MATERIALITY]
        material.sort(key=lambda item: abs(item[0]), reverse=True)

        return TaskSuggestion(
            task=task,
            score=score,
            confidence=ConfidenceTier.from_score(score),
            reasons=tuple(reason for _, reason in material),
        )

    def _terms(self, task: Task, now: datetime, free: timedelta) -> list[tuple[float, str]]:
        terms: list[tuple[float, str]] = []

        weight = PRIORITY_WEIGHTS[task.priority]
        if weight:
            terms.append((weight, f"{task.priority.display_name} priority"))

        terms.append(self._due_term(task, now))

        if task.estimated_duration is not None and timedelta(0) < task.estimated_duration <= free:
            focus = self._learner.focus_bias(task.category)
            terms.append((DURATION_FIT_BONUS * (1.0 + focus), "Fits your free time"))

        affinity = self._learner.affinity(task.category, now)
        if affinity > 0:
            terms.append(
                (AFFINITY_WEIGHT * affinity, f"You usually do {task.category.value} tasks in the {hour_bucket(now.hour)}")
            )
        elif affinity < 0:
            terms.append((AFFINITY_WEIGHT * affinity, "Often skipped at this time"))

        adjustment = self._learner.task_adjustment(task.id)
        if adjustment > 0:
            terms.append((adjustment, "You've engaged with this recently"))
        elif adjustment < 0:
            terms.append((adjustment, "Skipped recently"))

        return terms

    @staticmethod
    def _due_term(task: Task, now: datetime) -> tuple[float, str]:
        due = task.due_at
        if due is None:
            return 0.0, ""

        if task.is_overdue(now):
            days = (now - due).days
            bonus = min(OVERDUE_CAP, OVERDUE_BASE + OVERDUE_PER_DAY * days)
            reason = "Overdue" if days == 0 else f"Overdue by {_plural(days, 'day')}"
            return bonus, reason

        days_ahead = (day_start(due) - day_start(now)).days
        if days_ahead == 0:
            return DUE_TODAY_BONUS, "Due today"
        if days_ahead < 7:
            return DUE_THIS_WEEK_BONUS, "Due this week"
        return DUE_LATER_BONUS, "Due later"

    @staticmethod
    def _rank_key(s: TaskSuggestion) -> tuple:
        due = s.task.due_at
        return (
            -s.score,
            due.timestamp() if due is not None else math.inf,
            s.task.created_at.timestamp(),
            s.task.id,
        )
