# src/taskpilot/scheduling/feedback.py

"""
Feedback learner.

Records how the user reacts to suggestions and keeps three kinds of state in a
BiasRepo:

- bias:<category>:<bucket>  exponentially smoothed signal in [-1, 1]
    bucket is an hour-of-day bucket, "all" (category-wide) or "focus"
    (applies to the duration-fit term)
- adj:<task id>             per-task score adjustment in [-15, 15]
- snooze:<task id>          epoch seconds until which the task is suppressed

The PrioritizationEngine reads this state on every scoring pass; there is no
separate "apply" step. All read-modify-write updates go through one lock.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime

from ..core.ports import BiasRepo
from .models import FeedbackAction, FeedbackEvent, FeedbackSignal, Task, TaskCategory

logger = logging.getLogger(__name__)

DEFAULT_ALPHA = 0.3
MAX_EVENTS = 200
MAX_ADJUSTMENT = 15.0
WEEKLY_DECAY = 0.95
MIN_ADJUSTMENT = 0.5

BUCKET_ALL = "all"
BUCKET_FOCUS = "focus"


def hour_bucket(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "night"


# action -> (bucket selector, signal)
_SIGNALS: dict[FeedbackAction, tuple[str, float]] = {
    FeedbackAction.STARTED_IMMEDIATELY: ("hour", 1.0),
    FeedbackAction.VIEWED_DETAILS: ("hour", 0.3),
    FeedbackAction.SNOOZED_1_HOUR: ("hour", -0.1),
    FeedbackAction.SNOOZED_EVENING: ("hour", -0.1),
    FeedbackAction.SNOOZED_TOMORROW: ("hour", -0.1),
    FeedbackAction.SKIPPED_NOT_RELEVANT: (BUCKET_ALL, -1.0),
    FeedbackAction.SKIPPED_WRONG_TIME: ("hour", -1.0),
    FeedbackAction.SKIPPED_NEEDS_FOCUS: (BUCKET_FOCUS, -1.0),
}


def _bias_key(category: TaskCategory, bucket: str) -> str:
    return f"bias:{category.value}:{bucket}"


class FeedbackLearner:
    def __init__(
        self,
        repo: BiasRepo,
        *,
        alpha: float = DEFAULT_ALPHA,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1] (got {alpha})")
        self._repo = repo
        self._alpha = float(alpha)
        self._clock = clock
        self._lock = threading.Lock()
        self._events: deque[FeedbackEvent] = deque(maxlen=MAX_EVENTS)

    @property
    def alpha(self) -> float:
        return self._alpha

    @property
    def events(self) -> list[FeedbackEvent]:
        with self._lock:
            return list(self._events)

    # ---- recording ----

    def record_suggestion_feedback(
        self,
        task: Task,
        action: FeedbackAction,
        score: float,
        *,
        now: datetime | None = None,
    ) -> None:
        now = now or self._clock()
        selector, signal = _SIGNALS[action]
        bucket = hour_bucket(now.hour) if selector == "hour" else selector
        key = _bias_key(task.category, bucket)

        with self._lock:
            old = self._repo.get(key) or 0.0
            new = old * (1.0 - self._alpha) + signal * self._alpha
            self._repo.set(key, new)

            adj_key = f"adj:{task.id}"
            adj = (self._repo.get(adj_key) or 0.0) + action.adjustment_delta
            self._repo.set(adj_key, max(-MAX_ADJUSTMENT, min(MAX_ADJUSTMENT, adj)))

            until = action.snooze_until(now)
            if until is not None:
                self._repo.set(f"snooze:{task.id}", until.timestamp())

            self._events.append(
                FeedbackEvent(
                    task_id=task.id,
                    action=action,
                    timestamp=now,
                    original_score=float(score),
                    category=task.category,
                    hour_of_day=now.hour,
                )
            )

        logger.info(
            "Feedback task=%s action=%s key=%s bias %.3f -> %.3f",
            task.id,
            action.value,
            key,
            old,
            new,
        )

    # ---- reads used by scoring ----

    def bias(self, category: TaskCategory, bucket: str) -> float:
        return self._repo.get(_bias_key(category, bucket)) or 0.0

    def affinity(self, category: TaskCategory, now: datetime) -> float:
        """Category/time-of-day affinity in [-1, 1]: half hour bucket, half category-wide."""
        return 0.5 * self.bias(category, hour_bucket(now.hour)) + 0.5 * self.bias(
            category, BUCKET_ALL
        )

    def focus_bias(self, category: TaskCategory) -> float:
        return self.bias(category, BUCKET_FOCUS)

    def task_adjustment(self, task_id: str) -> float:
        return self._repo.get(f"adj:{task_id}") or 0.0

    def snoozed_until(self, task_id: str) -> datetime | None:
        raw = self._repo.get(f"snooze:{task_id}")
        return None if raw is None else datetime.fromtimestamp(raw)

    def is_snoozed(self, task_id: str, now: datetime | None = None) -> bool:
        raw = self._repo.get(f"snooze:{task_id}")
        if raw is None:
            return False
        now = now or self._clock()
        return raw > now.timestamp()

    def signals(self) -> list[FeedbackSignal]:
        out: list[FeedbackSignal] = []
        for key, value in self._repo.items("bias:"):
            _, category, bucket = key.split(":", 2)
            out.append(FeedbackSignal(TaskCategory.from_db(category), bucket, value))
        return out

    # ---- maintenance ----

    def clean_expired_snoozes(self, now: datetime | None = None) -> int:
        now_ts = (now or self._clock()).timestamp()
        removed = 0
        with self._lock:
            for key, until in self._repo.items("snooze:"):
                if until <= now_ts:
                    self._repo.delete(key)
                    removed += 1
        return removed

    def apply_decay_if_needed(self, now: datetime | None = None) -> bool:
        """Decay per-task adjustments by 5% per full week since the last decay."""
        now = now or self._clock()
        with self._lock:
            last = self._repo.get("meta:last_decay")
            if last is None:
                self._repo.set("meta:last_decay", now.timestamp())
                return False

            weeks = int((now.timestamp() - last) // (7 * 86400))
            if weeks < 1:
                return False

            factor = WEEKLY_DECAY**weeks
            for key, value in self._repo.items("adj:"):
                decayed = value * factor
                if abs(decayed) < MIN_ADJUSTMENT:
                    self._repo.delete(key)
                else:
                    self._repo.set(key, decayed)
            self._repo.set("meta:last_decay", now.timestamp())

        logger.debug("Applied %d week(s) of feedback decay", weeks)
        return True

    def prune_deleted_tasks(self, active_task_ids: Iterable[str]) -> int:
        active = set(active_task_ids)
        removed = 0
        with self._lock:
            for prefix in ("adj:", "snooze:"):
                for key, _ in self._repo.items(prefix):
                    if key[len(prefix):] not in active:
                        self._repo.delete(key)
                        removed += 1
        return removed
