# src/taskpilot/scheduling/models.py

"""
Temporal model shared by every scheduling component.

Everything here is a plain dataclass or enum. Tasks and events are snapshots
read from the store; conflicts, reschedule options and suggestions are derived
and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import IntEnum, StrEnum


class Priority(IntEnum):
    """Ordered task priority: NONE < LOW < MEDIUM < HIGH."""

    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def from_db(cls, raw: int | str | None) -> Priority:
        if raw is None or raw == "":
            return cls.NONE
        try:
            return cls(int(raw))
        except (TypeError, ValueError):
            try:
                return cls[str(raw).strip().upper()]
            except KeyError:
                return cls.NONE

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


class TaskCategory(StrEnum):
    UNCATEGORIZED = "uncategorized"
    WORK = "work"
    PERSONAL = "personal"
    HEALTH = "health"
    FINANCE = "finance"
    SHOPPING = "shopping"
    ERRANDS = "errands"
    LEARNING = "learning"
    HOME = "home"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskCategory:
        if not raw:
            return cls.UNCATEGORIZED
        try:
            return cls(raw)
        except ValueError:
            return cls.UNCATEGORIZED


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


@dataclass(slots=True, frozen=True)
class Interval:
    """Half-open time interval [start, end)."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: Interval) -> bool:
        # Touching endpoints do not overlap.
        return self.start < other.end and other.start < self.end

    def overlap(self, other: Interval) -> timedelta:
        if not self.overlaps(other):
            return timedelta(0)
        return min(self.end, other.end) - max(self.start, other.start)

    def intersection(self, other: Interval) -> Interval | None:
        if not self.overlaps(other):
            return None
        return Interval(max(self.start, other.start), min(self.end, other.end))

    def shifted(self, delta: timedelta) -> Interval:
        return Interval(self.start + delta, self.end + delta)


def day_start(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def at_time(day: datetime, clock: time) -> datetime:
    """Combine the calendar day of `day` with a wall-clock time, keeping tzinfo."""
    return day.replace(
        hour=clock.hour, minute=clock.minute, second=clock.second, microsecond=0
    )


def format_duration(delta: timedelta) -> str:
    minutes = int(delta.total_seconds() // 60)
    if minutes >= 60:
        hours, rest = divmod(minutes, 60)
        return f"{hours}h {rest}m" if rest else f"{hours}h"
    return f"{minutes}m"


@dataclass(slots=True)
class Task:
    id: str
    title: str
    due_at: datetime | None = None
    estimated_duration: timedelta | None = None
    priority: Priority = Priority.NONE
    category: TaskCategory = TaskCategory.UNCATEGORIZED
    status: TaskStatus = TaskStatus.PENDING
    completed_at: datetime | None = None
    is_archived: bool = False
    worked_duration: timedelta = timedelta(0)
    recurring_rule: RecurringRule | None = None
    parent_id: str | None = None
    notes: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def is_in_progress(self) -> bool:
        return self.status == TaskStatus.IN_PROGRESS

    @property
    def is_subtask(self) -> bool:
        return self.parent_id is not None

    @property
    def interval(self) -> Interval | None:
        """Concrete scheduled interval; None without a due time or a positive duration."""
        if self.due_at is None or self.estimated_duration is None:
            return None
        if self.estimated_duration <= timedelta(0):
            return None
        return Interval(self.due_at, self.due_at + self.estimated_duration)

    def is_overdue(self, now: datetime) -> bool:
        return self.due_at is not None and not self.is_completed and self.due_at < now


@dataclass(slots=True, frozen=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    is_all_day: bool = False

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)


class ConflictSeverity(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


class ConflictKind(StrEnum):
    CALENDAR_EVENT = "calendar_event"
    TASK_OVERLAP = "task_overlap"


@dataclass(slots=True, frozen=True)
class Conflict:
    """
    A task overlapping exactly one counterpart: a calendar event or another task.
    """

    task: Task
    overlap: Interval
    severity: ConflictSeverity
    event: CalendarEvent | None = None
    other_task: Task | None = None

    def __post_init__(self) -> None:
        if (self.event is None) == (self.other_task is None):
            raise ValueError("Conflict needs exactly one counterpart (event or other_task)")

    @property
    def kind(self) -> ConflictKind:
        return ConflictKind.CALENDAR_EVENT if self.event is not None else ConflictKind.TASK_OVERLAP

    @property
    def counterpart_id(self) -> str:
        if self.event is not None:
            return f"event:{self.event.id}"
        assert self.other_task is not None
        return f"task:{self.other_task.id}"

    @property
    def counterpart_title(self) -> str:
        if self.event is not None:
            return self.event.title
        assert self.other_task is not None
        return self.other_task.title

    @property
    def counterpart_interval(self) -> Interval:
        if self.event is not None:
            return self.event.interval
        assert self.other_task is not None
        iv = self.other_task.interval
        assert iv is not None
        return iv

    @property
    def conflict_time(self) -> datetime:
        return self.overlap.start

    @property
    def overlap_duration(self) -> timedelta:
        return self.overlap.duration

    @property
    def formatted_overlap(self) -> str:
        return f"{format_duration(self.overlap_duration)} overlap"

    @property
    def description(self) -> str:
        if self.kind == ConflictKind.CALENDAR_EVENT:
            return f'Conflicts with "{self.counterpart_title}"'
        return f'Overlaps with "{self.counterpart_title}"'


class RescheduleKind(StrEnum):
    AFTER_CONFLICT = "after_conflict"
    EARLIER_TODAY = "earlier_today"
    TOMORROW = "tomorrow"
    PUSH_TO_TOMORROW = "push_to_tomorrow"


class RescheduleUrgency(StrEnum):
    IMMEDIATE = "immediate"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(slots=True, frozen=True)
class RescheduleOption:
    start: datetime
    duration: timedelta
    reason: str
    score: float
    kind: RescheduleKind

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.start + self.duration)


@dataclass(slots=True, frozen=True)
class RescheduleSuggestion:
    conflict: Conflict
    options: tuple[RescheduleOption, ...]
    recommended_option: RescheduleOption | None
    urgency: RescheduleUrgency = RescheduleUrgency.LOW


@dataclass(slots=True, frozen=True)
class BatchRescheduleSuggestion:
    """
    Per-conflict suggestions plus the option accepted for each one.

    `accepted[i]` belongs to `suggestions[i]`; None marks an unresolved conflict.
    """

    suggestions: tuple[RescheduleSuggestion, ...]
    accepted: tuple[RescheduleOption | None, ...]
    can_auto_resolve: bool

    @property
    def total_conflicts(self) -> int:
        return len(self.suggestions)

    @property
    def resolved_count(self) -> int:
        return sum(1 for opt in self.accepted if opt is not None)

    @property
    def unresolved(self) -> list[Conflict]:
        return [s.conflict for s, opt in zip(self.suggestions, self.accepted) if opt is None]


class ConfidenceTier(StrEnum):
    RECOMMENDED = "recommended"
    GOOD_FIT = "good_fit"
    CONSIDER = "consider"

    @classmethod
    def from_score(cls, score: float) -> ConfidenceTier:
        if score >= 80:
            return cls.RECOMMENDED
        if score >= 50:
            return cls.GOOD_FIT
        return cls.CONSIDER

    @property
    def display_name(self) -> str:
        return {
            ConfidenceTier.RECOMMENDED: "Recommended",
            ConfidenceTier.GOOD_FIT: "Good fit",
            ConfidenceTier.CONSIDER: "Consider",
        }[self]


@dataclass(slots=True, frozen=True)
class TaskSuggestion:
    task: Task
    score: float
    confidence: ConfidenceTier
    reasons: tuple[str, ...]
    insight: str | None = None


class FeedbackAction(StrEnum):
    STARTED_IMMEDIATELY = "started_immediately"
    VIEWED_DETAILS = "viewed_details"
    SNOOZED_1_HOUR = "snoozed_1_hour"
    SNOOZED_EVENING = "snoozed_evening"
    SNOOZED_TOMORROW = "snoozed_tomorrow"
    SKIPPED_NOT_RELEVANT = "skipped_not_relevant"
    SKIPPED_WRONG_TIME = "skipped_wrong_time"
    SKIPPED_NEEDS_FOCUS = "skipped_needs_focus"

    @property
    def is_snooze(self) -> bool:
        return self in (
            FeedbackAction.SNOOZED_1_HOUR,
            FeedbackAction.SNOOZED_EVENING,
            FeedbackAction.SNOOZED_TOMORROW,
        )

    @property
    def adjustment_delta(self) -> float:
        """Per-task score adjustment applied on top of the bias terms."""
        if self == FeedbackAction.STARTED_IMMEDIATELY:
            return 5.0
        if self == FeedbackAction.VIEWED_DETAILS:
            return 1.0
        if self == FeedbackAction.SNOOZED_1_HOUR:
            return -2.0
        if self.is_snooze:
            return -3.0
        return -5.0

    def snooze_until(self, now: datetime) -> datetime | None:
        if self == FeedbackAction.SNOOZED_1_HOUR:
            return now + timedelta(hours=1)
        if self == FeedbackAction.SNOOZED_EVENING:
            evening = at_time(now, time(18, 0))
            return evening if evening > now else evening + timedelta(days=1)
        if self == FeedbackAction.SNOOZED_TOMORROW:
            return at_time(now + timedelta(days=1), time(9, 0))
        return None


@dataclass(slots=True, frozen=True)
class FeedbackSignal:
    """Learned bias for one (category, bucket) key, roughly in [-1, 1]."""

    category: TaskCategory
    bucket: str
    bias: float


@dataclass(slots=True, frozen=True)
class FeedbackEvent:
    task_id: str
    action: FeedbackAction
    timestamp: datetime
    original_score: float
    category: TaskCategory
    hour_of_day: int


class RecurringFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"
    HOURLY = "hourly"
    TIMES_PER_DAY = "times_per_day"

    @property
    def is_intraday(self) -> bool:
        return self in (RecurringFrequency.HOURLY, RecurringFrequency.TIMES_PER_DAY)


DEFAULT_ACTIVE_START = time(8, 0)
DEFAULT_ACTIVE_END = time(20, 0)
DEFAULT_TIMES_PER_DAY = 3
DEFAULT_HOUR_INTERVAL = 2


class RecurrenceValidationError(ValueError):
    """A recurring rule that would misbehave at expansion time."""


@dataclass(slots=True, frozen=True)
class RecurringRule:
    """
    Declarative description of how a task repeats.

    Weekdays use Python numbering (Monday=0 .. Sunday=6). `anchor` fixes the
    phase of the rule (first day, time of day for day-based frequencies).
    Invalid combinations raise RecurrenceValidationError at construction.
    """

    frequency: RecurringFrequency
    anchor: datetime
    interval: int = 1
    days_of_week: frozenset[int] = frozenset()
    hour_interval: int | None = None
    times_per_day: int | None = None
    specific_times: tuple[time, ...] | None = None
    active_hours_start: time = DEFAULT_ACTIVE_START
    active_hours_end: time = DEFAULT_ACTIVE_END
    end_date: datetime | None = None

    def __post_init__(self) -> None:
        if self.interval < 1:
            raise RecurrenceValidationError(f"interval must be >= 1 (got {self.interval})")

        bad_days = [d for d in self.days_of_week if not 0 <= int(d) <= 6]
        if bad_days:
            raise RecurrenceValidationError(f"days_of_week out of range 0..6: {sorted(bad_days)}")

        if self.frequency == RecurringFrequency.HOURLY:
            if self.effective_hour_interval < 1:
                raise RecurrenceValidationError(
                    f"hour_interval must be >= 1 (got {self.hour_interval})"
                )

        if self.frequency == RecurringFrequency.TIMES_PER_DAY:
            count = self.effective_times_per_day
            if count < 2:
                raise RecurrenceValidationError(f"times_per_day must be >= 2 (got {count})")
            if self.specific_times is not None and len(self.specific_times) != count:
                raise RecurrenceValidationError(
                    f"specific_times has {len(self.specific_times)} entries "
                    f"but times_per_day is {count}"
                )
            if self.specific_times is not None and len(set(self.specific_times)) != len(self.specific_times):
                raise RecurrenceValidationError("specific_times contains duplicate times")

        if self.frequency.is_intraday and self.active_hours_start >= self.active_hours_end:
            raise RecurrenceValidationError(
                f"active hours window is empty: {self.active_hours_start}-{self.active_hours_end}"
            )

        if self.end_date is not None and self.end_date < self.anchor:
            raise RecurrenceValidationError("end_date is before the rule anchor")

    @property
    def effective_hour_interval(self) -> int:
        return DEFAULT_HOUR_INTERVAL if self.hour_interval is None else self.hour_interval

    @property
    def effective_times_per_day(self) -> int:
        if self.times_per_day is not None:
            return self.times_per_day
        if self.specific_times:
            return len(self.specific_times)
        return DEFAULT_TIMES_PER_DAY

    @property
    def is_intraday(self) -> bool:
        return self.frequency.is_intraday
