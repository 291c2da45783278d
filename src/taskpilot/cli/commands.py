# src/taskpilot/cli/commands.py

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import re
import uuid
from collections.abc import Callable
from datetime import datetime, time, timedelta
from typing import cast

from ..core.ports import CalendarAccessError
from ..core.state import AppState
from ..scheduling.models import (
    CalendarEvent,
    FeedbackAction,
    Priority,
    RecurrenceValidationError,
    RecurringFrequency,
    RecurringRule,
    Task,
    TaskCategory,
    TaskStatus,
    at_time,
    day_start,
    format_duration,
)
from ..scheduling.recurrence import compact_label, describe, next_occurrence, next_occurrences
from ..tasks.staging import NothingPendingError, PendingMutationError

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, /next, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, emit: CommandEmitter | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        nparams = len(inspect.signature(handler).parameters)
        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- parsing helpers ----

_DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m?)?$")


def parse_when(raw: str, now: datetime) -> datetime:
    """ISO datetime, or HH:MM today."""
    raw = raw.strip()
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        pass
    try:
        clock = time.fromisoformat(raw)
    except ValueError as e:
        raise ValueError(f"bad time: {raw!r} (use HH:MM or YYYY-MM-DDTHH:MM)") from e
    return at_time(now, clock)


def parse_duration(raw: str) -> timedelta:
    """'45', '45m', '2h', '1h30m'."""
    m = _DURATION_RE.match(raw.strip().lower())
    if not m or not any(m.groups()):
        raise ValueError(f"bad duration: {raw!r} (use 45m, 2h or 1h30m)")
    hours = int(m.group(1) or 0)
    minutes = int(m.group(2) or 0)
    return timedelta(hours=hours, minutes=minutes)


def parse_task_tokens(args: list[str], now: datetime) -> Task:
    """
    /add Title words @14:00 ~45m !high #work

    @when, ~duration, !priority and #category may appear anywhere.
    """
    title_words: list[str] = []
    due_at: datetime | None = None
    duration: timedelta | None = None
    priority = Priority.NONE
    category = TaskCategory.UNCATEGORIZED

    for tok in args:
        if tok.startswith("@") and len(tok) > 1:
            due_at = parse_when(tok[1:], now)
        elif tok.startswith("~") and len(tok) > 1:
            duration = parse_duration(tok[1:])
        elif tok.startswith("!") and len(tok) > 1:
            priority = Priority.from_db(tok[1:])
        elif tok.startswith("#") and len(tok) > 1:
            category = TaskCategory.from_db(tok[1:].lower())
        else:
            title_words.append(tok)

    return Task(
        id=uuid.uuid4().hex,
        title=" ".join(title_words),
        due_at=due_at,
        estimated_duration=duration,
        priority=priority,
        category=category,
        created_at=now,
        updated_at=now,
    )


def _pick(items: list, raw: str, what: str):
    try:
        idx = int(raw)
    except ValueError as e:
        raise ValueError(f"{what} number expected, got {raw!r}") from e
    if not 1 <= idx <= len(items):
        raise ValueError(f"no {what} #{idx} (have {len(items)})")
    return items[idx - 1]


def _resolve_task(state: AppState, ref: str) -> Task:
    """Task by number from the last /list, or by id prefix."""
    if ref.isdigit() and state.last_listed:
        listed = _pick(state.last_listed, ref, "task")
        fresh = state.task_store.get(listed.id)
        if fresh is None:
            raise ValueError(f"task #{ref} no longer exists")
        return fresh

    matches = [t for t in state.task_store.list_current() if t.id.startswith(ref)]
    if len(matches) != 1:
        raise ValueError(f"task {ref!r} not found (use /list first)")
    return matches[0]


def _fmt_task(task: Task) -> str:
    bits = [task.title]
    if task.due_at is not None:
        bits.append(f"@{task.due_at:%Y-%m-%d %H:%M}")
    if task.estimated_duration is not None:
        bits.append(f"~{format_duration(task.estimated_duration)}")
    if task.priority != Priority.NONE:
        bits.append(f"!{task.priority.name.lower()}")
    if task.category != TaskCategory.UNCATEGORIZED:
        bits.append(f"#{task.category.value}")
    if task.recurring_rule is not None:
        bits.append(f"({compact_label(task.recurring_rule)})")
    if task.is_completed:
        bits.append("[done]")
    return " ".join(bits)


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    s = state.settings
    pending = state.staging.pending
    pending_s = f"delete of {pending.task_id} (undo with /undo)" if pending else "none"
    return (
        "Status:\n"
        f"  Tasks: {len(state.task_store.list_current())}\n"
        f"  Working day: {s.day_start_hour:02d}:00-{s.day_end_hour:02d}:00\n"
        f"  Pending change: {pending_s}\n"
        f"  Insights: {'ON' if s.insights_enabled else 'offline'}"
    )


def cmd_add(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /add Title words [@HH:MM|@YYYY-MM-DDTHH:MM] [~45m] [!low|!medium|!high] [#category]"
    try:
        task = parse_task_tokens(args, state.clock())
        task = state.task_store.create(task)
    except ValueError as e:
        return f"Cannot add task: {e}"

    reply = f"Added: {_fmt_task(task)}"
    if task.interval is not None:
        conflicts = [
            c
            for c in state.detector.scan_for_conflicts(state.task_store.list_current())
            if task.id in (c.task.id, c.other_task.id if c.other_task else None)
        ]
        if conflicts:
            reply += f"\n  Warning: {len(conflicts)} conflict(s). See /conflicts."
    return reply


def cmd_list(state: AppState, args: list[str]) -> str:
    show_all = bool(args and args[0].lower() == "all")
    tasks = [
        t
        for t in state.task_store.list_current()
        if show_all or (not t.is_completed and not t.is_archived)
    ]
    state.last_listed = tasks
    if not tasks:
        return "No tasks."
    lines = ["Tasks:"]
    for i, t in enumerate(tasks, start=1):
        prefix = "    " if t.is_subtask else ""
        lines.append(f"  {i}. {prefix}{_fmt_task(t)}")
    return "\n".join(lines)


def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <task>"
    try:
        task = _resolve_task(state, args[0])
    except ValueError as e:
        return str(e)
    if task.is_completed:
        return f"Already completed: {task.title}"
    now = state.clock()
    state.task_store.update(
        dataclasses.replace(task, status=TaskStatus.COMPLETED, completed_at=now, updated_at=now)
    )
    reply = f"Completed: {task.title}"

    rule = task.recurring_rule
    if rule is not None:
        due = next_occurrence(rule, task.due_at or now)
        if due is None:
            return reply + " (series ended)"
        follow_up = state.task_store.create(
            dataclasses.replace(
                task,
                id="",
                due_at=due,
                status=TaskStatus.PENDING,
                completed_at=None,
                worked_duration=timedelta(0),
                created_at=now,
                updated_at=now,
            )
        )
        reply += f"\nNext: {_fmt_task(follow_up)}"
    return reply


def cmd_conflicts(state: AppState, args: list[str]) -> str:
    tasks = state.task_store.list_current()
    conflicts = state.detector.scan_for_conflicts(tasks)
    state.last_conflicts = conflicts
    state.last_batch = None
    if not conflicts:
        return "No conflicts."
    lines = [f"Conflicts ({len(conflicts)}):"]
    for i, c in enumerate(conflicts, start=1):
        lines.append(
            f"  {i}. [{c.severity.display_name}] {c.task.title}: {c.description}"
            f" at {c.conflict_time:%H:%M} ({c.formatted_overlap})"
        )
    lines.append("Use /resched <n> for options or /resolve to fix all.")
    return "\n".join(lines)


def cmd_resched(state: AppState, args: list[str]) -> str:
    """
    /resched <n>        -> show options for conflict n
    /resched <n> <k>    -> apply option k
    """
    if not args:
        return "Usage: /resched <conflict> [option]"
    try:
        conflict = _pick(state.last_conflicts, args[0], "conflict")
    except ValueError as e:
        return f"{e}. Run /conflicts first."

    tasks = state.task_store.list_current()
    suggestion = state.suggester.suggest_reschedule(
        conflict,
        tasks=tasks,
        events=_calendar_events(state, conflict),
    )

    if len(args) >= 2:
        try:
            option = _pick(list(suggestion.options), args[1], "option")
        except ValueError as e:
            return str(e)
        try:
            state.suggester.apply_reschedule(option, conflict.task)
        except ValueError as e:
            state.last_conflicts = []
            return f"Cannot reschedule: {e}. Run /conflicts again."
        state.last_conflicts = []
        return f"Moved {conflict.task.title!r} to {option.start:%Y-%m-%d %H:%M}."

    if not suggestion.options:
        return f"No reschedule options for {conflict.task.title!r}."
    lines = [f"Options for {conflict.task.title!r} (urgency: {suggestion.urgency.value}):"]
    for i, opt in enumerate(suggestion.options, start=1):
        star = " *" if opt is suggestion.recommended_option else ""
        lines.append(f"  {i}. {opt.start:%a %H:%M} - {opt.reason} (score {opt.score:.0f}){star}")
    return "\n".join(lines)


def _calendar_events(state: AppState, conflict) -> list[CalendarEvent]:
    iv = conflict.task.interval
    if iv is None:
        return []
    start = day_start(iv.start)
    try:
        return state.calendar.events_in_range(start, start + timedelta(days=2))
    except CalendarAccessError as e:
        logger.warning("Calendar unavailable for reschedule: %s", e)
        return []


def cmd_resolve(state: AppState, args: list[str]) -> str:
    """
    /resolve        -> plan a batch resolution for all conflicts
    /resolve apply  -> apply the planned batch
    """
    if args and args[0].lower() == "apply":
        batch = state.last_batch
        if batch is None:
            return "Nothing planned. Run /resolve first."
        planned = {s.conflict.task.id for s, o in zip(batch.suggestions, batch.accepted) if o is not None}
        moved = state.suggester.apply_batch(batch)
        state.last_batch = None
        state.last_conflicts = []
        reply = f"Rescheduled {len(moved)} task(s)."
        skipped = len(planned) - len(moved)
        if skipped:
            reply += f" Skipped {skipped} task(s) changed since the plan."
        return reply

    tasks = state.task_store.list_current()
    conflicts = state.detector.scan_for_conflicts(tasks)
    state.last_conflicts = conflicts
    if not conflicts:
        state.last_batch = None
        return "No conflicts."

    events: list[CalendarEvent] = []
    for c in conflicts:
        for e in _calendar_events(state, c):
            if e not in events:
                events.append(e)

    batch = state.suggester.suggest_batch_reschedule(conflicts, tasks=tasks, events=events)
    state.last_batch = batch
    lines = [f"Plan: {batch.resolved_count}/{batch.total_conflicts} conflict(s) resolvable"]
    for suggestion, option in zip(batch.suggestions, batch.accepted):
        title = suggestion.conflict.task.title
        if option is None:
            lines.append(f"  - {title}: no free slot found")
        else:
            lines.append(f"  - {title} -> {option.start:%a %H:%M} ({option.reason})")
    if batch.can_auto_resolve:
        lines.append("Use /resolve apply to reschedule.")
    else:
        lines.append("Some conflicts need manual attention; /resolve apply moves the rest.")
    return "\n".join(lines)


def cmd_next(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /next       -> top three suggestions
    /next why   -> same, with LLM insight (may take a few seconds)
    """
    suggestions = state.engine.get_top_three_suggestions()
    if args and args[0].lower() == "why" and suggestions:
        if emit:
            emit("[INSIGHT] Asking for insight...")
        suggestions = asyncio.run(state.engine.with_insights(suggestions))
    state.last_suggestions = suggestions

    if not suggestions:
        return "Nothing to suggest. Add tasks with /add."
    lines = ["Suggested next:"]
    for i, s in enumerate(suggestions, start=1):
        reasons = "; ".join(s.reasons) if s.reasons else "no strong signal"
        lines.append(f"  {i}. {s.task.title} [{s.confidence.display_name}, {s.score:.0f}] - {reasons}")
        if s.insight:
            lines.append(f"     {s.insight}")
    lines.append("React with /fb <n> start|view|snooze|evening|tomorrow|skip|wrongtime|focus")
    return "\n".join(lines)


_FEEDBACK_ALIASES: dict[str, FeedbackAction] = {
    "start": FeedbackAction.STARTED_IMMEDIATELY,
    "view": FeedbackAction.VIEWED_DETAILS,
    "snooze": FeedbackAction.SNOOZED_1_HOUR,
    "evening": FeedbackAction.SNOOZED_EVENING,
    "tomorrow": FeedbackAction.SNOOZED_TOMORROW,
    "skip": FeedbackAction.SKIPPED_NOT_RELEVANT,
    "wrongtime": FeedbackAction.SKIPPED_WRONG_TIME,
    "focus": FeedbackAction.SKIPPED_NEEDS_FOCUS,
}


def cmd_feedback(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /fb <suggestion> " + "|".join(_FEEDBACK_ALIASES)
    try:
        suggestion = _pick(state.last_suggestions, args[0], "suggestion")
    except ValueError as e:
        return f"{e}. Run /next first."

    key = args[1].lower()
    action = _FEEDBACK_ALIASES.get(key)
    if action is None:
        try:
            action = FeedbackAction(key)
        except ValueError:
            return f"Unknown reaction {key!r}. Use one of: {', '.join(_FEEDBACK_ALIASES)}"

    task = state.task_store.get(suggestion.task.id)
    if task is None:
        return f"{suggestion.task.title!r} no longer exists. Run /next again."

    state.learner.record_suggestion_feedback(task, action, suggestion.score)
    if action == FeedbackAction.STARTED_IMMEDIATELY and not task.is_completed:
        now = state.clock()
        state.task_store.update(dataclasses.replace(task, status=TaskStatus.IN_PROGRESS, updated_at=now))
    if action.is_snooze:
        until = state.learner.snoozed_until(task.id)
        when = f" until {until:%a %H:%M}" if until else ""
        return f"Snoozed {task.title!r}{when}."
    return f"Noted: {action.value} for {task.title!r}."


def cmd_delete(state: AppState, args: list[str]) -> str:
    """
    /delete <task>       -> delete with undo window
    /delete <task> now   -> delete immediately
    """
    if not args:
        return "Usage: /delete <task> [now]"
    try:
        task = _resolve_task(state, args[0])
    except ValueError as e:
        return str(e)

    allow_undo = not (len(args) > 1 and args[1].lower() == "now")
    try:
        staged = state.staging.delete_task(task, allow_undo=allow_undo)
    except PendingMutationError as e:
        return f"{e}. Use /undo or /commit first."

    state.last_listed = []
    if staged is None:
        return f"Deleted {task.title!r}."
    extra = f" and {len(staged.task_ids) - 1} subtask(s)" if len(staged.task_ids) > 1 else ""
    return f"Deleted {task.title!r}{extra}. Use /undo within {state.settings.undo_grace_seconds:.0f}s."


def cmd_undo(state: AppState, args: list[str]) -> str:
    try:
        state.staging.discard_pending_changes()
    except NothingPendingError:
        return "Nothing to undo."
    state.last_listed = []
    return "Restored."


def cmd_commit(state: AppState, args: list[str]) -> str:
    try:
        state.staging.commit_pending_changes()
    except NothingPendingError:
        return "Nothing pending."
    return "Committed."


def cmd_repeat(state: AppState, args: list[str]) -> str:
    """
    /repeat <task> daily|weekly|biweekly|monthly|yearly|custom [every N]
    /repeat <task> weekly mon,wed,fri
    /repeat <task> hourly [N]
    /repeat <task> times_per_day [N]
    /repeat <task> off
    """
    if len(args) < 2:
        return "Usage: /repeat <task> <frequency> [N | mon,wed,...] | /repeat <task> off"
    try:
        task = _resolve_task(state, args[0])
    except ValueError as e:
        return str(e)

    now = state.clock()
    if args[1].lower() == "off":
        state.task_store.update(dataclasses.replace(task, recurring_rule=None, updated_at=now))
        return f"{task.title!r} no longer repeats."

    try:
        rule = _parse_rule(task, args[1:], now)
    except (ValueError, RecurrenceValidationError) as e:
        return f"Cannot set repeat: {e}"

    state.task_store.update(dataclasses.replace(task, recurring_rule=rule, updated_at=now))
    return f"{task.title!r} repeats {describe(rule)}."


_WEEKDAYS = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}


def _parse_rule(task: Task, args: list[str], now: datetime) -> RecurringRule:
    try:
        frequency = RecurringFrequency(args[0].lower())
    except ValueError as e:
        options = ", ".join(f.value for f in RecurringFrequency)
        raise ValueError(f"unknown frequency {args[0]!r} (use {options})") from e

    anchor = task.due_at or now
    rest = args[1:]
    if rest and rest[0].lower() == "every":
        rest = rest[1:]

    kwargs: dict = {}
    if rest:
        arg = rest[0].lower()
        if frequency == RecurringFrequency.WEEKLY and not arg.isdigit():
            try:
                kwargs["days_of_week"] = frozenset(_WEEKDAYS[d[:3]] for d in arg.split(","))
            except KeyError as e:
                raise ValueError(f"bad weekday list {arg!r}") from e
        elif frequency == RecurringFrequency.HOURLY:
            kwargs["hour_interval"] = int(arg)
        elif frequency == RecurringFrequency.TIMES_PER_DAY:
            kwargs["times_per_day"] = int(arg)
        else:
            kwargs["interval"] = int(arg)

    return RecurringRule(frequency=frequency, anchor=anchor, **kwargs)


def cmd_upcoming(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /upcoming <task> [count]"
    try:
        task = _resolve_task(state, args[0])
        count = int(args[1]) if len(args) > 1 else 5
    except ValueError as e:
        return str(e)
    if task.recurring_rule is None:
        return f"{task.title!r} does not repeat. Use /repeat first."

    now = state.clock()
    times = next_occurrences(task.recurring_rule, now)[: max(1, count)]
    if not times:
        return f"No upcoming occurrences for {task.title!r}."
    lines = [f"Next {task.title!r} ({describe(task.recurring_rule)}):"]
    lines.extend(f"  - {t:%a %Y-%m-%d %H:%M}" for t in times)
    return "\n".join(lines)


def cmd_event(state: AppState, args: list[str]) -> str:
    """
    /event add <start> <end> Title words
    /event rm <id>
    /event list
    """
    if not args:
        return "Usage: /event add <start> <end> Title | /event rm <id> | /event list"

    sub = args[0].lower()
    now = state.clock()

    if sub == "add":
        if len(args) < 4:
            return "Usage: /event add <start> <end> Title words"
        try:
            start = parse_when(args[1], now)
            end = parse_when(args[2], start)
        except ValueError as e:
            return str(e)
        if end <= start:
            return "Event must end after it starts."
        event = CalendarEvent(id=uuid.uuid4().hex[:8], title=" ".join(args[3:]), start=start, end=end)
        state.calendar.add_event(event)
        clashes = state.detector.detect_conflicts_for_event(event, state.task_store.list_current())
        reply = f"Event {event.id} added: {event.title} {start:%H:%M}-{end:%H:%M}"
        if clashes:
            reply += f"\n  Warning: clashes with {len(clashes)} task(s). See /conflicts."
        return reply

    if sub in ("rm", "remove", "del"):
        if len(args) < 2:
            return "Usage: /event rm <id>"
        return "Removed." if state.calendar.remove_event(args[1]) else f"No event {args[1]!r}."

    if sub == "list":
        start = day_start(now)
        events = state.calendar.events_in_range(start, start + timedelta(days=7))
        if not events:
            return "No events in the next 7 days."
        lines = ["Events:"]
        lines.extend(f"  {e.id}: {e.start:%a %H:%M}-{e.end:%H:%M} {e.title}" for e in events)
        return "\n".join(lines)

    return "Usage: /event add <start> <end> Title | /event rm <id> | /event list"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show task count, working day and pending changes.")
registry.register("add", cmd_add, help_text="Add a task: /add Title @14:00 ~45m !high #work.")
registry.register("list", cmd_list, help_text="List open tasks (/list all includes completed).", aliases=["ls"])
registry.register("done", cmd_done, help_text="Mark a task completed: /done <n>.")
registry.register("conflicts", cmd_conflicts, help_text="Scan tasks and calendar for overlaps.")
registry.register("resched", cmd_resched, help_text="Reschedule options: /resched <n> [option].")
registry.register("resolve", cmd_resolve, help_text="Plan/apply a batch fix: /resolve | /resolve apply.")
registry.register("next", cmd_next, help_text="What to do next: /next | /next why.")
registry.register("fb", cmd_feedback, help_text="React to a suggestion: /fb <n> start|skip|snooze|...")
registry.register("delete", cmd_delete, help_text="Delete a task (undoable): /delete <n> [now].", aliases=["rm"])
registry.register("undo", cmd_undo, help_text="Undo the pending delete.")
registry.register("commit", cmd_commit, help_text="Commit the pending delete now.")
registry.register("repeat", cmd_repeat, help_text="Make a task repeat: /repeat <n> weekly mon,wed.")
registry.register("upcoming", cmd_upcoming, help_text="Show next occurrences: /upcoming <n> [count].")
registry.register("event", cmd_event, help_text="Calendar events: /event add|rm|list.")
