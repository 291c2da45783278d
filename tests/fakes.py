# tests/fakes.py

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from taskpilot.core.ports import CalendarAccessError, ChatMessage
from taskpilot.scheduling.models import CalendarEvent, Task


class FakeLLMClient:
    """
    Deterministic LLM client for unit tests.

    - Captures calls for assertions
    - Yields a predefined text as a single chunk (or raises)
    """

    def __init__(self, next_text: str = "ok", error: Exception | None = None) -> None:
        self.next_text = next_text
        self.error = error
        self.calls: list[tuple[list[ChatMessage], str]] = []

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        self.calls.append((messages, system_prompt))
        if self.error is not None:
            raise self.error
        yield self.next_text


class SlowLLMClient:
    """Streams `chunks` words with a pause before each; records how far it got."""

    def __init__(self, chunks: int = 50, pause: float = 0.02) -> None:
        self.chunks = chunks
        self.pause = pause
        self.yielded = 0
        self.closed = threading.Event()

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        try:
            for i in range(self.chunks):
                time.sleep(self.pause)
                self.yielded += 1
                yield f"word{i} "
        finally:
            self.closed.set()


class FakeCalendar:
    """CalendarAccessProvider over a fixed event list; can simulate an access failure."""

    def __init__(self, events: list[CalendarEvent] | None = None, *, fail: bool = False) -> None:
        self.events = list(events or [])
        self.fail = fail
        self.calls: list[tuple[datetime, datetime]] = []

    def events_in_range(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        self.calls.append((start, end))
        if self.fail:
            raise CalendarAccessError("calendar permission denied")
        return [e for e in self.events if e.start < end and start < e.end]


class FakeInsightProvider:
    """AIInsightProvider with scripted behavior (text, delay, or exception)."""

    def __init__(
        self,
        text: str | None = "Good time for this.",
        *,
        delay: float = 0.0,
        error: BaseException | None = None,
    ) -> None:
        self.text = text
        self.delay = delay
        self.error = error
        self.calls: list[str] = []

    async def insight(self, task: Task) -> str | None:
        self.calls.append(task.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


class InMemoryTaskRepo:
    """
    In-memory TaskRepo used for scheduling unit tests.

    Soft-deleted tasks stay in the dict but are hidden, like the SQLite store.
    """

    def __init__(self, tasks: list[Task] | None = None) -> None:
        self.tasks: dict[str, Task] = {t.id: replace(t) for t in tasks or []}
        self.deleted: set[str] = set()
        self.updates: list[Task] = []

    def create(self, task: Task) -> Task:
        if task.id in self.tasks:
            raise ValueError(f"task id already exists: {task.id}")
        self.tasks[task.id] = replace(task)
        return task

    def get(self, task_id: str, *, include_deleted: bool = False) -> Task | None:
        t = self.tasks.get(task_id)
        if t is None or (task_id in self.deleted and not include_deleted):
            return None
        return replace(t)

    def update(self, task: Task) -> None:
        if task.id not in self.tasks or task.id in self.deleted:
            raise ValueError(f"unknown task id: {task.id}")
        self.tasks[task.id] = replace(task)
        self.updates.append(task)

    def delete(self, task_ids: Iterable[str], *, allow_undo: bool = False) -> None:
        for task_id in task_ids:
            if allow_undo:
                self.deleted.add(task_id)
            else:
                self.tasks.pop(task_id, None)
                self.deleted.discard(task_id)

    def restore(self, tasks: Iterable[Task]) -> None:
        for t in tasks:
            self.tasks[t.id] = replace(t)
            self.deleted.discard(t.id)

    def list_current(self) -> list[Task]:
        return [replace(t) for tid, t in self.tasks.items() if tid not in self.deleted]

    def list_subtasks(self, parent_id: str, *, include_deleted: bool = False) -> list[Task]:
        return [
            replace(t)
            for tid, t in self.tasks.items()
            if t.parent_id == parent_id and (include_deleted or tid not in self.deleted)
        ]
