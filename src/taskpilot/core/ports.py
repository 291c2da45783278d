# src/taskpilot/core/ports.py

"""
Ports (interfaces) used by the scheduling core.

The core depends on Protocols instead of concrete implementations.
This keeps the task store, calendar source, feedback persistence and insight
provider swappable and makes testing easier.
"""

from __future__ import annotations

from collections.abc import Awaitable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..scheduling.models import CalendarEvent, Task

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.


class CalendarAccessError(RuntimeError):
    """Calendar could not be read (permission denied, fetch failure...)."""


class CalendarAccessProvider(Protocol):
    """
    Read-only calendar source.

    May raise CalendarAccessError; callers treat that as "no calendar coverage"
    rather than a fatal error.
    """

    def events_in_range(self, start: datetime, end: datetime) -> list[CalendarEvent]: ...


class TaskRepo(Protocol):
    """Backing store for tasks; the single source of truth."""

    def create(self, task: Task) -> Task: ...
    def get(self, task_id: str, *, include_deleted: bool = False) -> Task | None: ...
    def update(self, task: Task) -> None: ...

    # allow_undo=True hides the rows (soft delete) without removing them.
    def delete(self, task_ids: Iterable[str], *, allow_undo: bool = False) -> None: ...
    def restore(self, tasks: Iterable[Task]) -> None: ...

    def list_current(self) -> list[Task]: ...
    def list_subtasks(self, parent_id: str, *, include_deleted: bool = False) -> list[Task]: ...


class AIInsightProvider(Protocol):
    """
    Optional explanatory text for a suggested task.

    Implementations must support cancellation and must resolve failures to None
    instead of raising.
    """

    def insight(self, task: Task) -> Awaitable[str | None]: ...


class LLMClient(Protocol):
    """Streaming chat completion client (OpenAI/OpenRouter-compatible)."""

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]: ...


class BiasRepo(Protocol):
    """Key/value persistence for the feedback learner."""

    def get(self, key: str) -> float | None: ...
    def set(self, key: str, value: float) -> None: ...
    def delete(self, key: str) -> None: ...
    def items(self, prefix: str = "") -> list[tuple[str, float]]: ...
