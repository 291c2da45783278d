# src/taskpilot/llm/insight.py

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime

from ..core.ports import ChatMessage, LLMClient
from ..scheduling.models import Task, format_duration

logger = logging.getLogger(__name__)

INSIGHT_SYSTEM_PROMPT = (
    "You are a concise productivity assistant. "
    "Given one task, reply with a single short sentence (max 25 words) "
    "explaining why now is a good moment to work on it or how to get started. "
    "No greetings, no lists, no markdown."
)

MAX_INSIGHT_CHARS = 240


def describe_task_for_prompt(task: Task, now: datetime | None = None) -> str:
    now = now or datetime.now()
    lines = [f"Task: {task.title}"]
    lines.append(f"Priority: {task.priority.display_name}")
    lines.append(f"Category: {task.category.value}")
    if task.due_at is not None:
        state = "overdue" if task.is_overdue(now) else "due"
        lines.append(f"Due: {task.due_at:%Y-%m-%d %H:%M} ({state})")
    if task.estimated_duration is not None:
        lines.append(f"Estimated: {format_duration(task.estimated_duration)}")
    if task.notes:
        lines.append(f"Notes: {task.notes.strip()[:400]}")
    lines.append(f"Current time: {now:%Y-%m-%d %H:%M}")
    return "\n".join(lines)


class LLMInsightProvider:
    """
    AIInsightProvider backed by any LLMClient.

    The blocking stream runs in a worker thread; failures resolve to None.
    When the awaiting caller is cancelled (e.g. by a timeout) the worker stops
    reading at the next chunk and closes the stream.
    """

    def __init__(self, llm: LLMClient) -> None:
        self._llm = llm

    async def insight(self, task: Task) -> str | None:
        messages: list[ChatMessage] = [{"role": "user", "content": describe_task_for_prompt(task)}]
        stop = threading.Event()
        try:
            text = await asyncio.to_thread(self._collect, messages, stop)
        except Exception as e:
            logger.info("Insight unavailable task=%s: %s", task.id, e)
            return None
        finally:
            stop.set()

        text = " ".join(text.split())
        if not text:
            return None
        return text[:MAX_INSIGHT_CHARS]

    def _collect(self, messages: list[ChatMessage], stop: threading.Event) -> str:
        parts: list[str] = []
        chunks = self._llm.stream_chat(messages, INSIGHT_SYSTEM_PROMPT)
        try:
            for chunk in chunks:
                if stop.is_set():
                    logger.debug("Insight stream abandoned by the caller.")
                    break
                parts.append(chunk)
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
        return "".join(parts)
