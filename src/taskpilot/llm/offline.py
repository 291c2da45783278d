# src/taskpilot/llm/offline.py

from __future__ import annotations

from collections.abc import Iterable

from ..core.ports import ChatMessage


class OfflineLLMClient:
    """
    Offline deterministic LLM client used when no external API is configured.

    Echoes a canned hint built from the task lines of the prompt, so insight
    enrichment still works end to end without network calls.
    """

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        fields: dict[str, str] = {}
        for line in user_text.splitlines():
            key, sep, value = line.partition(":")
            if sep:
                fields[key.strip().lower()] = value.strip()

        title = fields.get("task", "this task")
        if "(overdue)" in fields.get("due", ""):
            yield f'"{title}" is overdue; a short first step now clears it from your list.'
            return
        if "estimated" in fields:
            yield f'"{title}" takes about {fields["estimated"]}; start it while you have the time.'
            return
        yield f'Start "{title}" with the smallest concrete step.'
