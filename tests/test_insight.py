# tests/test_insight.py

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import httpx
import pytest

from taskpilot.llm.client import OpenRouterLLMClient, friendly_llm_error_message
from taskpilot.llm.insight import (
    INSIGHT_SYSTEM_PROMPT,
    MAX_INSIGHT_CHARS,
    LLMInsightProvider,
    describe_task_for_prompt,
)
from taskpilot.llm.offline import OfflineLLMClient
from taskpilot.scheduling.models import Priority, Task, TaskCategory

from .fakes import FakeLLMClient, SlowLLMClient

NOW = datetime(2025, 3, 3, 10, 0)


def _task(**kw) -> Task:
    return Task(id="t1", title="File taxes", created_at=NOW, updated_at=NOW, **kw)


def test_prompt_describes_the_task() -> None:
    task = _task(
        due_at=NOW - timedelta(days=1),
        estimated_duration=timedelta(minutes=90),
        priority=Priority.HIGH,
        category=TaskCategory.FINANCE,
        notes="  receipts in the blue folder  ",
    )

    prompt = describe_task_for_prompt(task, NOW)

    assert prompt.splitlines() == [
        "Task: File taxes",
        "Priority: High",
        "Category: finance",
        "Due: 2025-03-02 10:00 (overdue)",
        "Estimated: 1h 30m",
        "Notes: receipts in the blue folder",
        "Current time: 2025-03-03 10:00",
    ]


@pytest.mark.asyncio
async def test_provider_collects_and_normalizes_stream() -> None:
    llm = FakeLLMClient("  Start   with\nthe receipts.  ")
    provider = LLMInsightProvider(llm)

    text = await provider.insight(_task())

    assert text == "Start with the receipts."
    ((messages, system_prompt),) = llm.calls
    assert system_prompt == INSIGHT_SYSTEM_PROMPT
    assert messages[0]["role"] == "user"
    assert "Task: File taxes" in messages[0]["content"]


@pytest.mark.asyncio
async def test_provider_truncates_long_answers() -> None:
    provider = LLMInsightProvider(FakeLLMClient("word " * 200))
    text = await provider.insight(_task())
    assert text is not None
    assert len(text) == MAX_INSIGHT_CHARS


@pytest.mark.asyncio
async def test_provider_returns_none_on_llm_failure_or_empty_output() -> None:
    failing = LLMInsightProvider(FakeLLMClient(error=RuntimeError("All LLM models failed.")))
    assert await failing.insight(_task()) is None

    empty = LLMInsightProvider(FakeLLMClient("   "))
    assert await empty.insight(_task()) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        httpx.ReadError("connection reset mid-stream"),
        ValueError("malformed chunk"),
    ],
)
async def test_provider_returns_none_on_any_stream_error(error) -> None:
    provider = LLMInsightProvider(FakeLLMClient(error=error))
    assert await provider.insight(_task()) is None


@pytest.mark.asyncio
async def test_timed_out_insight_stops_reading_the_stream() -> None:
    llm = SlowLLMClient(chunks=50, pause=0.02)
    provider = LLMInsightProvider(llm)

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(provider.insight(_task()), timeout=0.05)

    assert await asyncio.to_thread(llm.closed.wait, 5.0)
    assert llm.yielded < llm.chunks


@pytest.mark.asyncio
async def test_offline_client_gives_deterministic_hints() -> None:
    provider = LLMInsightProvider(OfflineLLMClient())

    overdue = await provider.insight(_task(due_at=datetime(2020, 1, 1, 9, 0)))
    assert overdue == '"File taxes" is overdue; a short first step now clears it from your list.'

    sized = await provider.insight(_task(estimated_duration=timedelta(minutes=45)))
    assert sized == '"File taxes" takes about 45m; start it while you have the time.'

    plain = await provider.insight(_task())
    assert plain == 'Start "File taxes" with the smallest concrete step.'


def _llm_settings(**overrides) -> SimpleNamespace:
    base = dict(
        openrouter_api_key="sk-test",
        openrouter_base_url="https://openrouter.ai/api/v1",
        llm_models=["model-a"],
        extra_headers={"X-Title": "taskpilot-test"},
    )
    base.update(overrides)
    return SimpleNamespace(**base)


@pytest.mark.parametrize(
    "overrides",
    [
        {"openrouter_api_key": None},
        {"openrouter_api_key": "   "},
        {"openrouter_base_url": ""},
        {"llm_models": ["  "]},
    ],
)
def test_openrouter_client_requires_configuration(overrides) -> None:
    with pytest.raises(RuntimeError):
        OpenRouterLLMClient(_llm_settings(**overrides))


def test_friendly_error_messages() -> None:
    assert "missing API key" in friendly_llm_error_message(RuntimeError("LLM API key is not set."))
    assert "no models" in friendly_llm_error_message(RuntimeError("LLM model list is empty."))
    assert friendly_llm_error_message(RuntimeError("")) == "LLM error."
