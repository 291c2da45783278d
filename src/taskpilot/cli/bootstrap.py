# src/taskpilot/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState
  (task store, calendar, feedback learner, scheduling components, insight provider).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from ..config import get_settings
from ..connectors.json_calendar import JsonCalendar
from ..core.ports import AIInsightProvider, LLMClient
from ..core.state import AppState
from ..llm.client import OpenRouterLLMClient
from ..llm.insight import LLMInsightProvider
from ..llm.offline import OfflineLLMClient
from ..scheduling.conflicts import ConflictDetector
from ..scheduling.feedback import FeedbackLearner
from ..scheduling.feedback_store import SqliteBiasRepo
from ..scheduling.prioritization import PrioritizationEngine
from ..scheduling.reschedule import RescheduleSuggester
from ..tasks.staging import MutationStaging
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.feedback_db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_insight_provider(settings) -> AIInsightProvider:
    llm: LLMClient
    if not getattr(settings, "insights_enabled", False):
        return LLMInsightProvider(OfflineLLMClient())
    try:
        llm = OpenRouterLLMClient(settings)
    except RuntimeError as e:
        # Fallback for demos / local runs without external services.
        logger.info("Insights offline: %s", e)
        llm = OfflineLLMClient()
    return LLMInsightProvider(llm)


def create_initial_state(
    *,
    settings=None,
    insight_provider: AIInsightProvider | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    task_store = TaskStore(settings.tasks_db_path)
    calendar = JsonCalendar(settings.calendar_path)
    learner = FeedbackLearner(
        SqliteBiasRepo(settings.feedback_db_path),
        alpha=settings.feedback_alpha,
        clock=clock,
    )

    if insight_provider is None:
        insight_provider = _build_insight_provider(settings)

    engine = PrioritizationEngine(
        task_store,
        learner,
        calendar=calendar,
        insight_provider=insight_provider,
        day_end_hour=settings.day_end_hour,
        insight_timeout=settings.insight_timeout_seconds,
        clock=clock,
    )
    suggester = RescheduleSuggester(
        task_store,
        day_start_hour=settings.day_start_hour,
        day_end_hour=settings.day_end_hour,
        buffer=timedelta(minutes=settings.reschedule_buffer_minutes),
        clock=clock,
    )
    staging = MutationStaging(
        task_store,
        grace_seconds=settings.undo_grace_seconds,
        pending_policy=settings.pending_policy,
    )

    return AppState(
        settings=settings,
        task_store=task_store,
        calendar=calendar,
        learner=learner,
        detector=ConflictDetector(calendar),
        suggester=suggester,
        engine=engine,
        staging=staging,
        clock=clock,
    )


def run_maintenance(state: AppState, *, now: datetime | None = None) -> None:
    """Startup housekeeping for learned feedback state."""
    learner = state.learner
    learner.apply_decay_if_needed(now)
    expired = learner.clean_expired_snoozes(now)
    pruned = learner.prune_deleted_tasks(t.id for t in state.task_store.list_current())
    logger.debug("Feedback maintenance: expired_snoozes=%d pruned=%d", expired, pruned)
