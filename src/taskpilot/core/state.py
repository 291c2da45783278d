# src/taskpilot/core/state.py

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..connectors.json_calendar import JsonCalendar
from ..scheduling.conflicts import ConflictDetector
from ..scheduling.feedback import FeedbackLearner
from ..scheduling.models import BatchRescheduleSuggestion, Conflict, Task, TaskSuggestion
from ..scheduling.prioritization import PrioritizationEngine
from ..scheduling.reschedule import RescheduleSuggester
from ..tasks.staging import MutationStaging
from .ports import TaskRepo


@dataclass
class AppState:
    """
    Runtime container shared by the CLI and the command handlers.

    Built once by cli.bootstrap.create_initial_state().
    """

    settings: Any
    task_store: TaskRepo
    calendar: JsonCalendar
    learner: FeedbackLearner
    detector: ConflictDetector
    suggester: RescheduleSuggester
    engine: PrioritizationEngine
    staging: MutationStaging
    clock: Callable[[], datetime] = datetime.now

    # Last results shown to the user, so commands can refer to them by number.
    last_conflicts: list[Conflict] = field(default_factory=list)
    last_batch: BatchRescheduleSuggestion | None = None
    last_listed: list[Task] = field(default_factory=list)
    last_suggestions: list[TaskSuggestion] = field(default_factory=list)

    lock: threading.RLock = field(default_factory=threading.RLock)
