# tests/conftest.py

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskpilot.cli.bootstrap import create_initial_state
from taskpilot.core.state import AppState

from .fakes import FakeInsightProvider

# Monday morning; every test that needs "now" uses this instant.
NOW = datetime(2025, 3, 3, 10, 0)


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskpilot-test",
        log_level="DEBUG",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        feedback_db_path=tmp_path / "feedback.sqlite3",
        calendar_path=tmp_path / "calendar.json",
        # Insight
        insights_enabled=False,
        insight_timeout_seconds=1.0,
        # Staging
        undo_grace_seconds=60.0,
        pending_policy="force_commit",
        # Scheduling
        feedback_alpha=0.3,
        day_start_hour=7,
        day_end_hour=22,
        reschedule_buffer_minutes=15,
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> Iterator[AppState]:
    """
    AppState wired with a fixed clock and a fake insight provider.

    Real SQLite stores are kept here because their correctness is part of
    what we want to test.
    """
    st = create_initial_state(
        settings=settings,
        insight_provider=FakeInsightProvider("Start with the first paragraph."),
        clock=lambda: NOW,
    )
    yield st
    # Do not leave a grace timer running past the test.
    if st.staging.has_pending():
        st.staging.discard_pending_changes()
