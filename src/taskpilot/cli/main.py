# src/taskpilot/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, runs feedback maintenance and then the
console REPL. A pending undoable delete is committed on exit.
"""

from __future__ import annotations

import logging

from ..cli.bootstrap import create_initial_state, run_maintenance
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..tasks.staging import NothingPendingError

logger = logging.getLogger(__name__)


def _shutdown(state: AppState) -> None:
    """Commit whatever is still staged; the grace timer will not outlive the process."""
    try:
        state.staging.commit_pending_changes()
        logger.info("Committed pending delete on exit.")
    except NothingPendingError:
        pass
    except Exception:
        logger.exception("Failed to commit pending delete on exit.")


def main() -> None:
    settings = get_settings()

    setup_logging(log_dir=settings.data_dir, app_name=settings.app_name, console_level=settings.log_level)
    logger.info("Starting %s...", settings.app_name)

    # Reuse the same settings object.
    state = create_initial_state(settings=settings)

    try:
        run_maintenance(state)
    except Exception:
        logger.exception("Feedback maintenance failed; continuing.")

    try:
        run_console_loop(state)
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
