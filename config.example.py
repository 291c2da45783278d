# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets; keep them in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "TASKPILOT_APP_NAME": "App display name (default: taskpilot).",
    "TASKPILOT_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "TASKPILOT_DATA_DIR": "Local data directory (default: .local/taskpilot).",
    "TASKPILOT_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    "TASKPILOT_FEEDBACK_DB_PATH": "Learned feedback SQLite path (default: <data_dir>/feedback.sqlite3).",
    "TASKPILOT_CALENDAR_PATH": "Calendar events JSON path (default: <data_dir>/calendar.json).",
    # Insight / OpenRouter
    "TASKPILOT_INSIGHTS_ENABLED": "Ask the LLM for suggestion insight (default: on when an API key is set).",
    "TASKPILOT_OPENROUTER_API_KEY": "OpenRouter API key (OPENROUTER_API_KEY is accepted too).",
    "TASKPILOT_OPENROUTER_BASE_URL": "OpenRouter base URL (default: https://openrouter.ai/api/v1).",
    "TASKPILOT_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "TASKPILOT_HTTP_REFERER": "Optional OpenRouter metadata header.",
    "TASKPILOT_APP_TITLE": "Optional OpenRouter metadata header title.",
    "TASKPILOT_INSIGHT_TIMEOUT_SECONDS": "Give up on insight after this many seconds (default: 8).",
    # Undo
    "TASKPILOT_UNDO_GRACE_SECONDS": "Seconds a deleted task can be restored with /undo (default: 5).",
    "TASKPILOT_PENDING_POLICY": "force_commit (default) or reject a new delete while one is pending.",
    # Scheduling tuning
    "TASKPILOT_FEEDBACK_ALPHA": "Smoothing factor for learned feedback, in (0, 1] (default: 0.3).",
    "TASKPILOT_DAY_START_HOUR": "Earliest hour reschedule options may use (default: 7).",
    "TASKPILOT_DAY_END_HOUR": "End of the working day for options and free time (default: 22).",
    "TASKPILOT_RESCHEDULE_BUFFER_MINUTES": "Gap left after a conflicting event (default: 15).",
}
