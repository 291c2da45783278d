# src/taskpilot/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKPILOT"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    feedback_db_path: Path
    calendar_path: Path

    # ---- LLM insight / OpenRouter ----
    insights_enabled: bool
    openrouter_api_key: str | None
    openrouter_base_url: str
    llm_models: list[str]
    extra_headers: dict[str, str]
    insight_timeout_seconds: float

    # ---- Mutation staging ----
    undo_grace_seconds: float
    pending_policy: str

    # ---- Scheduling tuning ----
    feedback_alpha: float
    day_start_hour: int
    day_end_hour: int
    reschedule_buffer_minutes: int

    @staticmethod
    def from_env() -> Settings:
        app_name = _env(_k("APP_NAME"), "taskpilot")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskpilot"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        feedback_db_path = _env_path(_k("FEEDBACK_DB_PATH"), data_dir / "feedback.sqlite3")
        calendar_path = _env_path(_k("CALENDAR_PATH"), data_dir / "calendar.json")

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")
        insights_enabled = _env_bool(_k("INSIGHTS_ENABLED"), bool(openrouter_api_key))

        extra_headers = {
            "HTTP-Referer": _env(_k("HTTP_REFERER"), "https://example.com"),
            "X-Title": _env(_k("APP_TITLE"), app_name),
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "qwen/qwen-2.5-72b-instruct:free",
                "deepseek/deepseek-chat-v3-0324:free",
            ],
        )

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            feedback_db_path=feedback_db_path,
            calendar_path=calendar_path,
            insights_enabled=insights_enabled,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            insight_timeout_seconds=_env_float(_k("INSIGHT_TIMEOUT_SECONDS"), 8.0),
            undo_grace_seconds=_env_float(_k("UNDO_GRACE_SECONDS"), 5.0),
            pending_policy=_env(_k("PENDING_POLICY"), "force_commit").strip().lower(),
            feedback_alpha=_env_float(_k("FEEDBACK_ALPHA"), 0.3),
            day_start_hour=_env_int(_k("DAY_START_HOUR"), 7),
            day_end_hour=_env_int(_k("DAY_END_HOUR"), 22),
            reschedule_buffer_minutes=_env_int(_k("RESCHEDULE_BUFFER_MINUTES"), 15),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Load .env locally (never overrides real environment variables).
    load_dotenv(override=False)
    return Settings.from_env()
