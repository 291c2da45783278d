# src/taskpilot/connectors/json_calendar.py

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.ports import CalendarAccessError
from ..scheduling.models import CalendarEvent

logger = logging.getLogger(__name__)


def event_to_dict(event: CalendarEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "start": event.start.isoformat(),
        "end": event.end.isoformat(),
        "is_all_day": event.is_all_day,
    }


def event_from_dict(data: dict[str, Any]) -> CalendarEvent:
    start = datetime.fromisoformat(str(data["start"]))
    end = datetime.fromisoformat(str(data["end"]))
    if end < start:
        raise ValueError(f"event ends before it starts: {data.get('title')!r}")
    return CalendarEvent(
        id=str(data.get("id") or uuid.uuid4().hex),
        title=str(data.get("title") or ""),
        start=start,
        end=end,
        is_all_day=bool(data.get("is_all_day", False)),
    )


class JsonCalendar:
    """
    File-backed CalendarAccessProvider.

    Events live in a JSON array on disk. The file is optional: a missing file
    is an empty calendar, an unreadable one raises CalendarAccessError.
    """

    def __init__(self, path: str | Path | None = None, events: list[CalendarEvent] | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._events: list[CalendarEvent] | None = list(events) if events is not None else None

    def _load(self) -> list[CalendarEvent]:
        if self._events is not None:
            return self._events
        if self._path is None or not self._path.exists():
            self._events = []
            return self._events
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CalendarAccessError(f"cannot read calendar {self._path}: {e}") from e
        if not isinstance(data, list):
            raise CalendarAccessError(f"calendar {self._path} must contain a JSON list")

        out: list[CalendarEvent] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                out.append(event_from_dict(item))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping bad calendar entry in %s: %s", self._path, e)
        logger.info("Calendar loaded: %d events from %s", len(out), self._path)
        self._events = out
        return out

    def _save(self) -> None:
        if self._path is None or self._events is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(
            json.dumps([event_to_dict(e) for e in self._events], ensure_ascii=False, indent=2),
            "utf-8",
        )
        tmp.replace(self._path)

    def events_in_range(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        with self._lock:
            events = self._load()
            hits = [e for e in events if e.start < end and start < e.end]
        return sorted(hits, key=lambda e: (e.start, e.id))

    def add_event(self, event: CalendarEvent) -> None:
        with self._lock:
            events = self._load()
            events[:] = [e for e in events if e.id != event.id]
            events.append(event)
            self._save()

    def remove_event(self, event_id: str) -> bool:
        with self._lock:
            events = self._load()
            before = len(events)
            events[:] = [e for e in events if e.id != event_id]
            removed = len(events) != before
            if removed:
                self._save()
        return removed
