"""Project raw source rows onto the unified activity shape."""

from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Optional

from .db import parse_timestamp, seconds_between
from .models import (
    MUTABLE_FIELDS,
    ActivityType,
    SourceType,
    Tag,
    UnifiedActivity,
)
from .repositories import SourceRepositories

logger = logging.getLogger(__name__)

EDITABLE_FIELDS: dict[ActivityType, tuple[str, ...]] = {
    ActivityType.TIME_ENTRY: MUTABLE_FIELDS,
    ActivityType.APP: ("category_id", "tags"),
    ActivityType.BROWSER: ("category_id", "tags"),
    ActivityType.POMODORO_FOCUS: ("title", "tags"),
    ActivityType.POMODORO_BREAK: ("tags",),
}

_BREAK_TITLES = {
    "shortBreak": "Short Break",
    "longBreak": "Long Break",
}


class ActivityNormalizer:
    """Converts rows from each source repository into ``UnifiedActivity``."""

    def __init__(self, repositories: SourceRepositories) -> None:
        self.repositories = repositories

    def normalize_rows(
        self, source_type: SourceType, rows: Iterable[sqlite3.Row]
    ) -> list[UnifiedActivity]:
        activities: list[UnifiedActivity] = []
        for row in rows:
            activity = self.normalize(source_type, row)
            if activity is not None:
                activities.append(activity)
        return activities

    def normalize(
        self, source_type: SourceType, row: sqlite3.Row
    ) -> Optional[UnifiedActivity]:
        """Return the projection of ``row``, or None for an unfinished record."""
        if row["end_time"] is None:
            return None
        source_type = SourceType(source_type)
        tags = self._tags(source_type, row["id"])
        if source_type is SourceType.MANUAL:
            return _from_time_entry(row, tags)
        if source_type is SourceType.AUTOMATIC:
            return _from_app_usage(row, tags)
        if source_type is SourceType.POMODORO:
            return _from_pomodoro_session(row, tags)
        raise ValueError(f"Unknown source type: {source_type!r}")

    def _tags(self, source_type: SourceType, record_id: int) -> tuple[Tag, ...]:
        try:
            repository = self.repositories.for_source(source_type)
            return tuple(repository.get_tags(record_id))
        except Exception:
            logger.warning(
                "Failed to resolve tags for %s id=%s; using none.",
                source_type.value,
                record_id,
                exc_info=True,
            )
            return ()


def editable_fields_for(activity_type: ActivityType) -> tuple[str, ...]:
    return EDITABLE_FIELDS[activity_type]


def _duration(row: sqlite3.Row) -> int:
    stored = row["duration"]
    if stored is not None:
        return max(int(stored), 0)
    return max(seconds_between(row["start_time"], row["end_time"]), 0)


def _from_time_entry(row: sqlite3.Row, tags: tuple[Tag, ...]) -> UnifiedActivity:
    activity_type = ActivityType.TIME_ENTRY
    return UnifiedActivity(
        id=row["id"],
        source_type=SourceType.MANUAL,
        type=activity_type,
        title=row["task"],
        start_time=parse_timestamp(row["start_time"]),
        end_time=parse_timestamp(row["end_time"]),
        duration=_duration(row),
        category_id=row["category_id"],
        category_name=row["category_name"],
        category_color=row["category_color"],
        tags=tags,
        metadata={
            "original_id": row["id"],
            "original_table": SourceType.MANUAL.table,
        },
        is_editable=True,
        editable_fields=editable_fields_for(activity_type),
        created_at=row["created_at"],
    )


def _from_app_usage(row: sqlite3.Row, tags: tuple[Tag, ...]) -> UnifiedActivity:
    is_browser = bool(row["is_browser"])
    activity_type = ActivityType.BROWSER if is_browser else ActivityType.APP
    title = (row["domain"] or row["app_name"]) if is_browser else row["app_name"]
    return UnifiedActivity(
        id=row["id"],
        source_type=SourceType.AUTOMATIC,
        type=activity_type,
        title=title,
        start_time=parse_timestamp(row["start_time"]),
        end_time=parse_timestamp(row["end_time"]),
        duration=_duration(row),
        category_id=row["category_id"],
        category_name=row["category_name"],
        category_color=row["category_color"],
        tags=tags,
        metadata={
            "app_name": row["app_name"],
            "window_title": row["window_title"],
            "domain": row["domain"],
            "url": row["url"],
            "is_browser": is_browser,
            "is_idle": bool(row["is_idle"]),
            "original_id": row["id"],
            "original_table": SourceType.AUTOMATIC.table,
        },
        is_editable=True,
        editable_fields=editable_fields_for(activity_type),
        created_at=row["created_at"],
    )


def _from_pomodoro_session(row: sqlite3.Row, tags: tuple[Tag, ...]) -> UnifiedActivity:
    session_type = row["session_type"]
    is_focus = session_type == "focus"
    activity_type = ActivityType.POMODORO_FOCUS if is_focus else ActivityType.POMODORO_BREAK
    title = row["task"] if is_focus else _BREAK_TITLES.get(session_type, f"{session_type} Break")
    return UnifiedActivity(
        id=row["id"],
        source_type=SourceType.POMODORO,
        type=activity_type,
        title=title,
        start_time=parse_timestamp(row["start_time"]),
        end_time=parse_timestamp(row["end_time"]),
        duration=_duration(row),
        tags=tags,
        metadata={
            "session_type": session_type,
            "completed": bool(row["completed"]),
            "interrupted": bool(row["interrupted"]),
            "original_id": row["id"],
            "original_table": SourceType.POMODORO.table,
        },
        is_editable=True,
        editable_fields=editable_fields_for(activity_type),
        created_at=row["created_at"],
    )
