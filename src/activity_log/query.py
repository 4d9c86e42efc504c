"""Read side: fetch, merge, sort and filter activities from every source."""

from __future__ import annotations

import json
import logging
from typing import Iterable, Optional

from .config import ActivityLogSettings
from .db import Timestamp, parse_timestamp
from .models import (
    ActivityFilters,
    ActivityType,
    SourceType,
    UnifiedActivity,
)
from .normalization import ActivityNormalizer
from .repositories import SourceRepositories

logger = logging.getLogger(__name__)

ALL_SOURCES: tuple[SourceType, ...] = (
    SourceType.MANUAL,
    SourceType.AUTOMATIC,
    SourceType.POMODORO,
)


class ActivityQueryEngine:
    def __init__(
        self,
        repositories: SourceRepositories,
        settings: Optional[ActivityLogSettings] = None,
    ) -> None:
        self.repositories = repositories
        self.settings = settings or ActivityLogSettings()
        self.normalizer = ActivityNormalizer(repositories)

    def get_unified_activities(
        self,
        start: Timestamp,
        end: Timestamp,
        filters: Optional[ActivityFilters] = None,
    ) -> list[UnifiedActivity]:
        """Every finished activity overlapping ``[start, end)``, oldest first.

        Never raises: failures are logged and yield an empty list.
        """
        try:
            window_start = parse_timestamp(start)
            window_end = parse_timestamp(end)
            activities: list[UnifiedActivity] = []
            for source_type in _requested_sources(filters):
                repository = self.repositories.for_source(source_type)
                rows = repository.rows_in_range(window_start, window_end)
                activities.extend(self.normalizer.normalize_rows(source_type, rows))
            activities.sort(key=lambda activity: activity.start_time)
            return apply_filters(activities, filters)
        except Exception:
            logger.exception(
                "Failed to get unified activities start=%s end=%s filters=%s",
                start,
                end,
                json.dumps(filters.to_dict()) if filters else None,
            )
            return []

    def get_unified_activity(
        self, record_id: int, source_type: SourceType
    ) -> Optional[UnifiedActivity]:
        # TODO: replace the window scan with a per-source lookup by primary key.
        try:
            source_type = SourceType(source_type)
            activities = self.get_unified_activities(
                self.settings.lookup_window_start,
                self.settings.lookup_window_end,
                ActivityFilters(source_types=[source_type]),
            )
            for activity in activities:
                if activity.id == record_id and activity.source_type is source_type:
                    return activity
            return None
        except Exception:
            logger.exception(
                "Failed to get unified activity id=%s source_type=%s",
                record_id,
                source_type,
            )
            return None


def _requested_sources(filters: Optional[ActivityFilters]) -> Iterable[SourceType]:
    if filters is None or filters.source_types is None:
        return ALL_SOURCES
    requested = {SourceType(source) for source in filters.source_types}
    return [source for source in ALL_SOURCES if source in requested]


def apply_filters(
    activities: list[UnifiedActivity], filters: Optional[ActivityFilters]
) -> list[UnifiedActivity]:
    if filters is None:
        return activities
    return [activity for activity in activities if matches_filters(activity, filters)]


def matches_filters(activity: UnifiedActivity, filters: ActivityFilters) -> bool:
    if filters.activity_types:
        wanted_types = {ActivityType(value) for value in filters.activity_types}
        if activity.type not in wanted_types:
            return False

    if filters.categories:
        if activity.category_id is None or activity.category_id not in filters.categories:
            return False

    if filters.tags:
        if not set(activity.tag_ids) & set(filters.tags):
            return False

    if filters.search_query:
        if not _matches_search(activity, filters.search_query):
            return False

    if filters.min_duration is not None and activity.duration < filters.min_duration:
        return False
    if filters.max_duration is not None and activity.duration > filters.max_duration:
        return False

    if filters.is_editable is not None and activity.is_editable != filters.is_editable:
        return False

    return True


def _matches_search(activity: UnifiedActivity, query: str) -> bool:
    needle = query.lower()
    haystacks = (
        activity.title,
        activity.category_name,
        activity.metadata.get("app_name"),
        activity.metadata.get("domain"),
    )
    return any(value and needle in value.lower() for value in haystacks)
