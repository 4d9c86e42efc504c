"""Derived summaries over a window of unified activities."""

from __future__ import annotations

from typing import Sequence

from .config import ActivityLogSettings
from .conflicts import detect_gaps, find_conflicts
from .db import Timestamp
from .models import CategoryStats, SourceType, UnifiedActivity, UnifiedActivityStats
from .query import ActivityQueryEngine


def summarize(
    activities: Sequence[UnifiedActivity],
    default_category_color: str = "#3B82F6",
) -> UnifiedActivityStats:
    total_duration = sum(activity.duration for activity in activities)

    by_source_type = {source.value: 0 for source in SourceType}
    for activity in activities:
        by_source_type[activity.source_type.value] += 1

    categories: dict[int, dict] = {}
    for activity in activities:
        if activity.category_id is None or not activity.category_name:
            continue
        bucket = categories.setdefault(
            activity.category_id,
            {
                "name": activity.category_name,
                "color": activity.category_color or default_category_color,
                "time": 0,
                "count": 0,
            },
        )
        bucket["time"] += activity.duration
        bucket["count"] += 1

    by_category = [
        CategoryStats(
            category_id=category_id,
            category_name=bucket["name"],
            category_color=bucket["color"],
            total_time=bucket["time"],
            percentage=(bucket["time"] / total_duration) * 100 if total_duration > 0 else 0,
            activity_count=bucket["count"],
        )
        for category_id, bucket in categories.items()
    ]
    by_category.sort(key=lambda entry: entry.total_time, reverse=True)

    return UnifiedActivityStats(
        total_activities=len(activities),
        total_duration=total_duration,
        by_source_type=by_source_type,
        by_category=by_category,
        editable_count=sum(1 for activity in activities if activity.is_editable),
        conflicts_count=len(find_conflicts(activities)),
        gaps_detected=len(detect_gaps(activities)),
    )


class StatisticsAggregator:
    def __init__(
        self, query: ActivityQueryEngine, settings: ActivityLogSettings | None = None
    ) -> None:
        self.query = query
        self.settings = settings or ActivityLogSettings()

    def get_unified_activity_stats(self, start: Timestamp, end: Timestamp) -> UnifiedActivityStats:
        activities = self.query.get_unified_activities(start, end)
        return summarize(activities, self.settings.default_category_color)
