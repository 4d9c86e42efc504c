"""Overlap and gap detection over unified activities."""

from __future__ import annotations

from typing import Sequence

from .db import Timestamp, seconds_between
from .models import ActivityConflict, ActivityKey, TimeGap, UnifiedActivity
from .query import ActivityQueryEngine


def overlaps(first: UnifiedActivity, second: UnifiedActivity) -> bool:
    """Strict overlap; ranges that only touch do not overlap."""
    return first.start_time < second.end_time and second.start_time < first.end_time


def find_conflicts(activities: Sequence[UnifiedActivity]) -> list[ActivityConflict]:
    """Pairwise scan for overlapping activities of the same source type."""
    conflicts: list[ActivityConflict] = []
    for index, first in enumerate(activities):
        for second in activities[index + 1 :]:
            if first.source_type is not second.source_type:
                continue
            if overlaps(first, second):
                conflicts.append(
                    ActivityConflict(
                        activities=(first, second),
                        message=f'Activities overlap: "{first.title}" and "{second.title}"',
                    )
                )
    return conflicts


def find_conflicting_keys(activities: Sequence[UnifiedActivity]) -> set[ActivityKey]:
    """Keys of every activity taking part in at least one conflict."""
    keys: set[ActivityKey] = set()
    for conflict in find_conflicts(activities):
        keys.update(activity.key for activity in conflict.activities)
    return keys


def detect_gaps(activities: Sequence[UnifiedActivity]) -> list[TimeGap]:
    """Stretches of time covered by none of ``activities``, in time order."""
    ordered = sorted(activities, key=lambda activity: activity.start_time)
    gaps: list[TimeGap] = []
    if len(ordered) < 2:
        return gaps

    covering = ordered[0]
    for activity in ordered[1:]:
        if activity.start_time > covering.end_time:
            gaps.append(
                TimeGap(
                    start_time=covering.end_time,
                    end_time=activity.start_time,
                    duration=seconds_between(covering.end_time, activity.start_time),
                    before=covering,
                    after=activity,
                )
            )
        if activity.end_time > covering.end_time:
            covering = activity
    return gaps


class ConflictDetector:
    def __init__(self, query: ActivityQueryEngine) -> None:
        self.query = query

    def get_activity_conflicts(self, start: Timestamp, end: Timestamp) -> list[ActivityConflict]:
        return find_conflicts(self.query.get_unified_activities(start, end))

    def get_activity_gaps(self, start: Timestamp, end: Timestamp) -> list[TimeGap]:
        return detect_gaps(self.query.get_unified_activities(start, end))
