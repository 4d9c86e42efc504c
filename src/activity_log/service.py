"""Single entry point bundling the unified activity components."""

from __future__ import annotations

import dataclasses
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Sequence, Union

from .bulk import BulkOperationCoordinator
from .config import ActivityLogSettings
from .conflicts import ConflictDetector
from .db import Timestamp
from .merge import MergeEngine, find_mergeable_groups, split_activity, suggest_merge
from .models import (
    ActivityConflict,
    ActivityFilters,
    BulkActivityOperation,
    BulkDeleteResult,
    BulkUpdateResult,
    ConflictResolution,
    ConflictResolutionResult,
    MergeResult,
    MergeStrategy,
    MergeSuggestion,
    SourceType,
    TimeGap,
    UnifiedActivity,
    UnifiedActivityStats,
)
from .mutation import ActivityMutationGateway
from .query import ActivityQueryEngine
from .repositories import SourceRepositories
from .stats import StatisticsAggregator


class UnifiedActivityService:
    """Query, edit, reconcile and summarize activities from every source.

    Example:
        with database_connection(get_db_path()) as conn:
            service = UnifiedActivityService(conn)
            today = service.get_unified_activities(start, end)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: Optional[ActivityLogSettings] = None,
    ) -> None:
        self.settings = settings or ActivityLogSettings()
        self.repositories = SourceRepositories(conn)
        self.query = ActivityQueryEngine(self.repositories, self.settings)
        self.gateway = ActivityMutationGateway(self.repositories, self.query)
        self.bulk = BulkOperationCoordinator(self.gateway, strict=self.settings.strict_bulk)
        self.conflicts = ConflictDetector(self.query)
        self.merger = MergeEngine(self.gateway, self.query)
        self.statistics = StatisticsAggregator(self.query, self.settings)

    def get_unified_activities(
        self,
        start: Timestamp,
        end: Timestamp,
        filters: Optional[ActivityFilters] = None,
    ) -> list[UnifiedActivity]:
        return self.query.get_unified_activities(start, end, filters)

    def get_unified_activity(
        self, record_id: int, source_type: Union[str, SourceType]
    ) -> Optional[UnifiedActivity]:
        return self.query.get_unified_activity(record_id, source_type)

    def update_unified_activity(
        self,
        record_id: int,
        source_type: Union[str, SourceType],
        updates: Mapping[str, Any],
    ) -> bool:
        return self.gateway.update_unified_activity(record_id, source_type, updates)

    def delete_unified_activity(
        self, record_id: int, source_type: Union[str, SourceType]
    ) -> bool:
        return self.gateway.delete_unified_activity(record_id, source_type)

    def bulk_update_activities(
        self, operation: BulkActivityOperation, *, strict: Optional[bool] = None
    ) -> BulkUpdateResult:
        return self.bulk.bulk_update_activities(operation, strict=strict)

    def bulk_delete_activities(
        self, activity_ids: Sequence[Any], *, strict: Optional[bool] = None
    ) -> BulkDeleteResult:
        return self.bulk.bulk_delete_activities(activity_ids, strict=strict)

    def get_activity_conflicts(self, start: Timestamp, end: Timestamp) -> list[ActivityConflict]:
        return self.conflicts.get_activity_conflicts(start, end)

    def get_activity_gaps(self, start: Timestamp, end: Timestamp) -> list[TimeGap]:
        return self.conflicts.get_activity_gaps(start, end)

    def merge_activities_by_id(
        self,
        activity_ids: Sequence[Any],
        strategy: Union[str, MergeStrategy] = MergeStrategy.LONGEST,
    ) -> MergeResult:
        return self.merger.merge_activities_by_id(activity_ids, strategy)

    def suggest_merge(self, activity_ids: Sequence[Any]) -> MergeSuggestion:
        activities = self.merger.resolve(activity_ids)
        return suggest_merge(activities)

    def get_mergeable_groups(
        self, start: Timestamp, end: Timestamp
    ) -> list[list[UnifiedActivity]]:
        activities = self.query.get_unified_activities(start, end)
        return find_mergeable_groups(activities, self.settings.merge_group_gap)

    def resolve_conflict(
        self,
        conflict: Union[ActivityConflict, Sequence[Any]],
        resolution: Union[str, ConflictResolution],
    ) -> ConflictResolutionResult:
        """Resolve a detected conflict, or an explicit list of activity keys."""
        if isinstance(conflict, ActivityConflict):
            activity_ids = [activity.key for activity in conflict.activities]
        else:
            activity_ids = list(conflict)
        return self.merger.resolve_conflict(activity_ids, resolution)

    def split_activity(
        self,
        record_id: int,
        source_type: Union[str, SourceType],
        split_points: Sequence[Timestamp],
    ) -> list[UnifiedActivity]:
        """Preview a split; nothing is written. Unknown activities give []."""
        activity = self.query.get_unified_activity(record_id, source_type)
        if activity is None:
            return []
        return split_activity(activity, split_points)

    def auto_merge(
        self,
        start: Timestamp,
        end: Timestamp,
        threshold: Optional[timedelta] = None,
    ) -> list[MergeResult]:
        activities = self.query.get_unified_activities(start, end)
        return self.merger.auto_merge(
            activities, threshold if threshold is not None else self.settings.auto_merge_gap
        )

    def get_unified_activity_stats(self, start: Timestamp, end: Timestamp) -> UnifiedActivityStats:
        return self.statistics.get_unified_activity_stats(start, end)

    def search_activities(
        self,
        query: str,
        filters: Optional[ActivityFilters] = None,
        *,
        now: Optional[datetime] = None,
    ) -> list[UnifiedActivity]:
        """Search titles, categories, apps and domains.

        An empty query lists the last 30 days; otherwise the filters' date
        range, or the last 90 days, is searched.
        """
        now = now or datetime.now(timezone.utc)
        if not query.strip():
            return self.get_unified_activities(now - self.settings.browse_lookback, now, filters)

        date_range = (
            filters.date_range
            if filters is not None and filters.date_range
            else (now - self.settings.search_lookback, now)
        )
        base = filters if filters is not None else ActivityFilters()
        search_filters = dataclasses.replace(base, date_range=date_range, search_query=query)
        return self.get_unified_activities(date_range[0], date_range[1], search_filters)
