"""Consolidate several same-source activities into one surviving record."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence, Union

from .db import parse_timestamp, seconds_between, transaction
from .models import (
    ActivityKey,
    ConflictResolution,
    ConflictResolutionResult,
    MergeResult,
    MergeStrategy,
    MergeSuggestion,
    ResolvedActivity,
    Tag,
    UnifiedActivity,
    coerce_key,
)
from .mutation import ActivityMutationGateway
from .query import ActivityQueryEngine

logger = logging.getLogger(__name__)

CROSS_SOURCE_ERROR = "Cannot merge activities from different source types"
NOTHING_TO_MERGE_ERROR = "No activities found to merge"


class MergeError(RuntimeError):
    pass


def sort_by_start(activities: Sequence[UnifiedActivity]) -> list[UnifiedActivity]:
    return sorted(activities, key=lambda activity: activity.start_time)


def select_base(
    ordered: Sequence[UnifiedActivity], strategy: Union[str, MergeStrategy]
) -> UnifiedActivity:
    """Pick the surviving record from a start-sorted, non-empty list.

    ``latest`` is the last activity in start order, not the one that ends last.
    """
    strategy = MergeStrategy(strategy)
    if strategy is MergeStrategy.LONGEST:
        base = ordered[0]
        for candidate in ordered[1:]:
            if candidate.duration > base.duration:
                base = candidate
        return base
    if strategy is MergeStrategy.EARLIEST:
        return ordered[0]
    if strategy is MergeStrategy.LATEST:
        return ordered[-1]
    raise ValueError(f"Unknown merge strategy: {strategy!r}")


def merged_range(activities: Sequence[UnifiedActivity]) -> tuple[datetime, datetime, int]:
    start = min(activity.start_time for activity in activities)
    end = max(activity.end_time for activity in activities)
    return start, end, seconds_between(start, end)


def union_tags(activities: Sequence[UnifiedActivity]) -> tuple[Tag, ...]:
    seen: dict[int, Tag] = {}
    for activity in activities:
        for tag in activity.tags:
            if tag.id is not None and tag.id not in seen:
                seen[tag.id] = tag
    return tuple(seen.values())


def preview_merge(
    activities: Sequence[UnifiedActivity],
    strategy: Union[str, MergeStrategy] = MergeStrategy.LONGEST,
) -> UnifiedActivity:
    """The activity a merge would produce, computed without touching storage."""
    if not activities:
        raise MergeError("Cannot merge empty activity list")
    if len({activity.source_type for activity in activities}) > 1:
        raise MergeError(CROSS_SOURCE_ERROR)
    if len(activities) == 1:
        return activities[0]
    base = select_base(sort_by_start(activities), strategy)
    start, end, duration = merged_range(activities)
    return dataclasses.replace(
        base,
        start_time=start,
        end_time=end,
        duration=duration,
        tags=union_tags(activities),
    )


def suggest_merge(activities: Sequence[UnifiedActivity]) -> MergeSuggestion:
    """Score how reasonable it is to merge ``activities`` from the gaps between them."""
    if len(activities) < 2:
        return MergeSuggestion(False, "Need at least 2 activities to merge", 0)
    if len({activity.source_type for activity in activities}) > 1:
        return MergeSuggestion(False, "Cannot merge activities from different sources", 0)

    ordered = sort_by_start(activities)
    max_gap = 0.0
    for previous, current in zip(ordered, ordered[1:]):
        gap = (current.start_time - previous.end_time).total_seconds()
        max_gap = max(max_gap, gap)

    if max_gap == 0:
        confidence, reason = 100, "Activities are consecutive with no gaps"
    elif max_gap <= 60:
        confidence, reason = 90, f"Small gaps (max {int(max_gap)}s) between activities"
    elif max_gap <= 300:
        confidence, reason = 70, f"Moderate gaps (max {round(max_gap / 60)}min) between activities"
    elif max_gap <= 900:
        confidence, reason = 50, f"Large gaps (max {round(max_gap / 60)}min) between activities"
    else:
        confidence = 20
        reason = f"Very large gaps (max {round(max_gap / 60)}min) - not recommended"

    if len({activity.title.lower() for activity in activities}) == 1:
        confidence += 10
        reason += " and identical titles"

    if confidence < 50:
        return MergeSuggestion(False, reason, confidence)
    return MergeSuggestion(
        True,
        reason,
        min(confidence, 100),
        merged_activity=preview_merge(activities, MergeStrategy.LONGEST),
    )


def find_mergeable_groups(
    activities: Sequence[UnifiedActivity],
    max_gap: timedelta = timedelta(minutes=5),
    *,
    match_type: bool = True,
) -> list[list[UnifiedActivity]]:
    """Runs of consecutive activities of one source with small gaps.

    With ``match_type`` a run must also share one activity type.
    """
    if not activities:
        return []
    ordered = sort_by_start(activities)
    groups: list[list[UnifiedActivity]] = []
    current = [ordered[0]]
    for previous, activity in zip(ordered, ordered[1:]):
        leader = current[0]
        if (
            activity.start_time - previous.end_time <= max_gap
            and activity.source_type is leader.source_type
            and (not match_type or activity.type is leader.type)
        ):
            current.append(activity)
            continue
        if len(current) > 1:
            groups.append(current)
        current = [activity]
    if len(current) > 1:
        groups.append(current)
    return groups


def adjust_times_to_remove_overlap(
    activities: Sequence[UnifiedActivity],
) -> list[UnifiedActivity]:
    """End each activity where the next one starts; starts never move.

    Raises ``MergeError`` when two activities start at the same moment, since
    trimming the first would leave it empty.
    """
    ordered = sort_by_start(activities)
    adjusted: list[UnifiedActivity] = []
    for index, current in enumerate(ordered):
        following = ordered[index + 1] if index + 1 < len(ordered) else None
        if following is not None and current.end_time > following.start_time:
            if following.start_time <= current.start_time:
                raise MergeError("Cannot adjust activities that start at the same time")
            current = dataclasses.replace(
                current,
                end_time=following.start_time,
                duration=seconds_between(current.start_time, following.start_time),
            )
        adjusted.append(current)
    return adjusted


def split_activity(
    activity: UnifiedActivity, split_points: Sequence[Union[str, datetime]]
) -> list[UnifiedActivity]:
    """Preview ``activity`` cut at each split point strictly inside its range.

    Pieces keep the original id and are titled ``"<title> (Part n)"``. Points
    outside the range are ignored; with none left the activity comes back
    unchanged.
    """
    points = sorted(
        {
            moment
            for moment in (parse_timestamp(point) for point in split_points)
            if activity.start_time < moment < activity.end_time
        }
    )
    if not points:
        return [activity]
    boundaries = [activity.start_time, *points, activity.end_time]
    return [
        dataclasses.replace(
            activity,
            title=f"{activity.title} (Part {part})",
            start_time=start,
            end_time=end,
            duration=seconds_between(start, end),
            metadata={**activity.metadata, "split_part": part},
        )
        for part, (start, end) in enumerate(zip(boundaries, boundaries[1:]), start=1)
    ]


class MergeEngine:
    def __init__(self, gateway: ActivityMutationGateway, query: ActivityQueryEngine) -> None:
        self.gateway = gateway
        self.query = query

    def merge_activities_by_id(
        self,
        activity_ids: Sequence[Any],
        strategy: Union[str, MergeStrategy] = MergeStrategy.LONGEST,
    ) -> MergeResult:
        """Merge the referenced activities into one, atomically.

        The base record chosen by ``strategy`` survives with the union of all
        time ranges and tags; every other record is deleted in the same
        transaction.
        """
        try:
            strategy = MergeStrategy(strategy)
        except ValueError:
            return MergeResult(success=False, error=f"Unknown merge strategy: {strategy}")

        try:
            activities = self.resolve(activity_ids)
            if not activities:
                return MergeResult(success=False, error=NOTHING_TO_MERGE_ERROR)
            if len(activities) == 1:
                return MergeResult(success=True, merged_activity=activities[0])
            if len({activity.source_type for activity in activities}) > 1:
                logger.warning(
                    "Rejected cross-source merge of %s",
                    [f"{a.source_type.value}:{a.id}" for a in activities],
                )
                return MergeResult(success=False, error=CROSS_SOURCE_ERROR)

            ordered = sort_by_start(activities)
            base = select_base(ordered, strategy)
            start, end, duration = merged_range(ordered)
            tags = union_tags(activities)

            with transaction(self.gateway.repositories.conn):
                if not self.gateway.apply_merged_range(base, start, end, duration, tags):
                    raise MergeError("Failed to update base activity")
                self._delete_all(activity for activity in ordered if activity.key != base.key)

            logger.info(
                "Merged %d %s activities into id=%s strategy=%s",
                len(ordered),
                base.source_type.value,
                base.id,
                strategy.value,
            )
            return MergeResult(
                success=True,
                merged_activity=self.query.get_unified_activity(base.id, base.source_type),
            )
        except Exception as exc:
            logger.exception(
                "Failed to merge activities activity_count=%s strategy=%s",
                len(activity_ids),
                strategy.value,
            )
            return MergeResult(success=False, error=str(exc) or "Unknown error")

    def resolve_conflict(
        self,
        activity_ids: Sequence[Any],
        resolution: Union[str, ConflictResolution],
    ) -> ConflictResolutionResult:
        """Settle an overlap between same-source activities.

        ``merge`` folds them into the longest one. ``delete_one`` keeps the
        earliest and deletes the rest. ``adjust_time`` ends each activity where
        the next one begins. Every resolution commits or rolls back as a unit.
        """
        try:
            resolution = ConflictResolution(resolution)
        except ValueError:
            return ConflictResolutionResult(
                success=False, error=f"Unknown conflict resolution: {resolution}"
            )

        try:
            activities = sort_by_start(self.resolve(activity_ids))
            if len(activities) < 2:
                return ConflictResolutionResult(
                    success=False,
                    resolution=resolution,
                    error="Need at least 2 activities to resolve a conflict",
                )
            if len({activity.source_type for activity in activities}) > 1:
                return ConflictResolutionResult(
                    success=False, resolution=resolution, error=CROSS_SOURCE_ERROR
                )

            if resolution is ConflictResolution.MERGE:
                merged = self.merge_activities_by_id(
                    [activity.key for activity in activities], MergeStrategy.LONGEST
                )
                if not merged.success or merged.merged_activity is None:
                    return ConflictResolutionResult(
                        success=False, resolution=resolution, error=merged.error
                    )
                survivor = merged.merged_activity
                resolved = [ResolvedActivity(survivor, "update")]
                resolved.extend(
                    ResolvedActivity(activity, "delete")
                    for activity in activities
                    if activity.key != survivor.key
                )
                return ConflictResolutionResult(True, resolution, resolved)

            with transaction(self.gateway.repositories.conn):
                if resolution is ConflictResolution.DELETE_ONE:
                    keep, *rest = activities
                    self._delete_all(rest)
                    resolved = [ResolvedActivity(keep, "keep")]
                    resolved.extend(ResolvedActivity(activity, "delete") for activity in rest)
                else:
                    resolved = self._trim_overlaps(activities)

            logger.info(
                "Resolved conflict between %d %s activities resolution=%s",
                len(activities),
                activities[0].source_type.value,
                resolution.value,
            )
            return ConflictResolutionResult(True, resolution, resolved)
        except Exception as exc:
            logger.exception(
                "Failed to resolve conflict activity_count=%s resolution=%s",
                len(activity_ids),
                resolution.value,
            )
            return ConflictResolutionResult(
                success=False, resolution=resolution, error=str(exc) or "Unknown error"
            )

    def _trim_overlaps(self, activities: Sequence[UnifiedActivity]) -> list[ResolvedActivity]:
        resolved: list[ResolvedActivity] = []
        for original, adjusted in zip(activities, adjust_times_to_remove_overlap(activities)):
            if adjusted.end_time == original.end_time:
                resolved.append(ResolvedActivity(original, "keep"))
                continue
            if not self.gateway.apply_time_range(
                original, adjusted.start_time, adjusted.end_time, adjusted.duration
            ):
                raise MergeError(f"Failed to adjust activity {original.id}")
            resolved.append(ResolvedActivity(adjusted, "update"))
        return resolved

    def auto_merge(
        self,
        activities: Sequence[UnifiedActivity],
        threshold: timedelta = timedelta(seconds=60),
    ) -> list[MergeResult]:
        """Merge every run of same-source activities separated by at most ``threshold``.

        Runs may mix activity types. Each run is merged into its longest member
        in its own transaction, so one failing run leaves the others merged.
        """
        results: list[MergeResult] = []
        for group in find_mergeable_groups(activities, threshold, match_type=False):
            results.append(
                self.merge_activities_by_id(
                    [activity.key for activity in group], MergeStrategy.LONGEST
                )
            )
        return results

    def _delete_all(self, activities: Iterable[UnifiedActivity]) -> None:
        """Delete inside the caller's transaction; storage errors propagate."""
        for activity in activities:
            repository = self.gateway.repositories.for_source(activity.source_type)
            if not repository.delete(activity.id):
                logger.warning(
                    "Activity already gone id=%s source_type=%s",
                    activity.id,
                    activity.source_type.value,
                )

    def resolve(self, activity_ids: Sequence[Any]) -> list[UnifiedActivity]:
        resolved: list[UnifiedActivity] = []
        seen: set[ActivityKey] = set()
        for raw_key in activity_ids:
            record_id, source_type = coerce_key(raw_key)
            if (record_id, source_type) in seen:
                continue
            seen.add((record_id, source_type))
            activity = self.query.get_unified_activity(record_id, source_type)
            if activity is None:
                logger.warning(
                    "Skipping unknown merge input id=%s source_type=%s",
                    record_id,
                    source_type.value,
                )
                continue
            resolved.append(activity)
        return resolved
