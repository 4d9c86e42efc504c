"""Domain models for the unified activity log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence, Union


class SourceType(str, Enum):
    """Originating store of an activity."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"
    POMODORO = "pomodoro"

    @property
    def table(self) -> str:
        return SOURCE_TABLES[self]


SOURCE_TABLES: dict[SourceType, str] = {
    SourceType.MANUAL: "time_entries",
    SourceType.AUTOMATIC: "app_usage",
    SourceType.POMODORO: "pomodoro_sessions",
}


class ActivityType(str, Enum):
    TIME_ENTRY = "time_entry"
    APP = "app"
    BROWSER = "browser"
    POMODORO_FOCUS = "pomodoro_focus"
    POMODORO_BREAK = "pomodoro_break"


class MergeStrategy(str, Enum):
    LONGEST = "longest"
    EARLIEST = "earliest"
    LATEST = "latest"


class ConflictResolution(str, Enum):
    MERGE = "merge"
    DELETE_ONE = "delete_one"
    ADJUST_TIME = "adjust_time"


MUTABLE_FIELDS: tuple[str, ...] = (
    "title",
    "start_time",
    "end_time",
    "duration",
    "category_id",
    "tags",
)

ActivityKey = tuple[int, SourceType]


def activity_key(record_id: int, source_type: Union[str, SourceType]) -> ActivityKey:
    return int(record_id), SourceType(source_type)


def coerce_key(value: Any) -> ActivityKey:
    """Accept ``(id, source)`` pairs or ``{"id": ..., "source_type": ...}`` mappings."""
    if isinstance(value, dict):
        return activity_key(value["id"], value["source_type"])
    record_id, source_type = value
    return activity_key(record_id, source_type)


@dataclass(slots=True, frozen=True)
class Tag:
    id: int
    name: str
    color: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass(slots=True)
class UnifiedActivity:
    """A source-agnostic projection of one time-bounded record."""

    id: int
    source_type: SourceType
    type: ActivityType
    title: str
    start_time: datetime
    end_time: datetime
    duration: int
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    tags: tuple[Tag, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    is_editable: bool = True
    editable_fields: tuple[str, ...] = ()
    created_at: Optional[str] = None

    @property
    def key(self) -> ActivityKey:
        return self.id, self.source_type

    @property
    def tag_ids(self) -> list[int]:
        return [tag.id for tag in self.tags]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_type": self.source_type.value,
            "type": self.type.value,
            "title": self.title,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "tags": [tag.to_dict() for tag in self.tags],
            "metadata": dict(self.metadata),
            "is_editable": self.is_editable,
            "editable_fields": list(self.editable_fields),
            "created_at": self.created_at,
        }


@dataclass(slots=True)
class ActivityFilters:
    """Post-normalization filters; every populated field must match."""

    source_types: Optional[Sequence[SourceType]] = None
    activity_types: Optional[Sequence[ActivityType]] = None
    categories: Optional[Sequence[int]] = None
    tags: Optional[Sequence[int]] = None
    search_query: Optional[str] = None
    min_duration: Optional[int] = None
    max_duration: Optional[int] = None
    is_editable: Optional[bool] = None
    date_range: Optional[tuple[datetime, datetime]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_types": _enum_values(self.source_types),
            "activity_types": _enum_values(self.activity_types),
            "categories": list(self.categories) if self.categories is not None else None,
            "tags": list(self.tags) if self.tags is not None else None,
            "search_query": self.search_query,
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
            "is_editable": self.is_editable,
            "date_range": (
                [moment.isoformat() for moment in self.date_range]
                if self.date_range
                else None
            ),
        }


def _enum_values(values: Optional[Sequence[Enum]]) -> Optional[list[str]]:
    if values is None:
        return None
    return [value.value for value in values]


@dataclass(slots=True)
class ActivityConflict:
    activities: tuple[UnifiedActivity, UnifiedActivity]
    message: str
    conflict_type: str = "overlap"
    suggested_resolution: str = "merge"

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflict_type": self.conflict_type,
            "activities": [activity.to_dict() for activity in self.activities],
            "suggested_resolution": self.suggested_resolution,
            "message": self.message,
        }


@dataclass(slots=True)
class TimeGap:
    start_time: datetime
    end_time: datetime
    duration: int
    before: UnifiedActivity
    after: UnifiedActivity

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "before": {"id": self.before.id, "source_type": self.before.source_type.value},
            "after": {"id": self.after.id, "source_type": self.after.source_type.value},
        }


@dataclass(slots=True)
class CategoryStats:
    category_id: int
    category_name: str
    category_color: str
    total_time: int
    percentage: float
    activity_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "total_time": self.total_time,
            "percentage": self.percentage,
            "activity_count": self.activity_count,
        }


@dataclass(slots=True)
class UnifiedActivityStats:
    total_activities: int
    total_duration: int
    by_source_type: dict[str, int]
    by_category: list[CategoryStats]
    editable_count: int
    conflicts_count: int
    gaps_detected: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_activities": self.total_activities,
            "total_duration": self.total_duration,
            "by_source_type": dict(self.by_source_type),
            "by_category": [entry.to_dict() for entry in self.by_category],
            "editable_count": self.editable_count,
            "conflicts_count": self.conflicts_count,
            "gaps_detected": self.gaps_detected,
        }


@dataclass(slots=True)
class BulkActivityOperation:
    activity_ids: Sequence[Any]
    updates: dict[str, Any] = field(default_factory=dict)
    add_tag_ids: Sequence[int] = ()
    remove_tag_ids: Sequence[int] = ()


@dataclass(slots=True)
class BulkUpdateResult:
    success: bool
    updated: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "updated": self.updated, "failed": self.failed}


@dataclass(slots=True)
class BulkDeleteResult:
    success: bool
    deleted: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "deleted": self.deleted, "failed": self.failed}


@dataclass(slots=True)
class MergeResult:
    success: bool
    merged_activity: Optional[UnifiedActivity] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "merged_activity": (
                self.merged_activity.to_dict() if self.merged_activity else None
            ),
            "error": self.error,
        }


@dataclass(slots=True)
class MergeSuggestion:
    can_merge: bool
    reason: str
    confidence: int
    merged_activity: Optional[UnifiedActivity] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_merge": self.can_merge,
            "reason": self.reason,
            "confidence": self.confidence,
            "merged_activity": (
                self.merged_activity.to_dict() if self.merged_activity else None
            ),
        }


@dataclass(slots=True)
class ResolvedActivity:
    """What a conflict resolution did to one activity: keep, update or delete."""

    activity: UnifiedActivity
    action: str

    def to_dict(self) -> dict[str, Any]:
        return {"activity": self.activity.to_dict(), "action": self.action}


@dataclass(slots=True)
class ConflictResolutionResult:
    success: bool
    resolution: Optional[ConflictResolution] = None
    resolved: list[ResolvedActivity] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "resolution": self.resolution.value if self.resolution else None,
            "resolved": [entry.to_dict() for entry in self.resolved],
            "error": self.error,
        }
