"""Write side for single activities: validate, translate and route updates."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from .db import parse_timestamp, seconds_between, transaction
from .models import SourceType, Tag, UnifiedActivity
from .query import ActivityQueryEngine
from .repositories import SourceRepositories

logger = logging.getLogger(__name__)


class ActivityMutationGateway:
    """Applies field edits and deletes back onto the owning source table."""

    def __init__(self, repositories: SourceRepositories, query: ActivityQueryEngine) -> None:
        self.repositories = repositories
        self.query = query

    def update_unified_activity(
        self,
        record_id: int,
        source_type: SourceType,
        updates: Mapping[str, Any],
    ) -> bool:
        """Apply ``updates`` to one activity; False if anything is rejected.

        Updates are all-or-nothing: a single key outside the activity's
        editable fields rejects the whole request before anything is written.
        """
        try:
            source_type = SourceType(source_type)
            activity = self.query.get_unified_activity(record_id, source_type)
            if activity is None:
                logger.error(
                    "Activity not found for update id=%s source_type=%s",
                    record_id,
                    source_type.value,
                )
                return False

            if not activity.is_editable:
                logger.error(
                    "Cannot update non-editable activity id=%s source_type=%s type=%s",
                    record_id,
                    source_type.value,
                    activity.type.value,
                )
                return False

            invalid_fields = [key for key in updates if key not in activity.editable_fields]
            if invalid_fields:
                logger.error(
                    "Cannot update non-editable fields id=%s source_type=%s "
                    "invalid_fields=%s editable_fields=%s",
                    record_id,
                    source_type.value,
                    ", ".join(invalid_fields),
                    ", ".join(activity.editable_fields),
                )
                return False

            with transaction(self.repositories.conn):
                return self._write(activity, updates)
        except Exception:
            logger.exception(
                "Failed to update unified activity id=%s source_type=%s updates=%s",
                record_id,
                source_type,
                json.dumps(dict(updates), default=str),
            )
            return False

    def delete_unified_activity(self, record_id: int, source_type: SourceType) -> bool:
        """Delete one activity. Editability does not apply to deletion."""
        try:
            repository = self.repositories.for_source(SourceType(source_type))
            deleted = repository.delete(record_id)
            if not deleted:
                logger.warning(
                    "Activity not found for delete id=%s source_type=%s",
                    record_id,
                    source_type,
                )
            return deleted
        except Exception:
            logger.exception(
                "Failed to delete unified activity id=%s source_type=%s",
                record_id,
                source_type,
            )
            return False

    def adjust_tags(
        self,
        record_id: int,
        source_type: SourceType,
        add_tag_ids: Iterable[int] = (),
        remove_tag_ids: Iterable[int] = (),
    ) -> bool:
        """Add and remove individual tags without replacing the whole set."""
        try:
            source_type = SourceType(source_type)
            activity = self.query.get_unified_activity(record_id, source_type)
            if activity is None or "tags" not in activity.editable_fields:
                logger.error(
                    "Cannot adjust tags id=%s source_type=%s",
                    record_id,
                    source_type.value,
                )
                return False
            repository = self.repositories.for_source(source_type)
            with transaction(self.repositories.conn):
                repository.add_tags(record_id, add_tag_ids)
                repository.remove_tags(record_id, remove_tag_ids)
            return True
        except Exception:
            logger.exception(
                "Failed to adjust tags id=%s source_type=%s",
                record_id,
                source_type,
            )
            return False

    def apply_merged_range(
        self,
        activity: UnifiedActivity,
        start_time: datetime,
        end_time: datetime,
        duration: int,
        tags: Iterable[Any],
    ) -> bool:
        """Write a merge result onto ``activity`` regardless of its editable fields.

        Exceptions propagate so the surrounding merge transaction rolls back.
        """
        if not self.apply_time_range(activity, start_time, end_time, duration):
            return False
        self.repositories.for_source(activity.source_type).set_tags(activity.id, tag_ids(tags))
        return True

    def apply_time_range(
        self,
        activity: UnifiedActivity,
        start_time: datetime,
        end_time: datetime,
        duration: int,
    ) -> bool:
        """Rewrite the native time range of any source; used by reconciliation."""
        repository = self.repositories.for_source(activity.source_type)
        return repository.update(
            activity.id,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
        )

    def _write(self, activity: UnifiedActivity, updates: Mapping[str, Any]) -> bool:
        if "title" in updates and not str(updates["title"] or "").strip():
            logger.error(
                "Rejected blank title id=%s source_type=%s",
                activity.id,
                activity.source_type.value,
            )
            return False

        category_id = updates.get("category_id")
        if category_id is not None and self.repositories.categories.get(category_id) is None:
            logger.error(
                "Rejected unknown category_id=%s id=%s source_type=%s",
                category_id,
                activity.id,
                activity.source_type.value,
            )
            return False

        native = _translate(activity.source_type, updates)
        if "start_time" in updates or "end_time" in updates:
            start = parse_timestamp(updates.get("start_time", activity.start_time))
            end = parse_timestamp(updates.get("end_time", activity.end_time))
            if end <= start:
                logger.error(
                    "Rejected update with end_time <= start_time id=%s source_type=%s",
                    activity.id,
                    activity.source_type.value,
                )
                return False
            if "duration" not in updates:
                native["duration"] = seconds_between(start, end)

        repository = self.repositories.for_source(activity.source_type)
        if native and not repository.update(activity.id, **native):
            return False

        # None clears every tag.
        if "tags" in updates:
            repository.set_tags(activity.id, tag_ids(updates["tags"] or ()))

        logger.debug(
            "Updated %s id=%s fields=%s",
            activity.source_type.value,
            activity.id,
            sorted(updates),
        )
        return True


def _translate(source_type: SourceType, updates: Mapping[str, Any]) -> dict[str, Any]:
    """Map unified field names onto the native columns of one source.

    Setting ``category_id`` also drops the legacy free-text category, which
    would otherwise keep resolving to the old category.
    """
    native: dict[str, Any] = {}
    if source_type is SourceType.MANUAL:
        if "title" in updates:
            native["task"] = updates["title"]
        for column in ("start_time", "end_time", "duration", "category_id"):
            if column in updates:
                native[column] = updates[column]
        if "category_id" in updates:
            native["category"] = None
        return native
    if source_type is SourceType.AUTOMATIC:
        if "category_id" in updates:
            native["category_id"] = updates["category_id"]
            native["category"] = None
        return native
    if source_type is SourceType.POMODORO:
        if "title" in updates:
            native["task"] = updates["title"]
        return native
    raise ValueError(f"Unknown source type: {source_type!r}")


def tag_ids(tags: Iterable[Any]) -> list[int]:
    """Tag ids from Tag objects, mappings or bare ids, first occurrence kept."""
    ids: list[int] = []
    for tag in tags:
        if isinstance(tag, Tag):
            value: Optional[int] = tag.id
        elif isinstance(tag, Mapping):
            value = tag.get("id")
        else:
            value = tag
        if value is not None and int(value) not in ids:
            ids.append(int(value))
    return ids
