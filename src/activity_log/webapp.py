"""FastAPI application exposing the unified activity log as a local JSON API."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from .config import ActivityLogSettings
from .db import database_connection, parse_timestamp
from .models import (
    ActivityFilters,
    ActivityKey,
    ActivityType,
    BulkActivityOperation,
    ConflictResolution,
    MergeStrategy,
    SourceType,
)
from .paths import get_db_path
from .service import UnifiedActivityService


class ActivityUpdatePayload(BaseModel):
    title: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    category_id: Optional[int] = None
    tags: Optional[List[int]] = None

    model_config = ConfigDict(extra="forbid")


class ActivityRef(BaseModel):
    id: int
    source_type: SourceType

    model_config = ConfigDict(extra="forbid")

    def key(self) -> ActivityKey:
        return self.id, self.source_type


class BulkUpdatePayload(BaseModel):
    activity_ids: List[ActivityRef]
    updates: ActivityUpdatePayload = ActivityUpdatePayload()
    add_tag_ids: List[int] = []
    remove_tag_ids: List[int] = []
    strict: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class BulkDeletePayload(BaseModel):
    activity_ids: List[ActivityRef]
    strict: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class MergePayload(BaseModel):
    activity_ids: List[ActivityRef]
    strategy: MergeStrategy = MergeStrategy.LONGEST

    model_config = ConfigDict(extra="forbid")


class ConflictResolutionPayload(BaseModel):
    activity_ids: List[ActivityRef]
    resolution: ConflictResolution

    model_config = ConfigDict(extra="forbid")


class SplitPayload(BaseModel):
    split_points: List[datetime]

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[ActivityLogSettings] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or ActivityLogSettings()

    app = FastAPI(title="Activity Log", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.settings = resolved_settings

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "database_path": str(request.app.state.db_path),
            "strict_bulk": resolved_settings.strict_bulk,
        }

    @app.get("/api/activities")
    def list_activities(
        request: Request,
        start: Optional[str] = Query(default=None, description="Window start (ISO-8601)."),
        end: Optional[str] = Query(default=None, description="Window end (ISO-8601)."),
        source_type: Optional[List[SourceType]] = Query(default=None),
        activity_type: Optional[List[ActivityType]] = Query(default=None),
        category: Optional[List[int]] = Query(default=None),
        tag: Optional[List[int]] = Query(default=None),
        search: Optional[str] = Query(default=None),
        min_duration: Optional[int] = Query(default=None, ge=0),
        max_duration: Optional[int] = Query(default=None, ge=0),
        is_editable: Optional[bool] = Query(default=None),
    ) -> Dict[str, Any]:
        window_start, window_end = _window(start, end)
        filters = ActivityFilters(
            source_types=source_type,
            activity_types=activity_type,
            categories=category,
            tags=tag,
            search_query=search,
            min_duration=min_duration,
            max_duration=max_duration,
            is_editable=is_editable,
        )
        with _service(request) as service:
            activities = service.get_unified_activities(window_start, window_end, filters)
        return {
            "start": window_start.isoformat(),
            "end": window_end.isoformat(),
            "activities": [activity.to_dict() for activity in activities],
        }

    @app.get("/api/activities/{source_type}/{activity_id}")
    def get_activity(source_type: SourceType, activity_id: int, request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            activity = service.get_unified_activity(activity_id, source_type)
        if activity is None:
            raise HTTPException(status_code=404, detail="Activity not found")
        return activity.to_dict()

    @app.patch("/api/activities/{source_type}/{activity_id}")
    def update_activity(
        source_type: SourceType,
        activity_id: int,
        payload: ActivityUpdatePayload,
        request: Request,
    ) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True)
        with _service(request) as service:
            success = service.update_unified_activity(activity_id, source_type, updates)
            activity = service.get_unified_activity(activity_id, source_type)
        return {
            "success": success,
            "activity": activity.to_dict() if activity else None,
        }

    @app.delete("/api/activities/{source_type}/{activity_id}")
    def delete_activity(source_type: SourceType, activity_id: int, request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            success = service.delete_unified_activity(activity_id, source_type)
        return {"success": success}

    @app.post("/api/activities/bulk-update")
    def bulk_update(payload: BulkUpdatePayload, request: Request) -> Dict[str, Any]:
        operation = BulkActivityOperation(
            activity_ids=[ref.key() for ref in payload.activity_ids],
            updates=payload.updates.model_dump(exclude_unset=True),
            add_tag_ids=payload.add_tag_ids,
            remove_tag_ids=payload.remove_tag_ids,
        )
        with _service(request) as service:
            result = service.bulk_update_activities(operation, strict=payload.strict)
        return result.to_dict()

    @app.post("/api/activities/bulk-delete")
    def bulk_delete(payload: BulkDeletePayload, request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            result = service.bulk_delete_activities(
                [ref.key() for ref in payload.activity_ids], strict=payload.strict
            )
        return result.to_dict()

    @app.post("/api/activities/merge")
    def merge_activities(payload: MergePayload, request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            result = service.merge_activities_by_id(
                [ref.key() for ref in payload.activity_ids], payload.strategy
            )
        return result.to_dict()

    @app.post("/api/activities/merge-suggestion")
    def merge_suggestion(payload: MergePayload, request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            suggestion = service.suggest_merge([ref.key() for ref in payload.activity_ids])
        return suggestion.to_dict()

    @app.get("/api/conflicts")
    def conflicts(
        request: Request,
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        window_start, window_end = _window(start, end)
        with _service(request) as service:
            found = service.get_activity_conflicts(window_start, window_end)
            flagged = sorted(
                {activity.key for conflict in found for activity in conflict.activities},
                key=lambda key: (key[1].value, key[0]),
            )
        return {
            "conflicts": [conflict.to_dict() for conflict in found],
            "flagged": [{"id": record_id, "source_type": source.value} for record_id, source in flagged],
        }

    @app.post("/api/conflicts/resolve")
    def resolve_conflict(payload: ConflictResolutionPayload, request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            result = service.resolve_conflict(
                [ref.key() for ref in payload.activity_ids], payload.resolution
            )
        return result.to_dict()

    @app.post("/api/activities/{source_type}/{activity_id}/split-preview")
    def split_preview(
        source_type: SourceType,
        activity_id: int,
        payload: SplitPayload,
        request: Request,
    ) -> Dict[str, Any]:
        with _service(request) as service:
            parts = service.split_activity(activity_id, source_type, payload.split_points)
        if not parts:
            raise HTTPException(status_code=404, detail="Activity not found")
        return {"parts": [part.to_dict() for part in parts]}

    @app.get("/api/gaps")
    def gaps(
        request: Request,
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        window_start, window_end = _window(start, end)
        with _service(request) as service:
            found = service.get_activity_gaps(window_start, window_end)
        return {"gaps": [gap.to_dict() for gap in found]}

    @app.get("/api/stats")
    def stats(
        request: Request,
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        window_start, window_end = _window(start, end)
        with _service(request) as service:
            result = service.get_unified_activity_stats(window_start, window_end)
        return result.to_dict()

    @app.get("/api/categories")
    def categories(request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            rows = service.repositories.categories.get_all()
        return {"categories": [dict(row) for row in rows]}

    @app.get("/api/tags")
    def tags(request: Request) -> Dict[str, Any]:
        with _service(request) as service:
            found = service.repositories.tags.get_all()
        return {"tags": [tag.to_dict() for tag in found]}

    @app.get("/api/search")
    def search(
        request: Request,
        q: str = Query(default="", description="Text to search for."),
        source_type: Optional[List[SourceType]] = Query(default=None),
    ) -> Dict[str, Any]:
        filters = ActivityFilters(source_types=source_type) if source_type else None
        with _service(request) as service:
            activities = service.search_activities(q, filters)
        return {"query": q, "activities": [activity.to_dict() for activity in activities]}

    return app


@contextmanager
def _service(request: Request) -> Iterator[UnifiedActivityService]:
    with database_connection(request.app.state.db_path) as conn:
        yield UnifiedActivityService(conn, request.app.state.settings)


def _window(start: Optional[str], end: Optional[str]) -> tuple[datetime, datetime]:
    """Resolve query bounds; both default to the current UTC day."""
    window_start = _parse_timestamp_param(start) if start else _start_of_day(datetime.now(timezone.utc))
    window_end = _parse_timestamp_param(end) if end else window_start + timedelta(days=1)
    if window_end <= window_start:
        raise HTTPException(status_code=400, detail="end must be after start")
    return window_start, window_end


def _parse_timestamp_param(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid timestamp format") from exc


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
