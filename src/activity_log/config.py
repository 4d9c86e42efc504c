"""Configuration models and helpers for the activity log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass(slots=True)
class ActivityLogSettings:
    """Runtime configuration for the unified activity service."""

    strict_bulk: bool = False
    browse_lookback: timedelta = timedelta(days=30)
    search_lookback: timedelta = timedelta(days=90)
    default_category_color: str = "#3B82F6"
    merge_group_gap: timedelta = timedelta(minutes=5)
    auto_merge_gap: timedelta = timedelta(seconds=60)
    lookup_window_start: datetime = datetime(1970, 1, 1, tzinfo=timezone.utc)
    lookup_window_end: datetime = datetime(2100, 12, 31, tzinfo=timezone.utc)

    @classmethod
    def from_options(
        cls,
        strict_bulk: bool = False,
        browse_days: float = 30.0,
        search_days: float = 90.0,
        merge_gap_seconds: float | None = None,
        auto_merge_seconds: float = 60.0,
    ) -> "ActivityLogSettings":
        merge_gap = merge_gap_seconds if merge_gap_seconds is not None else 300.0
        return cls(
            strict_bulk=strict_bulk,
            browse_lookback=timedelta(days=browse_days),
            search_lookback=timedelta(days=search_days),
            merge_group_gap=timedelta(seconds=merge_gap),
            auto_merge_gap=timedelta(seconds=auto_merge_seconds),
        )
