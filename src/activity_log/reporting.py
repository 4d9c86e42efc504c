"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from .models import ActivityConflict, UnifiedActivity, UnifiedActivityStats
from .service import UnifiedActivityService


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, service: UnifiedActivityService) -> None:
        self.service = service

    def print_daily_summary(self, day: datetime) -> None:
        start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        stats = self.service.get_unified_activity_stats(start, end)
        if stats.total_activities == 0:
            print("No activity recorded for the selected day.")
            return

        print(f"Summary for {start.strftime('%Y-%m-%d')}")
        print("-" * 40)
        for line in format_stats(stats):
            print(line)

        activities = self.service.get_unified_activities(start, end)
        top = aggregate_by_title(activities)
        if top:
            print()
            print("Top activities:")
            for title, seconds in top[:5]:
                print(f"  {title[:30]:<30} {format_duration(seconds)}")


def format_stats(stats: UnifiedActivityStats) -> list[str]:
    lines = [
        f"Activities:  {stats.total_activities}",
        f"Tracked:     {format_duration(stats.total_duration)}",
        "Sources:     "
        + ", ".join(f"{name}={count}" for name, count in stats.by_source_type.items()),
        f"Conflicts:   {stats.conflicts_count}",
        f"Gaps:        {stats.gaps_detected}",
    ]
    if stats.by_category:
        lines.append("")
        lines.append("By category:")
        for entry in stats.by_category:
            lines.append(
                f"  {entry.category_name:<20} {format_duration(entry.total_time)} "
                f"{entry.percentage:5.1f}%"
            )
    return lines


def format_activity(activity: UnifiedActivity) -> str:
    tags = ", ".join(tag.name for tag in activity.tags)
    return (
        f"{activity.source_type.value:<9} #{activity.id:<5} "
        f"{activity.start_time.strftime('%Y-%m-%d %H:%M')} "
        f"{format_duration(activity.duration)}  {activity.title}"
        + (f"  [{tags}]" if tags else "")
    )


def format_conflict(conflict: ActivityConflict) -> str:
    first, second = conflict.activities
    return (
        f"{conflict.message} "
        f"({first.source_type.value} #{first.id} / #{second.id}, "
        f"suggested: {conflict.suggested_resolution})"
    )


def aggregate_by_title(activities: Iterable[UnifiedActivity]) -> list[tuple[str, int]]:
    totals: dict[str, int] = {}
    for activity in activities:
        totals[activity.title] = totals.get(activity.title, 0) + activity.duration
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
