"""
Unit tests for conflict resolution, splitting and auto-merge
"""
import sqlite3
from datetime import timedelta

import pytest

from activity_log.merge import (
    CROSS_SOURCE_ERROR,
    MergeError,
    adjust_times_to_remove_overlap,
    split_activity,
)
from activity_log.models import ConflictResolution, SourceType


class TestAdjustTimes:
    """Test trimming overlaps without touching storage."""

    def test_each_end_moves_to_next_start(self, service, repos, at):
        repos.time_entries.insert("A", at(9), at(10))
        repos.time_entries.insert("B", at(9, 30), at(10, 30))
        repos.time_entries.insert("C", at(11), at(12))
        activities = service.get_unified_activities(at(0), at(24))

        adjusted = adjust_times_to_remove_overlap(list(reversed(activities)))

        assert [activity.title for activity in adjusted] == ["A", "B", "C"]
        assert adjusted[0].end_time == at(9, 30)
        assert adjusted[0].duration == 1800
        assert adjusted[1].end_time == at(10, 30)
        assert adjusted[2].end_time == at(12)
        assert activities[0].end_time == at(10)

    def test_shared_start_rejected(self, service, repos, at):
        repos.time_entries.insert("A", at(9), at(10))
        repos.time_entries.insert("B", at(9), at(9, 30))
        activities = service.get_unified_activities(at(0), at(24))

        with pytest.raises(MergeError):
            adjust_times_to_remove_overlap(activities)


class TestSplitActivity:
    """Test split previews."""

    def test_split_into_parts(self, service, repos, at):
        record_id = repos.time_entries.insert("Deep work", at(9), at(10))
        activity = service.get_unified_activity(record_id, SourceType.MANUAL)

        parts = split_activity(
            activity,
            ["2024-03-04T09:40:00Z", at(9, 20), at(9, 20), at(8), at(10)],
        )

        assert [part.title for part in parts] == [
            "Deep work (Part 1)",
            "Deep work (Part 2)",
            "Deep work (Part 3)",
        ]
        assert [(part.start_time, part.end_time) for part in parts] == [
            (at(9), at(9, 20)),
            (at(9, 20), at(9, 40)),
            (at(9, 40), at(10)),
        ]
        assert [part.duration for part in parts] == [1200, 1200, 1200]
        assert {part.id for part in parts} == {record_id}
        assert [part.metadata["split_part"] for part in parts] == [1, 2, 3]

    def test_no_inner_points_returns_original(self, service, repos, at):
        record_id = repos.time_entries.insert("Deep work", at(9), at(10))
        activity = service.get_unified_activity(record_id, SourceType.MANUAL)

        assert split_activity(activity, [at(9), at(11)]) == [activity]
        assert split_activity(activity, []) == [activity]

    def test_service_preview_does_not_write(self, service, repos, at):
        record_id = repos.time_entries.insert("Deep work", at(9), at(10))

        parts = service.split_activity(record_id, "manual", [at(9, 30)])

        assert len(parts) == 2
        assert repos.time_entries.get_row(record_id)["task"] == "Deep work"
        assert len(service.get_unified_activities(at(0), at(24))) == 1

    def test_service_unknown_activity(self, service, at):
        assert service.split_activity(99, "manual", [at(9, 30)]) == []


class TestResolveConflict:
    """Test resolving overlaps through storage."""

    def test_delete_one_keeps_earliest(self, service, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(10))
        second = repos.time_entries.insert("Build", at(9, 30), at(10, 30))

        result = service.resolve_conflict(
            [(second, "manual"), (first, "manual")], ConflictResolution.DELETE_ONE
        )

        assert result.success is True
        assert [(entry.activity.id, entry.action) for entry in result.resolved] == [
            (first, "keep"),
            (second, "delete"),
        ]
        assert repos.time_entries.get_row(first) is not None
        assert repos.time_entries.get_row(second) is None

    def test_delete_one_rolls_back_on_error(self, service, repos, at, monkeypatch):
        first = repos.app_usage.insert("Editor", at(9), at(10))
        second = repos.app_usage.insert("Terminal", at(9, 10), at(9, 20))
        third = repos.app_usage.insert("Browser", at(9, 15), at(9, 50))
        delete = repos.app_usage.delete

        def failing_delete(record_id):
            if record_id == third:
                raise sqlite3.OperationalError("database is locked")
            return delete(record_id)

        monkeypatch.setattr(repos.app_usage, "delete", failing_delete)

        result = service.resolve_conflict(
            [(first, "automatic"), (second, "automatic"), (third, "automatic")],
            "delete_one",
        )

        assert result.success is False
        assert repos.app_usage.get_row(second) is not None
        assert repos.app_usage.get_row(third) is not None

    def test_adjust_time_writes_trimmed_ranges(self, service, repos, at):
        first = repos.app_usage.insert("Editor", at(9), at(10))
        second = repos.app_usage.insert("Terminal", at(9, 45), at(10, 15))

        result = service.resolve_conflict(
            [(first, "automatic"), (second, "automatic")], "adjust_time"
        )

        assert result.success is True
        assert [entry.action for entry in result.resolved] == ["update", "keep"]
        trimmed = service.get_unified_activity(first, SourceType.AUTOMATIC)
        assert trimmed.end_time == at(9, 45)
        assert trimmed.duration == 2700
        assert service.get_activity_conflicts(at(0), at(24)) == []

    def test_adjust_time_shared_start_changes_nothing(self, service, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(10))
        second = repos.time_entries.insert("Build", at(9), at(9, 30))

        result = service.resolve_conflict(
            [(first, "manual"), (second, "manual")], "adjust_time"
        )

        assert result.success is False
        assert result.error == "Cannot adjust activities that start at the same time"
        assert repos.time_entries.get_row(first)["end_time"] == "2024-03-04T10:00:00.000Z"
        assert repos.time_entries.get_row(second)["end_time"] == "2024-03-04T09:30:00.000Z"

    def test_merge_resolution(self, service, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(9, 20))
        second = repos.time_entries.insert("Build", at(9, 10), at(10))

        result = service.resolve_conflict([(first, "manual"), (second, "manual")], "merge")

        assert result.success is True
        survivor, removed = result.resolved
        assert (survivor.activity.id, survivor.action) == (second, "update")
        assert survivor.activity.start_time == at(9)
        assert (removed.activity.id, removed.action) == (first, "delete")
        assert repos.time_entries.get_row(first) is None

    def test_detected_conflict_can_be_resolved(self, service, repos, at):
        repos.pomodoro_sessions.insert("Focus", "focus", at(9), at(9, 25))
        repos.pomodoro_sessions.insert("Focus again", "focus", at(9, 20), at(9, 45))
        (conflict,) = service.get_activity_conflicts(at(0), at(24))

        result = service.resolve_conflict(conflict, ConflictResolution.ADJUST_TIME)

        assert result.success is True
        assert service.get_activity_conflicts(at(0), at(24)) == []

    def test_unknown_resolution(self, service, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(10))
        second = repos.time_entries.insert("Build", at(9, 30), at(10, 30))

        result = service.resolve_conflict([(first, "manual"), (second, "manual")], "ignore")

        assert result.success is False
        assert result.error == "Unknown conflict resolution: ignore"

    def test_needs_two_activities(self, service, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(10))

        result = service.resolve_conflict([(first, "manual")], "delete_one")

        assert result.success is False
        assert repos.time_entries.get_row(first) is not None

    def test_cross_source_rejected(self, service, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(10))
        second = repos.app_usage.insert("Editor", at(9, 30), at(10, 30))

        result = service.resolve_conflict(
            [(first, "manual"), (second, "automatic")], "delete_one"
        )

        assert result.success is False
        assert result.error == CROSS_SOURCE_ERROR
        assert repos.app_usage.get_row(second) is not None


class TestAutoMerge:
    """Test merging runs of nearly adjacent activities."""

    def test_runs_merge_per_source(self, service, repos, at):
        editor = repos.app_usage.insert("Editor", at(9), at(9, 10))
        browser = repos.app_usage.insert(
            "Firefox", at(9, 10, 30), at(9, 30), domain="example.com", is_browser=True
        )
        manual = repos.time_entries.insert("Notes", at(9, 30, 30), at(9, 40))
        later = repos.app_usage.insert("Editor", at(11), at(11, 5))

        results = service.auto_merge(at(0), at(24))

        assert len(results) == 1
        assert results[0].success is True
        assert results[0].merged_activity.id == browser
        assert results[0].merged_activity.start_time == at(9)
        assert repos.app_usage.get_row(editor) is None
        assert repos.time_entries.get_row(manual) is not None
        assert repos.app_usage.get_row(later) is not None

    def test_threshold_override(self, service, repos, at):
        repos.time_entries.insert("A", at(9), at(9, 10))
        repos.time_entries.insert("B", at(9, 12), at(9, 20))

        assert service.auto_merge(at(0), at(24)) == []
        (result,) = service.auto_merge(at(0), at(24), timedelta(minutes=5))
        assert result.success is True
        assert len(service.get_unified_activities(at(0), at(24))) == 1
