"""
Tests for the command-line interface
"""
from datetime import datetime, timedelta

import pytest
from typer.testing import CliRunner

from activity_log import server_runner
from activity_log.cli import _day_window, app


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def local_at():
    """Aware timestamps at local wall-clock times on 2024-03-04."""

    def _local_at(hour: int, minute: int = 0) -> datetime:
        return datetime(2024, 3, 4, hour, minute).astimezone()

    return _local_at


class TestCli:
    """Test CLI commands against a temporary database."""

    def test_list(self, runner, db_path, repos, local_at):
        repos.time_entries.insert("Plan the week", local_at(9), local_at(10))

        result = runner.invoke(app, ["list", "--date", "2024-03-04", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Plan the week" in result.output

    def test_list_empty_day(self, runner, db_path, conn):
        result = runner.invoke(app, ["list", "--date", "2024-03-05", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "No activity recorded" in result.output

    def test_invalid_date(self, runner, db_path):
        result = runner.invoke(app, ["list", "--date", "04/03/2024", "--db", str(db_path)])
        assert result.exit_code != 0

    def test_summary(self, runner, db_path, repos, local_at):
        repos.time_entries.insert("Plan", local_at(9), local_at(10))
        repos.app_usage.insert("Editor", local_at(10), local_at(10, 30))

        result = runner.invoke(app, ["summary", "--date", "2024-03-04", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Summary for 2024-03-04" in result.output
        assert "Top activities:" in result.output

    def test_stats(self, runner, db_path, repos, at):
        repos.time_entries.insert("Plan", at(9), at(10))

        result = runner.invoke(
            app,
            [
                "stats",
                "--start",
                "2024-03-04T00:00:00Z",
                "--end",
                "2024-03-05T00:00:00Z",
                "--db",
                str(db_path),
            ],
        )

        assert result.exit_code == 0
        assert "Activities:  1" in result.output
        assert "Tracked:     01:00:00" in result.output

    def test_conflicts(self, runner, db_path, repos, local_at):
        repos.time_entries.insert("Plan", local_at(9), local_at(10))
        repos.time_entries.insert("Build", local_at(9, 30), local_at(10, 30))

        result = runner.invoke(
            app, ["conflicts", "--date", "2024-03-04", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        assert 'Activities overlap: "Plan" and "Build"' in result.output

    def test_merge(self, runner, db_path, repos, at):
        first = repos.time_entries.insert("A", at(9), at(9, 20))
        second = repos.time_entries.insert("B", at(9, 15), at(9, 45))

        result = runner.invoke(
            app, ["merge", f"manual:{first}", f"manual:{second}", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        assert "Merged into:" in result.output
        assert repos.time_entries.get_row(first) is None

    def test_merge_cross_source_fails(self, runner, db_path, repos, at):
        first = repos.time_entries.insert("A", at(9), at(10))
        second = repos.app_usage.insert("Editor", at(9), at(10))

        result = runner.invoke(
            app, ["merge", f"manual:{first}", f"automatic:{second}", "--db", str(db_path)]
        )

        assert result.exit_code == 1

    def test_bad_reference(self, runner, db_path):
        result = runner.invoke(app, ["delete", "manual-1", "--db", str(db_path)])
        assert result.exit_code != 0

    def test_delete(self, runner, db_path, repos, at):
        record_id = repos.pomodoro_sessions.insert("Focus", "focus", at(9), at(9, 25))

        result = runner.invoke(app, ["delete", f"pomodoro:{record_id}", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Deleted 1, failed 0." in result.output

    def test_list_uses_local_day(self, runner, db_path, repos, local_at):
        repos.time_entries.insert("Late evening", local_at(23), local_at(23, 30))
        next_morning = local_at(23, 45) + timedelta(hours=9)
        repos.time_entries.insert("Next morning", next_morning, next_morning + timedelta(hours=1))

        result = runner.invoke(app, ["list", "--date", "2024-03-04", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Late evening" in result.output
        assert "Next morning" not in result.output

    def test_resolve_adjust_time(self, runner, db_path, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(10))
        second = repos.time_entries.insert("Build", at(9, 30), at(11))

        result = runner.invoke(
            app,
            [
                "resolve",
                f"manual:{first}",
                f"manual:{second}",
                "--resolution",
                "adjust_time",
                "--db",
                str(db_path),
            ],
        )

        assert result.exit_code == 0
        assert "update" in result.output
        assert repos.time_entries.get_row(first)["end_time"] == "2024-03-04T09:30:00.000Z"

    def test_resolve_needs_two_activities(self, runner, db_path, repos, at):
        first = repos.time_entries.insert("Plan", at(9), at(10))

        result = runner.invoke(app, ["resolve", f"manual:{first}", "--db", str(db_path)])

        assert result.exit_code == 1

    def test_serve_passes_settings(self, runner, db_path, monkeypatch):
        captured = {}
        monkeypatch.setattr(server_runner, "run_api", lambda **kwargs: captured.update(kwargs))

        result = runner.invoke(
            app,
            [
                "serve",
                "--db",
                str(db_path),
                "--strict-bulk",
                "--browse-days",
                "7",
                "--search-days",
                "14",
                "--merge-gap",
                "120",
                "--auto-merge-gap",
                "30",
            ],
        )

        assert result.exit_code == 0
        settings = captured["settings"]
        assert settings.strict_bulk is True
        assert settings.browse_lookback == timedelta(days=7)
        assert settings.search_lookback == timedelta(days=14)
        assert settings.merge_group_gap == timedelta(seconds=120)
        assert settings.auto_merge_gap == timedelta(seconds=30)


class TestDayWindow:
    """Test the local-day window used by date options."""

    def test_explicit_date_is_local_midnight(self):
        start, end = _day_window("2024-03-04")

        assert start.tzinfo is not None
        assert start == datetime(2024, 3, 4).astimezone()
        assert end == start + timedelta(days=1)

    def test_today_is_aware(self):
        start, end = _day_window(None)

        assert start.tzinfo is not None
        assert (start.hour, start.minute) == (0, 0)
        assert end - start == timedelta(days=1)
