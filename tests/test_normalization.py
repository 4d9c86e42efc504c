"""
Unit tests for projecting source rows onto unified activities
"""
import pytest

from activity_log.models import MUTABLE_FIELDS, ActivityType, SourceType


@pytest.fixture
def day_activities(service, at):
    """Fetch everything recorded on the test day."""

    def _fetch():
        return service.get_unified_activities(at(0), at(24))

    return _fetch


class TestTimeEntries:
    """Test manual time entries."""

    def test_fields_and_category(self, repos, at, day_activities):
        category_id = repos.categories.create("Work", "#111111")
        record_id = repos.time_entries.insert(
            "Write report", at(9), at(10), category_id=category_id
        )

        (activity,) = day_activities()
        assert activity.id == record_id
        assert activity.source_type is SourceType.MANUAL
        assert activity.type is ActivityType.TIME_ENTRY
        assert activity.title == "Write report"
        assert activity.duration == 3600
        assert activity.category_name == "Work"
        assert activity.category_color == "#111111"
        assert activity.is_editable is True
        assert activity.editable_fields == MUTABLE_FIELDS
        assert activity.metadata["original_table"] == "time_entries"

    def test_legacy_category_name_resolves(self, repos, at, day_activities):
        category_id = repos.categories.create("Admin")
        repos.time_entries.insert("Invoices", at(9), at(9, 30), category="Admin")

        (activity,) = day_activities()
        assert activity.category_id == category_id
        assert activity.category_name == "Admin"

    def test_missing_duration_derived_from_range(self, conn, day_activities):
        conn.execute(
            "INSERT INTO time_entries (task, start_time, end_time) VALUES (?, ?, ?)",
            ("Raw", "2024-03-04T09:00:00.000Z", "2024-03-04T09:20:30.000Z"),
        )

        (activity,) = day_activities()
        assert activity.duration == 1230

    def test_unfinished_entries_skipped(self, repos, at, day_activities):
        repos.time_entries.insert("Running", at(9))
        assert day_activities() == []

    def test_tags_ordered_by_name(self, repos, at, day_activities):
        zeta = repos.tags.create("zeta")
        alpha = repos.tags.create("alpha")
        record_id = repos.time_entries.insert("Tagged", at(9), at(10))
        repos.time_entries.set_tags(record_id, [zeta, alpha])

        (activity,) = day_activities()
        assert [tag.name for tag in activity.tags] == ["alpha", "zeta"]
        assert activity.tag_ids == [alpha, zeta]


class TestAppUsage:
    """Test automatically captured usage."""

    def test_browser_titled_by_domain(self, repos, at, day_activities):
        repos.app_usage.insert(
            "Firefox",
            at(9),
            at(9, 10),
            is_browser=True,
            domain="docs.python.org",
            url="https://docs.python.org/3/",
        )

        (activity,) = day_activities()
        assert activity.type is ActivityType.BROWSER
        assert activity.title == "docs.python.org"
        assert activity.metadata["is_browser"] is True
        assert activity.metadata["url"] == "https://docs.python.org/3/"
        assert activity.editable_fields == ("category_id", "tags")

    def test_browser_without_domain_uses_app_name(self, repos, at, day_activities):
        repos.app_usage.insert("Firefox", at(9), at(9, 10), is_browser=True)

        (activity,) = day_activities()
        assert activity.title == "Firefox"

    def test_plain_app(self, repos, at, day_activities):
        repos.app_usage.insert("Editor", at(9), at(9, 5), window_title="main.py", is_idle=True)

        (activity,) = day_activities()
        assert activity.type is ActivityType.APP
        assert activity.title == "Editor"
        assert activity.metadata["window_title"] == "main.py"
        assert activity.metadata["is_idle"] is True


class TestPomodoroSessions:
    """Test pomodoro focus and break sessions."""

    def test_focus_session(self, repos, at, day_activities):
        repos.pomodoro_sessions.insert("Deep work", "focus", at(9), at(9, 25), completed=True)

        (activity,) = day_activities()
        assert activity.type is ActivityType.POMODORO_FOCUS
        assert activity.title == "Deep work"
        assert activity.editable_fields == ("title", "tags")
        assert activity.metadata["completed"] is True
        assert activity.category_id is None

    @pytest.mark.parametrize(
        "session_type, title",
        [("shortBreak", "Short Break"), ("longBreak", "Long Break")],
    )
    def test_break_session(self, repos, at, day_activities, session_type, title):
        repos.pomodoro_sessions.insert("ignored", session_type, at(9), at(9, 5))

        (activity,) = day_activities()
        assert activity.type is ActivityType.POMODORO_BREAK
        assert activity.title == title
        assert activity.editable_fields == ("tags",)
