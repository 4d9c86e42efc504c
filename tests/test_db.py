"""
Unit tests for the SQLite layer
"""
import sqlite3
from datetime import datetime, timezone

import pytest

from activity_log.db import (
    format_timestamp,
    parse_timestamp,
    seconds_between,
    transaction,
)


def _tag_names(conn):
    return [row["name"] for row in conn.execute("SELECT name FROM tags ORDER BY id")]


class TestSchema:
    """Test schema initialization."""

    def test_tables_created(self, conn):
        """Test every source and association table exists."""
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {
            "categories",
            "tags",
            "time_entries",
            "app_usage",
            "pomodoro_sessions",
            "activity_tags",
        } <= tables

    def test_pomodoro_session_type_checked(self, conn):
        """Test unknown session types are refused by the database."""
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO pomodoro_sessions (task, session_type, duration, start_time)"
                " VALUES ('x', 'nap', 0, '2024-03-04T09:00:00.000Z')"
            )


class TestTransaction:
    """Test transaction and savepoint handling."""

    def test_commit(self, conn):
        with transaction(conn):
            conn.execute("INSERT INTO tags (name) VALUES ('kept')")
        assert not conn.in_transaction
        assert _tag_names(conn) == ["kept"]

    def test_rollback_on_error(self, conn):
        with pytest.raises(RuntimeError):
            with transaction(conn):
                conn.execute("INSERT INTO tags (name) VALUES ('lost')")
                raise RuntimeError("boom")
        assert _tag_names(conn) == []

    def test_nested_rollback_keeps_outer_work(self, conn):
        """Test a failing inner block only undoes its own writes."""
        with transaction(conn):
            conn.execute("INSERT INTO tags (name) VALUES ('outer')")
            with pytest.raises(RuntimeError):
                with transaction(conn):
                    conn.execute("INSERT INTO tags (name) VALUES ('inner')")
                    raise RuntimeError("boom")
            conn.execute("INSERT INTO tags (name) VALUES ('after')")
        assert _tag_names(conn) == ["outer", "after"]

    def test_outer_rollback_discards_released_savepoint(self, conn):
        with pytest.raises(RuntimeError):
            with transaction(conn):
                with transaction(conn):
                    conn.execute("INSERT INTO tags (name) VALUES ('inner')")
                raise RuntimeError("boom")
        assert _tag_names(conn) == []


class TestTimestamps:
    """Test timestamp parsing and formatting."""

    def test_parse_zulu(self):
        parsed = parse_timestamp("2024-03-04T09:15:00.250Z")
        assert parsed == datetime(2024, 3, 4, 9, 15, 0, 250000, tzinfo=timezone.utc)

    def test_parse_naive_as_utc(self):
        assert parse_timestamp("2024-03-04T09:15:00").tzinfo == timezone.utc

    def test_parse_offset_converted(self):
        parsed = parse_timestamp("2024-03-04T10:15:00+01:00")
        assert parsed == datetime(2024, 3, 4, 9, 15, tzinfo=timezone.utc)

    def test_format_millisecond_precision(self):
        moment = datetime(2024, 3, 4, 9, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2024-03-04T09:00:00.123Z"

    def test_seconds_between_floors(self):
        assert seconds_between("2024-03-04T09:00:00.900Z", "2024-03-04T09:00:02.100Z") == 1
        assert seconds_between("2024-03-04T09:00:00Z", "2024-03-04T09:45:00Z") == 2700
