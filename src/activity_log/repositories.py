"""Storage accessors for the three activity sources plus tags and categories."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable, Optional

from .db import Timestamp, format_timestamp, seconds_between, transaction
from .models import SourceType, Tag


logger = logging.getLogger(__name__)

_UNSET = object()

# Category resolution prefers the id column and falls back to the legacy
# free-text category name so rows written before category ids still resolve.
_CATEGORY_JOIN = """
    LEFT JOIN categories c ON c.id = COALESCE(
        {alias}.category_id,
        (SELECT id FROM categories WHERE name = {alias}.category)
    )
"""


class TagStore:
    """Tag catalogue and the polymorphic ``activity_tags`` association."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create(self, name: str, color: Optional[str] = None) -> int:
        if color is None:
            cur = self.conn.execute("INSERT INTO tags (name) VALUES (?)", (name,))
        else:
            cur = self.conn.execute(
                "INSERT INTO tags (name, color) VALUES (?, ?)", (name, color)
            )
        return int(cur.lastrowid)

    def get_all(self) -> list[Tag]:
        rows = self.conn.execute("SELECT id, name, color FROM tags ORDER BY name")
        return [Tag(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    def tags_for(self, record_id: int, source_table: str) -> list[Tag]:
        rows = self.conn.execute(
            """
            SELECT t.id, t.name, t.color
            FROM tags t
            JOIN activity_tags at ON at.tag_id = t.id
            WHERE at.record_id = ? AND at.source_table = ?
            ORDER BY t.name ASC
            """,
            (record_id, source_table),
        )
        return [Tag(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    def set_tags(self, record_id: int, source_table: str, tag_ids: Iterable[int]) -> None:
        """Replace every tag association of one record."""
        with transaction(self.conn):
            self.clear(record_id, source_table)
            self.add_tags(record_id, source_table, tag_ids)

    def add_tags(self, record_id: int, source_table: str, tag_ids: Iterable[int]) -> None:
        self.conn.executemany(
            """
            INSERT OR IGNORE INTO activity_tags (record_id, source_table, tag_id)
            VALUES (?, ?, ?)
            """,
            [(record_id, source_table, tag_id) for tag_id in tag_ids],
        )

    def remove_tags(self, record_id: int, source_table: str, tag_ids: Iterable[int]) -> None:
        self.conn.executemany(
            """
            DELETE FROM activity_tags
            WHERE record_id = ? AND source_table = ? AND tag_id = ?
            """,
            [(record_id, source_table, tag_id) for tag_id in tag_ids],
        )

    def clear(self, record_id: int, source_table: str) -> None:
        self.conn.execute(
            "DELETE FROM activity_tags WHERE record_id = ? AND source_table = ?",
            (record_id, source_table),
        )


class CategoryStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create(self, name: str, color: Optional[str] = None) -> int:
        if color is None:
            cur = self.conn.execute("INSERT INTO categories (name) VALUES (?)", (name,))
        else:
            cur = self.conn.execute(
                "INSERT INTO categories (name, color) VALUES (?, ?)", (name, color)
            )
        return int(cur.lastrowid)

    def get(self, category_id: int) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT id, name, color FROM categories WHERE id = ?", (category_id,)
        ).fetchone()

    def get_all(self) -> list[sqlite3.Row]:
        return list(self.conn.execute("SELECT id, name, color FROM categories ORDER BY name"))


class SourceRepository:
    """Shared plumbing for one source table."""

    source_type: SourceType
    range_query: str

    def __init__(self, conn: sqlite3.Connection, tags: Optional[TagStore] = None) -> None:
        self.conn = conn
        self.tags = tags or TagStore(conn)

    @property
    def table(self) -> str:
        return self.source_type.table

    def rows_in_range(self, start: Timestamp, end: Timestamp) -> list[sqlite3.Row]:
        """Finished rows whose range overlaps ``[start, end)``."""
        return list(
            self.conn.execute(
                self.range_query, (format_timestamp(end), format_timestamp(start))
            )
        )

    def get_row(self, record_id: int) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            f"SELECT * FROM {self.table} WHERE id = ?", (record_id,)
        ).fetchone()

    def delete(self, record_id: int) -> bool:
        with transaction(self.conn):
            cur = self.conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (record_id,))
            if cur.rowcount == 0:
                return False
            self.tags.clear(record_id, self.table)
        logger.debug("Deleted %s row id=%s", self.table, record_id)
        return True

    def get_tags(self, record_id: int) -> list[Tag]:
        return self.tags.tags_for(record_id, self.table)

    def set_tags(self, record_id: int, tag_ids: Iterable[int]) -> None:
        self.tags.set_tags(record_id, self.table, list(tag_ids))

    def add_tags(self, record_id: int, tag_ids: Iterable[int]) -> None:
        self.tags.add_tags(record_id, self.table, list(tag_ids))

    def remove_tags(self, record_id: int, tag_ids: Iterable[int]) -> None:
        self.tags.remove_tags(record_id, self.table, list(tag_ids))

    def _insert(self, values: dict[str, Any]) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        cur = self.conn.execute(
            f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )
        return int(cur.lastrowid)

    def _update(self, record_id: int, values: dict[str, Any]) -> bool:
        if not values:
            return False
        assignments = ", ".join(f"{column} = ?" for column in values)
        cur = self.conn.execute(
            f"UPDATE {self.table} SET {assignments} WHERE id = ?",
            [*values.values(), record_id],
        )
        return cur.rowcount > 0


def _collect(**fields: Any) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for column, value in fields.items():
        if value is _UNSET:
            continue
        if column in ("start_time", "end_time") and value is not None:
            value = format_timestamp(value)
        elif isinstance(value, bool):
            value = 1 if value else 0
        values[column] = value
    return values


def _derived_duration(
    start_time: Timestamp, end_time: Optional[Timestamp], duration: Optional[int]
) -> Optional[int]:
    if duration is not None or end_time is None:
        return duration
    return max(seconds_between(start_time, end_time), 0)


class TimeEntryRepository(SourceRepository):
    """Manually logged time entries."""

    source_type = SourceType.MANUAL
    range_query = (
        """
        SELECT
            te.id,
            te.task,
            te.start_time,
            te.end_time,
            te.duration,
            te.category,
            te.created_at,
            c.id AS category_id,
            c.name AS category_name,
            c.color AS category_color
        FROM time_entries te
        """
        + _CATEGORY_JOIN.format(alias="te")
        + """
        WHERE te.end_time IS NOT NULL
            AND julianday(te.start_time) < julianday(?)
            AND julianday(te.end_time) > julianday(?)
        ORDER BY te.start_time ASC
        """
    )

    def insert(
        self,
        task: str,
        start_time: Timestamp,
        end_time: Optional[Timestamp] = None,
        *,
        duration: Optional[int] = None,
        category: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> int:
        return self._insert(
            _collect(
                task=task,
                start_time=start_time,
                end_time=end_time,
                duration=_derived_duration(start_time, end_time, duration),
                category=category,
                category_id=category_id,
            )
        )

    def update(
        self,
        record_id: int,
        *,
        task: object = _UNSET,
        start_time: object = _UNSET,
        end_time: object = _UNSET,
        duration: object = _UNSET,
        category_id: object = _UNSET,
        category: object = _UNSET,
    ) -> bool:
        return self._update(
            record_id,
            _collect(
                task=task,
                start_time=start_time,
                end_time=end_time,
                duration=duration,
                category_id=category_id,
                category=category,
            ),
        )


class AppUsageRepository(SourceRepository):
    """Passively captured application and browser usage."""

    source_type = SourceType.AUTOMATIC
    range_query = (
        """
        SELECT
            au.id,
            au.app_name,
            au.window_title,
            au.start_time,
            au.end_time,
            au.duration,
            au.category,
            au.domain,
            au.url,
            au.is_browser,
            au.is_idle,
            au.created_at,
            c.id AS category_id,
            c.name AS category_name,
            c.color AS category_color
        FROM app_usage au
        """
        + _CATEGORY_JOIN.format(alias="au")
        + """
        WHERE au.end_time IS NOT NULL
            AND julianday(au.start_time) < julianday(?)
            AND julianday(au.end_time) > julianday(?)
        ORDER BY au.start_time ASC
        """
    )

    def insert(
        self,
        app_name: str,
        start_time: Timestamp,
        end_time: Optional[Timestamp] = None,
        *,
        window_title: Optional[str] = None,
        domain: Optional[str] = None,
        url: Optional[str] = None,
        is_browser: bool = False,
        is_idle: bool = False,
        duration: Optional[int] = None,
        category: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> int:
        return self._insert(
            _collect(
                app_name=app_name,
                window_title=window_title,
                domain=domain,
                url=url,
                start_time=start_time,
                end_time=end_time,
                duration=_derived_duration(start_time, end_time, duration),
                is_browser=is_browser,
                is_idle=is_idle,
                category=category,
                category_id=category_id,
            )
        )

    def update(
        self,
        record_id: int,
        *,
        category_id: object = _UNSET,
        start_time: object = _UNSET,
        end_time: object = _UNSET,
        duration: object = _UNSET,
        category: object = _UNSET,
    ) -> bool:
        return self._update(
            record_id,
            _collect(
                category_id=category_id,
                category=category,
                start_time=start_time,
                end_time=end_time,
                duration=duration,
            ),
        )


class PomodoroSessionRepository(SourceRepository):
    """Structured focus and break sessions."""

    source_type = SourceType.POMODORO
    range_query = """
        SELECT
            ps.id,
            ps.task,
            ps.session_type,
            ps.start_time,
            ps.end_time,
            ps.duration,
            ps.completed,
            ps.interrupted,
            ps.created_at
        FROM pomodoro_sessions ps
        WHERE ps.end_time IS NOT NULL
            AND julianday(ps.start_time) < julianday(?)
            AND julianday(ps.end_time) > julianday(?)
        ORDER BY ps.start_time ASC
    """

    def insert(
        self,
        task: str,
        session_type: str,
        start_time: Timestamp,
        end_time: Optional[Timestamp] = None,
        *,
        duration: Optional[int] = None,
        completed: bool = False,
        interrupted: bool = False,
    ) -> int:
        return self._insert(
            _collect(
                task=task,
                session_type=session_type,
                start_time=start_time,
                end_time=end_time,
                duration=_derived_duration(start_time, end_time, duration) or 0,
                completed=completed,
                interrupted=interrupted,
            )
        )

    def update(
        self,
        record_id: int,
        *,
        task: object = _UNSET,
        start_time: object = _UNSET,
        end_time: object = _UNSET,
        duration: object = _UNSET,
    ) -> bool:
        return self._update(
            record_id,
            _collect(
                task=task,
                start_time=start_time,
                end_time=end_time,
                duration=duration,
            ),
        )


class SourceRepositories:
    """All three source repositories sharing one connection and tag store."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.tags = TagStore(conn)
        self.categories = CategoryStore(conn)
        self.time_entries = TimeEntryRepository(conn, self.tags)
        self.app_usage = AppUsageRepository(conn, self.tags)
        self.pomodoro_sessions = PomodoroSessionRepository(conn, self.tags)

    def for_source(self, source_type: SourceType) -> SourceRepository:
        source_type = SourceType(source_type)
        if source_type is SourceType.MANUAL:
            return self.time_entries
        if source_type is SourceType.AUTOMATIC:
            return self.app_usage
        if source_type is SourceType.POMODORO:
            return self.pomodoro_sessions
        raise ValueError(f"Unknown source type: {source_type!r}")
