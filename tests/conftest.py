"""
Pytest configuration and fixtures
"""
from datetime import datetime, timedelta, timezone

import pytest

from activity_log.config import ActivityLogSettings
from activity_log.db import database_connection
from activity_log.service import UnifiedActivityService

DAY = datetime(2024, 3, 4, tzinfo=timezone.utc)


@pytest.fixture
def at():
    """Build UTC timestamps on the test day: ``at(9, 30)``."""

    def _at(hour: int, minute: int = 0, second: int = 0) -> datetime:
        return DAY + timedelta(hours=hour, minutes=minute, seconds=second)

    return _at


@pytest.fixture
def db_path(tmp_path):
    """Location of a fresh SQLite database."""
    return tmp_path / "activity_log.sqlite3"


@pytest.fixture
def conn(db_path):
    """Open connection with the schema initialized."""
    with database_connection(db_path) as connection:
        yield connection


@pytest.fixture
def settings():
    return ActivityLogSettings()


@pytest.fixture
def service(conn, settings):
    return UnifiedActivityService(conn, settings)


@pytest.fixture
def repos(service):
    """Source repositories sharing the service connection."""
    return service.repositories
