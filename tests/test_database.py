"""
Tests for database.py - SQLite schema and connections.
"""

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from catalogsync.database import (
    SCHEMA_VERSION,
    CachedItem,
    ScheduledJob,
    init_database,
    schema_version,
    utcnow,
)


@pytest.fixture
def db_session(engine):
    """Session on the fixture database."""
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path).dispose()

        assert db_path.exists()

    def test_init_creates_tables(self, db_session):
        """Test that both tables exist and start empty."""
        assert db_session.query(CachedItem).count() == 0
        assert db_session.query(ScheduledJob).count() == 0

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path).dispose()

        assert db_path.exists()

    def test_init_is_idempotent(self, db_path, db_session):
        """Running init again keeps existing rows."""
        db_session.add(CachedItem(url="https://example.com/a", position=0, title="A"))
        db_session.commit()

        engine = init_database(db_path)
        session = sessionmaker(bind=engine)()
        try:
            assert session.query(CachedItem).count() == 1
        finally:
            session.close()
            engine.dispose()

    def test_schema_version_recorded(self, engine):
        assert schema_version(engine) == SCHEMA_VERSION


class TestCachedItemModel:
    """Test the cached item table."""

    def test_defaults(self, db_session):
        """Optional columns default to empty strings and a timestamp."""
        db_session.add(CachedItem(url="https://example.com/a", position=0, title="A"))
        db_session.commit()

        row = db_session.get(CachedItem, "https://example.com/a")
        assert row.description == ""
        assert row.thumbnail == ""
        assert row.updated == ""
        assert isinstance(row.cached_at, datetime)

    def test_url_is_unique(self, db_session):
        """Two rows cannot share a url."""
        db_session.add(CachedItem(url="https://example.com/a", position=0, title="A"))
        db_session.commit()

        db_session.add(CachedItem(url="https://example.com/a", position=1, title="A again"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_title_required(self, db_session):
        db_session.add(CachedItem(url="https://example.com/a", position=0, title=None))
        with pytest.raises(IntegrityError):
            db_session.commit()


class TestScheduledJobModel:
    """Test the scheduled job table."""

    def test_insert_and_read(self, db_session):
        run_at = datetime(2024, 1, 1, 12, 0, 0)
        db_session.add(ScheduledJob(
            name="RefreshDataWorker",
            period_seconds=86400,
            state="scheduled",
            next_run_at=run_at,
        ))
        db_session.commit()

        job = db_session.get(ScheduledJob, "RefreshDataWorker")
        assert job.period_seconds == 86400
        assert job.next_run_at == run_at
        assert job.run_attempt == 0
        assert job.last_outcome is None


class TestUtcNow:
    """Test the clock used for stored timestamps."""

    def test_naive_utc(self):
        now = utcnow()
        aware = datetime.now(timezone.utc).replace(tzinfo=None)

        assert now.tzinfo is None
        assert abs(aware - now) < timedelta(seconds=5)
