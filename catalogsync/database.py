"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for the offline item cache and for the
registrations of recurring jobs.
"""

from datetime import datetime, timezone
from pathlib import Path
from sqlalchemy import create_engine, event, text, Column, DateTime, Integer, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

SCHEMA_VERSION = 1


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form SQLite stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


Base = declarative_base()


class CachedItem(Base):
    """One row of the offline cache."""

    __tablename__ = "cached_items"

    url = Column(String, primary_key=True)
    position = Column(Integer, nullable=False)  # order within the last write
    updated = Column(String, nullable=False, default="")
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    thumbnail = Column(String, nullable=False, default="")
    cached_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ScheduledJob(Base):
    """Registration of a unique recurring job."""

    __tablename__ = "scheduled_jobs"

    name = Column(String, primary_key=True)
    period_seconds = Column(Integer, nullable=False)
    state = Column(String, nullable=False)
    next_run_at = Column(DateTime, nullable=False)
    run_attempt = Column(Integer, nullable=False, default=0)
    last_outcome = Column(String, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


def create_db_engine(db_path: Path) -> Engine:
    """
    Create an engine for the SQLite file at db_path.

    Connections may be used from worker threads, so the same-thread
    check is disabled.
    """
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


def init_database(db_path: Path) -> Engine:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Engine bound to the initialized database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(db_path)
    Base.metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(text(f"PRAGMA user_version = {SCHEMA_VERSION}"))
    return engine


def schema_version(engine: Engine) -> int:
    with engine.connect() as conn:
        return int(conn.execute(text("PRAGMA user_version")).scalar() or 0)

