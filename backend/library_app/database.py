"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `library.db` next to the
package by default) and provides small helpers used by the application,
the seed script and tests.
"""

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.engine import Engine

from .config import settings
from . import models  # noqa: F401  (registers table metadata)


def _make_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = _make_engine(settings.DATABASE_URL)


def init_db(target: Engine):
    """Create all tables on `target` and apply column upgrades."""
    SQLModel.metadata.create_all(target)
    _ensure_notification_read_column(target)
    _ensure_book_statistics_column(target)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    init_db(engine)


def _ensure_notification_read_column(target: Engine):
    """Ensure the `is_read` column exists on notifications for older DB files.

    Early databases stored notifications without a read flag, so every
    notification looked unread. This is a lightweight, idempotent ALTER.
    """
    with target.connect() as conn:
        try:
            conn.exec_driver_sql("ALTER TABLE notification ADD COLUMN is_read BOOLEAN NOT NULL DEFAULT 0")
            conn.commit()
        except Exception:
            # ignore if column already exists
            conn.rollback()


def _ensure_book_statistics_column(target: Engine):
    """Ensure `times_borrowed` exists on books for older DB files."""
    with target.connect() as conn:
        try:
            conn.exec_driver_sql("ALTER TABLE book ADD COLUMN times_borrowed INTEGER NOT NULL DEFAULT 0")
            conn.commit()
        except Exception:
            conn.rollback()


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
