"""
Database configuration and session management for the check-in authentication service.

This module provides SQLAlchemy setup, session management and database
initialization. Credentials, login attempts and refresh tokens live here; user
sessions do not (see checkin_auth.sessions).
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from checkin_auth.config import settings

# Create SQLAlchemy base class for models
Base = declarative_base()


# PUBLIC_INTERFACE
def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime, matching the DateTime columns.

    Returns:
        Naive datetime in UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Configure SQLite to enforce foreign key constraints
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class Database:
    """Database connection and session management."""

    def __init__(self, db_url: Optional[str] = None, engine: Optional[Engine] = None):
        """
        Initialize the database connection.

        Args:
            db_url: Database URL. If None, uses the URL from settings.
            engine: Pre-built engine, used by tests to share an in-memory database.
        """
        if engine is None:
            if db_url is None:
                db_url = settings.DATABASE_URL

            connect_args = {}
            engine_args = {}
            if db_url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
                # seconds to wait on a locked database before failing
                connect_args["timeout"] = settings.DATABASE_TIMEOUT_SECONDS
            else:
                engine_args["pool_timeout"] = settings.DATABASE_TIMEOUT_SECONDS
                engine_args["pool_pre_ping"] = True

            engine = create_engine(
                db_url,
                connect_args=connect_args,
                echo=settings.DATABASE_ECHO,
                **engine_args,
            )

        self.engine = engine
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_all(self) -> None:
        """Create all tables defined in the models."""
        # models register themselves on Base when imported
        import checkin_auth.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """Drop all tables. Use with caution, primarily for testing."""
        Base.metadata.drop_all(bind=self.engine)

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            A new SQLAlchemy session.
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, Any, None]:
        """
        Context manager for database sessions.

        Provides automatic commit/rollback and session closing.

        Yields:
            An active SQLAlchemy session.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# PUBLIC_INTERFACE
def init_db(db_url: Optional[str] = None) -> Database:
    """
    Build a Database and create all required tables.

    Args:
        db_url: Optional database URL. If None, uses the URL from settings.

    Returns:
        The initialized Database.
    """
    db = Database(db_url)
    db.create_all()
    return db
