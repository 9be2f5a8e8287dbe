"""
Database connection management for ChatRelay.

Provides database session management, connection handling, and transaction support.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatrelay.config import settings
from chatrelay.exceptions import ChatRelayError, StorageError

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on FK enforcement (and ON DELETE actions) for every SQLite connection."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for a database URL.

    SQLite engines allow cross-thread use (API worker threads, reaper thread)
    and enforce foreign keys; PostgreSQL engines use the configured pool.
    """
    if database_url.startswith("sqlite"):
        sqlite_engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        enable_sqlite_foreign_keys(sqlite_engine)
        return sqlite_engine

    return create_engine(
        database_url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_pre_ping=True,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )


# Create engine instance (singleton pattern)
engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

# Ensure tables exist for SQLite runs (in-memory databases don't persist schema)
if settings.database_url.startswith("sqlite"):
    from chatrelay.models.db import Base

    Base.metadata.create_all(bind=engine)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Yields:
        Session: A SQLAlchemy session

    Example:
        >>> with db_session() as db:
        >>>     root = SessionTreeRepository(db).get_root_by_session_id(sid)
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def unit_of_work(
    session_factory: SessionFactory, operation: str
) -> Generator[Session, None, None]:
    """
    Run one store operation in its own transaction.

    Commits on success and rolls back on any exception. SQLAlchemy errors are
    re-raised as StorageError naming the operation; ChatRelay domain errors
    propagate unchanged.

    Args:
        session_factory: Callable returning a new Session
        operation: Name of the operation, used in StorageError

    Yields:
        Session: A SQLAlchemy session

    Raises:
        StorageError: If the store rejects the operation or is unreachable
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except ChatRelayError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Storage operation {operation} failed: {e}")
        raise StorageError(operation, e) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind: Engine = engine) -> None:
    """
    Initialize the database.

    This function can be used to create tables programmatically,
    but in production we use Alembic migrations instead.

    Note:
        Prefer using Alembic migrations: `alembic upgrade head`
    """
    from chatrelay.models.db import Base

    Base.metadata.create_all(bind=bind)


def check_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with db_session() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
