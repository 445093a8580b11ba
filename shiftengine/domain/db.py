"""Database initialization and transaction utilities."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite:///shiftengine.db"


def _is_memory_sqlite(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


def create_db_engine(db_url: str = DEFAULT_DB_URL, echo: bool = False, busy_timeout: float = 5.0) -> Engine:
    """
    Create SQLAlchemy engine.

    SQLite connections are shared across worker threads and have foreign keys
    switched on so ON DELETE CASCADE holds at the database level too.
    """
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=echo)

    kwargs = {"connect_args": {"check_same_thread": False, "timeout": busy_timeout}}
    if _is_memory_sqlite(db_url):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def init_database(db_url: str = DEFAULT_DB_URL) -> Engine:
    """Initialize database and create all tables."""
    engine = create_db_engine(db_url)
    Base.metadata.create_all(engine)
    logger.info("Database initialized: %s", db_url)
    return engine


def get_session_factory(db_url: str = DEFAULT_DB_URL, engine: Engine | None = None) -> sessionmaker:
    """Get a session factory for the database."""
    engine = engine or create_db_engine(db_url)
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def transaction_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Provide a session whose work commits on success and rolls back on any error.

    Args:
        session_factory: Bound sessionmaker

    Yields:
        Session with an open transaction
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
