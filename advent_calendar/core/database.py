"""
Database configuration and session management.

Synchronous SQLAlchemy engine and session factory. Each request runs on its
own worker thread and owns exactly one Session for its whole lifetime (see
advent_calendar.pipeline.filters.transaction_filter).
"""
import logging
from typing import Tuple

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Declarative base for ORM models
Base = declarative_base()


def create_database(db_url: str) -> Tuple[Engine, sessionmaker]:
    """
    Create an engine and session factory for the given URL.

    SQLite connections are shared across worker threads, and an in-memory
    SQLite database is pinned to a single connection so every session sees
    the same data.

    Args:
        db_url: SQLAlchemy database URL

    Returns:
        Tuple of (engine, session factory)
    """
    kwargs = {}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(db_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return engine, session_factory


def init_database(engine: Engine) -> None:
    """
    Create tables if they don't exist.

    Schema migration is handled outside the application; this keeps a fresh
    database (and the test database) usable.
    """
    from advent_calendar.auth import db_models  # noqa: F401
    from advent_calendar.web import days  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
