"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./automation_engine.db"

# Base class for all database models
Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a new engine configured for the given database URL.

    SQLite connections are shared across the engine's worker threads, so
    ``check_same_thread`` is disabled and writers wait on the file lock
    instead of failing immediately. In-memory SQLite needs a single shared
    connection or every session would see an empty database.
    """
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            return create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        return create_engine(database_url, connect_args=connect_args, echo=echo)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def get_database_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Get or create the process-wide database engine."""
    global _engine

    if _engine is None:
        if database_url is None:
            database_url = os.getenv("AUTOMATION_ENGINE_DATABASE_URL", DEFAULT_DATABASE_URL)
        _engine = create_database_engine(database_url, echo=echo)
        logger.info(f"Created database engine for {_engine.url.render_as_string(hide_password=True)}")

    return _engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_session_factory() -> sessionmaker:
    """Session factory for the process-wide engine."""
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_database_engine())

    return _session_factory


def reset_database_engine():
    """Dispose the process-wide engine (mainly for tests and the CLI)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    # Register the mapped classes on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine or get_database_engine())
