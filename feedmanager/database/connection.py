"""
Database connection management for the feed manager.

Provides a lazily-initialised SQLAlchemy engine and session factory built
from configuration, plus ``session_scope`` factories that jobs and the
scheduler receive by injection instead of reaching for the globals.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, ContextManager, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from feedmanager.config import FeedManagerConfig, get_config

logger = logging.getLogger(__name__)

# A zero-argument callable returning a transactional session context
SessionFactory = Callable[[], ContextManager[Session]]

# Global engine and session maker (lazy-loaded)
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_db_path(config: Optional[FeedManagerConfig] = None) -> Optional[Path]:
    """
    Get the SQLite database file path, if the database is SQLite on disk.

    Args:
        config: Feed manager configuration (uses global if not provided)

    Returns:
        Path to the SQLite database file, or None for other backends
    """
    if config is None:
        config = get_config()

    db_url = config.database_url
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        return Path(db_url[10:])
    return None


def build_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite engines allow cross-thread access and enforce foreign keys.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": 30,
            },
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(database_url, pool_pre_ping=True, pool_recycle=3600)


def init_engine(config: Optional[FeedManagerConfig] = None) -> Engine:
    """
    Initialize the global SQLAlchemy engine.

    Args:
        config: Feed manager configuration (uses global if not provided)

    Returns:
        Configured SQLAlchemy engine
    """
    global _engine

    if _engine is not None:
        return _engine

    if config is None:
        config = get_config()

    db_path = get_db_path(config)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    _engine = build_engine(config.database_url)
    logger.debug(f"Database engine initialized: {config.database_url}")
    return _engine


def get_session_maker(config: Optional[FeedManagerConfig] = None) -> sessionmaker:
    """Get or create the global session maker."""
    global _SessionLocal

    if _SessionLocal is not None:
        return _SessionLocal

    _SessionLocal = sessionmaker(
        bind=init_engine(config),
        autoflush=False,
        expire_on_commit=False,
    )
    return _SessionLocal


def make_session_factory(maker: sessionmaker) -> SessionFactory:
    """
    Wrap a session maker into a transactional session factory.

    Each call yields a session that commits on success and rolls back on
    error. Records stay readable after the session closes.

    Usage:
        session_scope = make_session_factory(maker)
        with session_scope() as session:
            project = session.get(Project, project_id)
    """

    @contextmanager
    def session_scope() -> Generator[Session, None, None]:
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope


@contextmanager
def get_db_session(config: Optional[FeedManagerConfig] = None) -> Generator[Session, None, None]:
    """
    Get a session from the global session maker.

    Usage:
        with get_db_session() as session:
            feed_source = session.get(FeedSource, feed_source_id)
    """
    with make_session_factory(get_session_maker(config))() as session:
        yield session


def create_tables(config: Optional[FeedManagerConfig] = None) -> None:
    """Create all database tables."""
    from feedmanager.database.models import Base

    Base.metadata.create_all(bind=init_engine(config))
    logger.info("Database tables created")


def reset_engine() -> None:
    """Dispose the global engine and session maker (used between tests and on shutdown)."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
