"""
Database connection and session management.
"""
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from safeguard.core.config import settings
from safeguard.core.logging import get_logger

logger = get_logger("db.connection")

# Lazy initialization - don't connect at import time
_engine = None
_SessionLocal = None


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite gets thread-safe connection settings."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_timeout=5,  # Don't wait forever for connection
        echo=False
    )


def _get_engine():
    """Get or create database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url)
    return _engine


def _get_session_local():
    """Get or create session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
    return _SessionLocal


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory for the given engine, or the global one."""
    if engine is None:
        return _get_session_local()
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for a database session from ``factory``."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Database error: {e}")
        raise
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None):
    """Initialize database tables."""
    from safeguard.db.models import Base

    logger.info("Creating database tables...")
    engine = engine or _get_engine()
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info("Database tables created successfully")
