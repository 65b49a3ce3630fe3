"""
Database connection and session management.
Uses SQLAlchemy; SQLite by default, any SQLAlchemy URL in production.
"""

from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import logging

from ai_shopping.config import get_settings

logger = logging.getLogger(__name__)

# Base class for all our database models (must be defined before engine)
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_engine(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = make_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


def init_db(bind=None) -> None:
    """Create tables if they don't exist."""
    # Register every model on Base.metadata
    from ai_shopping import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


def get_db(request: Request):
    """
    Dependency function that provides a database session.
    Uses the app's session factory so each app instance owns its database.
    """
    factory = getattr(request.app.state, "session_factory", None) or SessionLocal
    db = factory()
    try:
        yield db
    finally:
        db.close()
