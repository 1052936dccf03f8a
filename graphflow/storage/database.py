"""Database connection and session management."""

import os
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()

_engine: Optional[Engine] = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def configure_database(database_url: Optional[str] = None,
                       echo: bool = False,
                       connect_args: Optional[dict] = None) -> Engine:
    """Create the engine for ``database_url`` and bind the session factory to it."""
    global _engine

    if database_url is None:
        database_url = os.getenv("GRAPHFLOW_DATABASE_URL", "sqlite:///./graphflow.db")

    if connect_args is None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

    if _engine is not None:
        _engine.dispose()

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )
    else:
        _engine = create_engine(database_url, echo=echo, connect_args=connect_args)

    SessionLocal.configure(bind=_engine)
    return _engine


def get_database_engine() -> Engine:
    """The configured engine, configuring the default database on first use."""
    if _engine is None:
        return configure_database()
    return _engine


def reset_database_engine():
    """Dispose of the engine (mainly for testing)."""
    global _engine
    if _engine:
        _engine.dispose()
    _engine = None


def get_db():
    """Dependency to get database session."""
    get_database_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all database tables."""
    from . import models  # noqa: F401  registers the mapped classes
    Base.metadata.create_all(bind=get_database_engine())


def drop_tables():
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=get_database_engine())
