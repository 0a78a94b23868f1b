"""
Launch Tracker - Database Configuration
SQLAlchemy engine, session factory and request-scoped session dependency
"""
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Base class for ORM models
Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """
    Create the engine for a database URL.

    SQLite connections are shared across the server's worker threads; an
    in-memory SQLite database is pinned to one connection so every session
    sees the same data.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)
    return create_engine(database_url, echo=False, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Initialize database - create all tables."""
    from .models import db_models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    """Dependency for FastAPI - yields database session."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
