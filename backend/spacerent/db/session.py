"""
Database session and engine.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from spacerent.config import settings
from spacerent.db.base import Base


def make_engine(database_url: str) -> Engine:
    """Pooled engine for Postgres; SQLite (local/dev) gets the driver defaults."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_size=8,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=30,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine(settings.database_url)
SessionLocal = make_session_factory(engine)


def create_all(bind: Engine | None = None) -> None:
    """Create tables that do not exist yet (dev / tests). Production uses Alembic."""
    import spacerent.models  # noqa: F401  register models on Base.metadata

    Base.metadata.create_all(bind=bind or engine)
