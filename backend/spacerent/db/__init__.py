from spacerent.db.base import Base
from spacerent.db.session import SessionLocal, create_all, engine, make_engine, make_session_factory
from spacerent.db.tables import ALL_TABLE_NAMES

__all__ = [
    "engine",
    "SessionLocal",
    "Base",
    "create_all",
    "make_engine",
    "make_session_factory",
    "ALL_TABLE_NAMES",
]
