"""
Database package.
Provides async SQLAlchemy engine, session management, and ORM models.
"""
from vidstream.database.base import Base
from vidstream.database.session import init_db, close_db, get_session_factory

__all__ = [
    "Base",
    "init_db",
    "close_db",
    "get_session_factory",
]
