"""
Database session management.
Provides async SQLAlchemy engine, session factory, and lifecycle functions.
"""
from typing import Optional
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from vidstream.core.config import Settings, get_settings

# Global engine instance (initialized lazily)
_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def init_db(settings: Optional[Settings] = None) -> None:
    """
    Initialize the database engine and session factory.
    Called once at application startup.
    """
    global _engine, _async_session_factory

    settings = settings or get_settings()

    if settings.database_url.startswith("sqlite"):
        # Local development and tests; ON DELETE CASCADE needs the pragma
        _engine = create_async_engine(settings.database_url, echo=settings.database_echo)
        event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    else:
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            echo=settings.database_echo,
        )

    _async_session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables() -> None:
    """Create all tables from the ORM metadata (tests and local development)."""
    from vidstream.database.base import Base
    import vidstream.database.models  # noqa: F401  registers the models

    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close the database engine and cleanup resources.
    Called once at application shutdown.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the async session factory.
    Used by the app lifespan and the CLI.
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory
