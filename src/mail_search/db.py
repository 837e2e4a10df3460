"""Database engine and session management."""

import asyncio
from contextlib import asynccontextmanager
from enum import Enum, auto
from pathlib import Path
from typing import AsyncGenerator, Optional

from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from mail_search.config import DatabaseBackend, MailSearchConfig

# Module level state
_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None
_init_lock = asyncio.Lock()


class DatabaseType(Enum):
    """Types of supported databases."""

    MEMORY = auto()
    FILESYSTEM = auto()
    POSTGRES = auto()

    @classmethod
    def get_db_url(cls, db_path: Path, db_type: "DatabaseType", database_url: str | None = None) -> str:
        """Get SQLAlchemy URL for database path."""
        if db_type == cls.POSTGRES:
            if not database_url:
                raise ValueError("database_url is required for the Postgres backend")
            logger.info("Using Postgres database")
            return database_url

        if db_type == cls.MEMORY:
            logger.info("Using in-memory SQLite database")
            return "sqlite+aiosqlite://"

        return f"sqlite+aiosqlite:///{db_path}"  # pragma: no cover

    @classmethod
    def from_config(cls, app_config: MailSearchConfig) -> "DatabaseType":
        if app_config.database_backend == DatabaseBackend.POSTGRES:
            return cls.POSTGRES
        return cls.FILESYSTEM


def _configure_sqlite_connection(dbapi_conn, connection_record) -> None:
    """Enable WAL and sane defaults on every new SQLite connection."""
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=10000")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def _create_engine(db_url: str, db_type: DatabaseType) -> AsyncEngine:
    if db_type == DatabaseType.POSTGRES:
        return create_async_engine(db_url, pool_pre_ping=True)

    if db_type == DatabaseType.MEMORY:
        engine = create_async_engine(db_url, connect_args={"check_same_thread": False})
    else:
        # NullPool gives every session its own connection so concurrent readers don't share one
        engine = create_async_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=NullPool,
        )
        event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
    return engine


def _create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def scoped_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Get a scoped session with proper lifecycle management.

    Commits on success, rolls back on error, always closes.
    """
    session = session_maker()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def engine_session_factory(
    db_path: Path,
    db_type: DatabaseType = DatabaseType.MEMORY,
    database_url: str | None = None,
) -> AsyncGenerator[tuple[AsyncEngine, async_sessionmaker[AsyncSession]], None]:
    """Create engine and session factory for a single unit of work.

    Used by tests and one-shot CLI commands; module level state is set while
    the context is open so helpers calling get_or_create_db() share it.
    """
    global _engine, _session_maker

    db_url = DatabaseType.get_db_url(db_path, db_type, database_url)
    logger.debug(f"Creating engine for db_url: {db_url}")
    engine = _create_engine(db_url, db_type)
    session_maker = _create_session_maker(engine)
    _engine = engine
    _session_maker = session_maker

    try:
        yield engine, session_maker
    finally:
        await engine.dispose()
        _engine = None
        _session_maker = None


async def get_or_create_db(
    db_path: Path,
    db_type: DatabaseType = DatabaseType.FILESYSTEM,
    database_url: str | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:  # pragma: no cover
    """Get or create database engine and session maker."""
    global _engine, _session_maker

    async with _init_lock:
        if _engine is None:
            db_url = DatabaseType.get_db_url(db_path, db_type, database_url)
            logger.debug(f"Creating engine for db_url: {db_url}")
            _engine = _create_engine(db_url, db_type)
            _session_maker = _create_session_maker(_engine)

    # These checks should never fail since we just created the engine and session maker
    # if they were None, but we'll check anyway for the type checker
    if _engine is None:
        logger.error("Failed to create database engine", db_path=str(db_path))
        raise RuntimeError("Database engine initialization failed")

    if _session_maker is None:
        logger.error("Failed to create session maker", db_path=str(db_path))
        raise RuntimeError("Session maker initialization failed")

    return _engine, _session_maker


async def shutdown_db() -> None:  # pragma: no cover
    """Clean up database connections."""
    global _engine, _session_maker

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_maker = None
