"""Common test fixtures."""

import os
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
import sqlite_vec
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from testcontainers.postgres import PostgresContainer

from mail_search import db
from mail_search.config import ConfigManager, DatabaseBackend, MailSearchConfig
from mail_search.db import DatabaseType
from mail_search.models import Base
from mail_search.repository.embedding_repository import create_embedding_repository
from mail_search.repository.lexical_repository import create_lexical_repository
from mail_search.repository.query_embedding_cache_repository import (
    QueryEmbeddingCacheRepository,
)
from mail_search.services.hybrid_search_service import HybridSearchService
from mail_search.services.initialization import create_schema
from mail_search.services.query_embedding_cache import QueryEmbeddingCache

from mail_corpus import seed_corpus

TEST_DIMENSIONS = 4


# =============================================================================
# Database Backend Selection (env var approach)
# =============================================================================
# By default, tests run against SQLite.
# Set MAIL_SEARCH_TEST_POSTGRES=1 to run against Postgres (uses testcontainers).


@pytest.fixture(scope="session")
def db_backend():
    """Determine database backend from environment variable.

    Default: sqlite
    Set MAIL_SEARCH_TEST_POSTGRES=1 to use postgres
    """
    if os.environ.get("MAIL_SEARCH_TEST_POSTGRES", "").lower() in ("1", "true", "yes"):
        return "postgres"
    return "sqlite"


@pytest.fixture(scope="session")
def postgres_container(db_backend):
    """Session-scoped Postgres container, started only for the postgres backend."""
    if db_backend != "postgres":
        yield None
        return

    # pgvector image so CREATE EXTENSION vector succeeds
    with PostgresContainer("pgvector/pgvector:pg16") as postgres:
        yield postgres


def _sqlite_vec_loadable() -> bool:
    connection = sqlite3.connect(":memory:")
    try:
        connection.enable_load_extension(True)
        sqlite_vec.load(connection)
        connection.execute("SELECT vec_version()")
        return True
    except (AttributeError, sqlite3.OperationalError):
        # Python built without extension loading
        return False
    finally:
        connection.close()


@pytest.fixture
def requires_sqlite_vec(db_backend):
    """Skip vector-path tests when SQLite cannot load the sqlite-vec extension."""
    if db_backend == "sqlite" and not _sqlite_vec_loadable():
        pytest.skip("sqlite-vec extension cannot be loaded by this Python's sqlite3.")


@pytest.fixture
def config_home(tmp_path, monkeypatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path))
    # On Windows, also set USERPROFILE
    if os.name == "nt":
        monkeypatch.setenv("USERPROFILE", str(tmp_path))
    monkeypatch.setenv("MAIL_SEARCH_CONFIG_DIR", str(tmp_path / ".mail-search"))
    return tmp_path


def _postgres_url(postgres_container) -> str:
    sync_url = postgres_container.get_connection_url()
    return sync_url.replace("postgresql+psycopg2", "postgresql+asyncpg")


@pytest.fixture(scope="function")
def app_config(config_home, db_backend, postgres_container) -> MailSearchConfig:
    """Test configuration for the selected backend, with 4-dimensional embeddings."""
    if db_backend == "postgres":
        backend = DatabaseBackend.POSTGRES
        database_url = _postgres_url(postgres_container)
    else:
        backend = DatabaseBackend.SQLITE
        database_url = None

    return MailSearchConfig(
        env="test",
        embedding_dimensions=TEST_DIMENSIONS,
        database_backend=backend,
        database_url=database_url,
        database_path_override=str(config_home / "data" / "mail-search.db"),
    )


@pytest.fixture
def config_manager(app_config: MailSearchConfig, config_home: Path) -> ConfigManager:
    # Invalidate config cache to ensure clean state for each test
    from mail_search import config as config_module

    config_module._CONFIG_CACHE = None

    config_manager = ConfigManager()
    config_manager.save_config(app_config)
    return config_manager


@pytest_asyncio.fixture(scope="function")
async def engine_factory(
    app_config,
    config_manager,
    db_backend,
    postgres_container,
) -> AsyncGenerator[tuple[AsyncEngine, async_sessionmaker[AsyncSession]], None]:
    """Engine with a fresh schema for SQLite or Postgres tests."""
    if db_backend == "postgres":
        engine = create_async_engine(
            _postgres_url(postgres_container),
            echo=False,
            poolclass=NullPool,  # NullPool for better test isolation
        )
        session_maker = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        # Wire into the module state so get_or_create_db() reuses this engine
        db._engine = engine
        db._session_maker = session_maker

        # Drop and recreate all tables for test isolation
        async with engine.begin() as conn:
            # raw-DDL tables reference the ORM tables, drop them first
            await conn.execute(
                text(
                    "DROP TABLE IF EXISTS message_embedding, thread_embedding, "
                    "claim_embedding, lexical_index CASCADE"
                )
            )
            await conn.run_sync(Base.metadata.drop_all)
        await create_schema(engine, session_maker, app_config)

        yield engine, session_maker

        await engine.dispose()
        db._engine = None
        db._session_maker = None
    else:
        # A file database gives every session its own connection, like production
        async with db.engine_session_factory(
            db_path=app_config.database_path, db_type=DatabaseType.FILESYSTEM
        ) as (engine, session_maker):
            await create_schema(engine, session_maker, app_config)
            yield engine, session_maker


@pytest_asyncio.fixture
async def session_maker(engine_factory) -> async_sessionmaker[AsyncSession]:
    """Get session maker for tests."""
    _, session_maker = engine_factory
    return session_maker


## Repositories


@pytest_asyncio.fixture(scope="function")
async def embedding_repository(session_maker, app_config):
    return create_embedding_repository(session_maker, app_config)


@pytest_asyncio.fixture(scope="function")
async def lexical_repository(session_maker, app_config):
    return create_lexical_repository(session_maker, app_config)


@pytest_asyncio.fixture(scope="function")
async def cache_repository(session_maker) -> QueryEmbeddingCacheRepository:
    return QueryEmbeddingCacheRepository(session_maker)


@pytest_asyncio.fixture(scope="function")
async def corpus(session_maker, embedding_repository, lexical_repository) -> None:
    """Seed the shared email corpus with embeddings and a built lexical index."""
    await seed_corpus(session_maker, embedding_repository, lexical_repository)


## Services


@dataclass
class FakeClock:
    """Settable clock for cache expiry tests."""

    now: datetime = field(default_factory=lambda: datetime(2024, 9, 2, 12, 0, tzinfo=timezone.utc))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(scope="function")
async def query_cache(cache_repository, app_config, clock) -> QueryEmbeddingCache:
    return QueryEmbeddingCache(cache_repository, app_config, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def search_service(
    embedding_repository, lexical_repository, app_config, query_cache
) -> HybridSearchService:
    return HybridSearchService(
        embedding_repository=embedding_repository,
        lexical_repository=lexical_repository,
        app_config=app_config,
        query_cache=query_cache,
    )
