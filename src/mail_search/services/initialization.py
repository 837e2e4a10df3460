"""Shared initialization for mail-search.

Schema creation and service wiring used by the CLI and by library callers,
so every entry point builds the engine the same way.
"""

from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mail_search import db
from mail_search.config import MailSearchConfig
from mail_search.models import Base
from mail_search.repository.embedding_provider import EmbeddingProvider
from mail_search.repository.embedding_repository import create_embedding_repository
from mail_search.repository.lexical_repository import create_lexical_repository
from mail_search.repository.query_embedding_cache_repository import (
    QueryEmbeddingCacheRepository,
)
from mail_search.services.hybrid_search_service import HybridSearchService
from mail_search.services.query_embedding_cache import QueryEmbeddingCache


async def create_schema(
    engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
    app_config: MailSearchConfig,
) -> None:
    """Create ORM tables, then the raw-DDL embedding and lexical tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await create_embedding_repository(session_maker, app_config).init_search_index()
    await create_lexical_repository(session_maker, app_config).init_search_index()
    logger.info("Schema ready")


async def initialize_database(
    app_config: MailSearchConfig,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Open the configured database and make sure the schema exists."""
    try:
        engine, session_maker = await db.get_or_create_db(
            app_config.database_path,
            db_type=db.DatabaseType.from_config(app_config),
            database_url=app_config.database_url,
        )
        await create_schema(engine, session_maker, app_config)
        logger.info("Database initialization completed")
        return engine, session_maker
    except Exception as e:
        logger.error(f"Error during database initialization: {e}")
        raise


def build_search_service(
    session_maker: async_sessionmaker[AsyncSession],
    app_config: MailSearchConfig,
    embedding_provider: Optional[EmbeddingProvider] = None,
) -> HybridSearchService:
    """Wire repositories, cache and fuser into a HybridSearchService."""
    return HybridSearchService(
        embedding_repository=create_embedding_repository(session_maker, app_config),
        lexical_repository=create_lexical_repository(session_maker, app_config),
        app_config=app_config,
        query_cache=QueryEmbeddingCache(QueryEmbeddingCacheRepository(session_maker), app_config),
        embedding_provider=embedding_provider,
    )
