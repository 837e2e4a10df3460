"""Integration-style tests for schema creation and service wiring."""

import pytest
from sqlalchemy import text

from mail_search import db
from mail_search.config import DatabaseBackend, MailSearchConfig
from mail_search.repository.postgres_embedding_repository import PostgresEmbeddingRepository
from mail_search.repository.postgres_lexical_repository import PostgresLexicalRepository
from mail_search.repository.sqlite_embedding_repository import SQLiteEmbeddingRepository
from mail_search.repository.sqlite_lexical_repository import SQLiteLexicalRepository
from mail_search.services.hybrid_search_service import HybridSearchService
from mail_search.services.initialization import build_search_service, initialize_database
from mail_search.services.rank_fusion import RankFuser


@pytest.mark.asyncio
async def test_initialize_database_creates_schema(app_config: MailSearchConfig):
    await db.shutdown_db()
    try:
        engine, session_maker = await initialize_database(app_config)
        assert engine is not None

        async with db.scoped_session(session_maker) as session:
            for table in (
                "email_message",
                "message_embedding",
                "thread_embedding",
                "claim_embedding",
                "lexical_index",
                "query_embedding_cache",
            ):
                result = await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
                assert result.scalar() >= 0
    finally:
        await db.shutdown_db()


@pytest.mark.asyncio
async def test_initialize_database_is_repeatable(app_config: MailSearchConfig):
    await db.shutdown_db()
    try:
        await initialize_database(app_config)
        await initialize_database(app_config)
    finally:
        await db.shutdown_db()


@pytest.mark.asyncio
async def test_initialize_database_raises_on_invalid_postgres_config(app_config: MailSearchConfig):
    """Postgres selected without a database URL fails."""
    await db.shutdown_db()
    try:
        bad_config = app_config.model_copy(
            update={"database_backend": DatabaseBackend.POSTGRES, "database_url": None}
        )
        with pytest.raises(ValueError):
            await initialize_database(bad_config)
    finally:
        await db.shutdown_db()


@pytest.mark.asyncio
async def test_build_search_service(session_maker, app_config, db_backend):
    service = build_search_service(session_maker, app_config)

    assert isinstance(service, HybridSearchService)
    assert isinstance(service.rank_fuser, RankFuser)
    assert service.rank_fuser.k == app_config.rrf_k
    assert service.query_cache is not None
    assert service.embedding_provider is None
    if db_backend == "postgres":
        assert isinstance(service.embedding_repository, PostgresEmbeddingRepository)
        assert isinstance(service.lexical_repository, PostgresLexicalRepository)
    else:
        assert isinstance(service.embedding_repository, SQLiteEmbeddingRepository)
        assert isinstance(service.lexical_repository, SQLiteLexicalRepository)
    assert service.embedding_repository.vector_dimensions == 4
