"""Postgres-specific embedding store behavior.

The pgvector helpers are tested directly; the schema checks need the
Postgres backend (MAIL_SEARCH_TEST_POSTGRES=1).
"""

import pytest

from mail_search.errors import DimensionMismatchError
from mail_search.repository.postgres_embedding_repository import PostgresEmbeddingRepository


def test_format_pgvector_literal():
    assert PostgresEmbeddingRepository._format_pgvector_literal([]) == "[]"
    assert PostgresEmbeddingRepository._format_pgvector_literal([1, 0.5, -2.25]) == "[1,0.5,-2.25]"


def test_decode_vector_accepts_text_and_sequences(app_config):
    repository = PostgresEmbeddingRepository(session_maker=None, app_config=app_config)

    assert repository._decode_vector("[1,0.5,-2.25]") == [1.0, 0.5, -2.25]
    assert repository._decode_vector((1, 2, 3)) == [1.0, 2.0, 3.0]


def test_sql_hooks(app_config):
    repository = PostgresEmbeddingRepository(session_maker=None, app_config=app_config)

    assert repository._vector_bind_sql("query_vector") == "CAST(:query_vector AS vector)"
    assert repository._distance_sql("e.embedding", "q") == "(e.embedding <=> q)"
    assert repository._nonzero_vector_sql("e.embedding") == "vector_norm(e.embedding) > 0"


@pytest.mark.postgres
@pytest.mark.asyncio
async def test_existing_table_with_other_dimension_is_reported(
    session_maker, app_config, db_backend
):
    if db_backend != "postgres":
        pytest.skip("pgvector schema checks need the Postgres backend.")

    # engine_factory already created vector(4) tables
    other = app_config.model_copy(update={"embedding_dimensions": 8})
    repository = PostgresEmbeddingRepository(session_maker, app_config=other)

    with pytest.raises(DimensionMismatchError) as exc_info:
        await repository.init_search_index()

    assert exc_info.value.expected == 8
    assert exc_info.value.actual == 4


@pytest.mark.postgres
@pytest.mark.asyncio
async def test_init_search_index_is_repeatable(session_maker, app_config, db_backend):
    if db_backend != "postgres":
        pytest.skip("pgvector schema checks need the Postgres backend.")

    repository = PostgresEmbeddingRepository(session_maker, app_config=app_config)
    await repository.init_search_index()
    await repository.init_search_index()
