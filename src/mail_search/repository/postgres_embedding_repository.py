"""PostgreSQL embedding store backed by pgvector."""

import asyncio
import json
from typing import Any, Sequence

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mail_search import db
from mail_search.config import MailSearchConfig
from mail_search.errors import DimensionMismatchError, MailSearchError
from mail_search.models.search import create_postgres_embedding_table
from mail_search.repository.embedding_repository_base import EmbeddingRepositoryBase
from mail_search.repository.entity_kinds import ENTITY_KIND_HANDLERS


class PostgresEmbeddingRepository(EmbeddingRepositoryBase):
    """PostgreSQL implementation of the embedding store.

    Uses pgvector with:
    - vector(N) columns sized to the configured embedding dimension
    - the <=> cosine distance operator
    - an HNSW vector_cosine_ops index per table
    """

    def __init__(self, session_maker, app_config: MailSearchConfig | None = None):
        super().__init__(session_maker, app_config)
        self._tables_initialized = False
        self._tables_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # pgvector utility
    # ------------------------------------------------------------------

    @staticmethod
    def _format_pgvector_literal(vector: Sequence[float]) -> str:
        if not vector:
            return "[]"
        values = ",".join(f"{float(value):.12g}" for value in vector)
        return f"[{values}]"

    async def init_search_index(self) -> None:
        """Create pgvector embedding tables.

        The vector(N) column type is fixed at creation, so an existing table
        with another dimension is reported instead of dropped: its rows are
        owned by the ingestion pipeline.
        """
        if self._tables_initialized:
            return

        logger.info("Ensuring Postgres embedding tables exist")

        async with self._tables_lock:
            if self._tables_initialized:
                return

            async with db.scoped_session(self.session_maker) as session:
                try:
                    await session.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                except Exception as exc:
                    raise MailSearchError(
                        "pgvector extension is unavailable for this Postgres database."
                    ) from exc

                for handler in ENTITY_KIND_HANDLERS.values():
                    existing_dims = await self._get_existing_embedding_dims(
                        session, handler.embedding_table
                    )
                    if existing_dims is not None and existing_dims != self._vector_dimensions:
                        logger.error(
                            f"Embedding dimension mismatch: {handler.embedding_table} has "
                            f"{existing_dims}, configuration expects {self._vector_dimensions}"
                        )
                        raise DimensionMismatchError(self._vector_dimensions, existing_dims)

                    # asyncpg requires separate execute calls for each statement
                    for statement in create_postgres_embedding_table(
                        handler.embedding_table,
                        handler.owner_column,
                        handler.owner_table,
                        self._vector_dimensions,
                        with_thread_columns=handler.is_thread,
                    ):
                        await session.execute(statement)

            logger.info(f"Postgres embedding tables ready (dimensions={self._vector_dimensions})")
            self._tables_initialized = True

    async def _get_existing_embedding_dims(self, session: AsyncSession, table: str) -> int | None:
        """Read the vector column dimension of an existing table, None when it doesn't exist."""
        exists_result = await session.execute(
            text("SELECT 1 FROM information_schema.tables WHERE table_name = :table_name"),
            {"table_name": table},
        )
        if exists_result.fetchone() is None:
            return None

        result = await session.execute(
            text(
                """
                SELECT atttypmod
                FROM pg_attribute
                WHERE attrelid = CAST(:table_name AS regclass)
                  AND attname = 'embedding'
                """
            ),
            {"table_name": table},
        )
        row = result.fetchone()
        if row is None:
            return None
        # pgvector stores dimensions in atttypmod directly
        return int(row[0])

    # ------------------------------------------------------------------
    # Abstract hook implementations
    # ------------------------------------------------------------------

    async def _prepare_vector_session(self, session: AsyncSession) -> None:
        pass

    def _encode_vector(self, vector: Sequence[float]) -> Any:
        return self._format_pgvector_literal(vector)

    def _decode_vector(self, raw: Any) -> list[float]:
        # asyncpg hands back pgvector values in their text form without a registered codec
        if isinstance(raw, str):
            return [float(value) for value in json.loads(raw)]
        return [float(value) for value in raw]

    def _vector_bind_sql(self, param: str) -> str:
        return f"CAST(:{param} AS vector)"

    def _distance_sql(self, column: str, param: str) -> str:
        return f"({column} <=> {param})"

    def _nonzero_vector_sql(self, column: str) -> str:
        return f"vector_norm({column}) > 0"

    def _timestamp_now_expr(self) -> str:
        return "NOW()"
