"""SQLite embedding store backed by sqlite-vec distance functions."""

import asyncio
import struct
from typing import Any, Sequence

import sqlite_vec
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import OperationalError as SAOperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from mail_search import db
from mail_search.config import MailSearchConfig
from mail_search.models.search import create_sqlite_embedding_table
from mail_search.repository.embedding_repository_base import EmbeddingRepositoryBase
from mail_search.repository.entity_kinds import ENTITY_KIND_HANDLERS


class SQLiteEmbeddingRepository(EmbeddingRepositoryBase):
    """SQLite implementation of the embedding store.

    Vectors are stored as float32 BLOBs in ordinary tables and compared with
    sqlite-vec's vec_distance_cosine(). Every search is a full scan, so the
    ordering is exact.
    """

    def __init__(self, session_maker, app_config: MailSearchConfig | None = None):
        super().__init__(session_maker, app_config)
        self._sqlite_vec_lock = asyncio.Lock()

    async def init_search_index(self) -> None:
        logger.info("Initializing SQLite embedding tables")
        try:
            async with db.scoped_session(self.session_maker) as session:
                for handler in ENTITY_KIND_HANDLERS.values():
                    for statement in create_sqlite_embedding_table(
                        handler.embedding_table,
                        handler.owner_column,
                        handler.owner_table,
                        with_thread_columns=handler.is_thread,
                    ):
                        await session.execute(statement)
        except Exception as e:  # pragma: no cover
            logger.error(f"Error initializing embedding tables: {e}")
            raise e

    # ------------------------------------------------------------------
    # sqlite-vec extension loading (SQLite-specific)
    # ------------------------------------------------------------------

    async def _ensure_sqlite_vec_loaded(self, session: AsyncSession) -> None:
        try:
            await session.execute(text("SELECT vec_version()"))
            return
        except SAOperationalError:
            pass

        async with self._sqlite_vec_lock:
            try:
                await session.execute(text("SELECT vec_version()"))
                return
            except SAOperationalError:
                pass

            async_connection = await session.connection()
            raw_connection = await async_connection.get_raw_connection()
            driver_connection = raw_connection.driver_connection
            await driver_connection.enable_load_extension(True)
            await driver_connection.load_extension(sqlite_vec.loadable_path())
            await driver_connection.enable_load_extension(False)
            await session.execute(text("SELECT vec_version()"))

    # ------------------------------------------------------------------
    # Abstract hook implementations
    # ------------------------------------------------------------------

    async def _prepare_vector_session(self, session: AsyncSession) -> None:
        """Load sqlite-vec extension for the session."""
        await self._ensure_sqlite_vec_loaded(session)

    def _encode_vector(self, vector: Sequence[float]) -> Any:
        return sqlite_vec.serialize_float32(list(vector))

    def _decode_vector(self, raw: Any) -> list[float]:
        count = len(raw) // 4
        return list(struct.unpack(f"{count}f", raw))

    def _vector_bind_sql(self, param: str) -> str:
        return f":{param}"

    def _distance_sql(self, column: str, param: str) -> str:
        return f"vec_distance_cosine({column}, {param})"

    def _nonzero_vector_sql(self, column: str) -> str:
        # vec_distance_cosine() is NULL when either side has zero norm
        return f"vec_distance_cosine({column}, {column}) IS NOT NULL"

    def _timestamp_now_expr(self) -> str:
        return "CURRENT_TIMESTAMP"
