"""Repository for the query embedding cache table."""

from datetime import datetime
from typing import Optional, Sequence

from loguru import logger
from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mail_search import db
from mail_search.models.query_cache import QueryEmbeddingCacheEntry
from mail_search.repository.records import CachedQueryEmbedding
from mail_search.utils import ensure_timezone_aware

cache_table = QueryEmbeddingCacheEntry.__table__


def _to_cached(row) -> CachedQueryEmbedding:
    return CachedQueryEmbedding(
        query_hash=row.query_hash,
        query_text=row.query_text,
        vector=[float(value) for value in row.embedding],
        model=row.model,
        hit_count=row.hit_count,
        last_used_at=ensure_timezone_aware(row.last_used_at),
        created_at=ensure_timezone_aware(row.created_at),
        expires_at=ensure_timezone_aware(row.expires_at) if row.expires_at else None,
    )


class QueryEmbeddingCacheRepository:
    """Storage for cached query embeddings keyed by query hash.

    Every read-modify-write is a single statement so concurrent hits on the
    same key serialize in the database.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def record_hit(self, query_hash: str, now: datetime) -> Optional[CachedQueryEmbedding]:
        """Return the live entry and count the hit, or None when missing or expired."""
        stmt = (
            update(cache_table)
            .where(
                cache_table.c.query_hash == query_hash,
                or_(cache_table.c.expires_at.is_(None), cache_table.c.expires_at >= now),
            )
            .values(hit_count=cache_table.c.hit_count + 1, last_used_at=now)
            .returning(*cache_table.c)
        )
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(stmt)
            row = result.first()
        return _to_cached(row) if row is not None else None

    async def get_entry(self, query_hash: str) -> Optional[CachedQueryEmbedding]:
        """Read an entry, expired or not, without counting a hit."""
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                select(cache_table).where(cache_table.c.query_hash == query_hash)
            )
            row = result.first()
        return _to_cached(row) if row is not None else None

    async def upsert(
        self,
        query_hash: str,
        query_text: str,
        vector: Sequence[float],
        model: str,
        now: datetime,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Insert an entry or overwrite the one with the same hash.

        An overwrite replaces vector, model and expiry and resets hit_count to 1;
        created_at is kept.
        """
        values = {
            "query_hash": query_hash,
            "query_text": query_text,
            "embedding": [float(value) for value in vector],
            "model": model,
            "hit_count": 1,
            "last_used_at": now,
            "expires_at": expires_at,
            "created_at": now,
        }
        async with db.scoped_session(self.session_maker) as session:
            dialect = session.get_bind().dialect.name
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(cache_table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[cache_table.c.query_hash],
                set_={
                    "query_text": stmt.excluded.query_text,
                    "embedding": stmt.excluded.embedding,
                    "model": stmt.excluded.model,
                    "hit_count": 1,
                    "last_used_at": stmt.excluded.last_used_at,
                    "expires_at": stmt.excluded.expires_at,
                },
            )
            await session.execute(stmt)
        logger.debug(f"Cached query embedding {query_hash[:12]} model={model}")

    async def delete(self, query_hash: str) -> bool:
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                delete(cache_table).where(cache_table.c.query_hash == query_hash)
            )
            return result.rowcount > 0

    async def delete_expired(self, now: datetime) -> int:
        """Delete entries whose expires_at is before now. Returns the count."""
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                delete(cache_table).where(
                    cache_table.c.expires_at.is_not(None), cache_table.c.expires_at < now
                )
            )
            count = result.rowcount or 0
        if count:
            logger.info(f"Evicted {count} expired query embeddings")
        return count
