"""Query embedding cache.

Keyed by the SHA-256 of the whitespace-normalized query text. The cache is an
optimization: a storage failure on lookup is a miss, a storage failure on
write is logged and dropped, and neither ever fails a search.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from loguru import logger

from mail_search.config import MailSearchConfig
from mail_search.repository.query_embedding_cache_repository import (
    QueryEmbeddingCacheRepository,
)
from mail_search.repository.records import CachedQueryEmbedding
from mail_search.utils import hash_query_text, normalize_query_text

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueryEmbeddingCache:
    def __init__(
        self,
        repository: QueryEmbeddingCacheRepository,
        app_config: MailSearchConfig,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.default_ttl_seconds = app_config.query_cache_ttl_seconds
        self.evict_on_get = app_config.query_cache_evict_on_get
        self.clock = clock

    async def get(self, query_text: str) -> Optional[list[float]]:
        """Cached vector for query_text, or None. A hit bumps hit_count and last_used_at."""
        query_hash = hash_query_text(query_text)
        try:
            if self.evict_on_get:
                await self.repository.delete_expired(self.clock())
            entry = await self.repository.record_hit(query_hash, self.clock())
        except Exception as e:
            logger.warning(f"Query embedding cache lookup failed, treating as miss: {e}")
            return None

        if entry is None:
            logger.debug(f"Query embedding cache miss {query_hash[:12]}")
            return None
        logger.debug(f"Query embedding cache hit {query_hash[:12]} hits={entry.hit_count}")
        return entry.vector

    async def put(
        self,
        query_text: str,
        vector: Sequence[float],
        model: str,
        ttl: Optional[timedelta | int] = None,
    ) -> None:
        """Insert or overwrite the entry for query_text.

        ttl (seconds or timedelta) falls back to the configured default; with
        neither the entry does not expire.
        """
        if ttl is None and self.default_ttl_seconds is not None:
            ttl = self.default_ttl_seconds
        if isinstance(ttl, int):
            ttl = timedelta(seconds=ttl)

        now = self.clock()
        expires_at = now + ttl if ttl is not None else None
        try:
            await self.repository.upsert(
                query_hash=hash_query_text(query_text),
                query_text=normalize_query_text(query_text),
                vector=vector,
                model=model,
                now=now,
                expires_at=expires_at,
            )
        except Exception as e:
            logger.warning(f"Failed to cache query embedding, continuing without it: {e}")

    async def get_entry(self, query_text: str) -> Optional[CachedQueryEmbedding]:
        """Inspect an entry without counting a hit."""
        return await self.repository.get_entry(hash_query_text(query_text))

    async def evict(self, query_text: str) -> bool:
        return await self.repository.delete(hash_query_text(query_text))

    async def evict_expired(self) -> int:
        """Delete entries that expired before now. Returns the number removed."""
        return await self.repository.delete_expired(self.clock())
