"""Repository for stored embeddings.

This module provides the embedding store interface.
The actual repository implementations are backend-specific:
- SQLiteEmbeddingRepository: float32 BLOBs + sqlite-vec distance functions
- PostgresEmbeddingRepository: pgvector columns with HNSW indexes
"""

from typing import Optional, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mail_search.config import ConfigManager, DatabaseBackend, MailSearchConfig
from mail_search.repository.postgres_embedding_repository import PostgresEmbeddingRepository
from mail_search.repository.records import EmbeddingRecord, EntityRecord, RankedItem, StatusCounts
from mail_search.repository.sqlite_embedding_repository import SQLiteEmbeddingRepository
from mail_search.schemas.search import EmbeddingStatus, EntityKind, ScopeFilter
from mail_search.vector_math import AggregationMethod


class EmbeddingRepository(Protocol):
    """Protocol defining the embedding store interface.

    Both SQLite and Postgres implementations must satisfy this protocol.
    """

    @property
    def vector_dimensions(self) -> int: ...

    async def init_search_index(self) -> None:
        """Create the embedding tables."""
        ...

    async def upsert(
        self,
        kind: EntityKind,
        owner_id: str,
        vector: Sequence[float],
        model: str,
        input_hash: Optional[str] = None,
        *,
        model_version: Optional[str] = None,
        token_count: Optional[int] = None,
        aggregation_method: AggregationMethod | str | None = None,
        message_count: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> bool:
        """Insert or replace an entity's embedding."""
        ...

    async def get(self, kind: EntityKind, owner_id: str) -> Optional[EmbeddingRecord]:
        """Fetch one embedding by owner."""
        ...

    async def delete(self, kind: EntityKind, owner_id: str) -> bool:
        """Delete one embedding by owner."""
        ...

    async def transition_status(
        self,
        kind: EntityKind,
        owner_id: str,
        new_status: EmbeddingStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Apply a status change allowed by the state machine."""
        ...

    async def mark_failed(self, kind: EntityKind, owner_id: str, error_message: str) -> bool:
        """Flag an embedding as failed."""
        ...

    async def status_counts(self, kind: EntityKind) -> StatusCounts:
        """Per-status totals."""
        ...

    async def knn(
        self,
        kind: EntityKind,
        query_vector: Sequence[float],
        k: int,
        scope: Optional[ScopeFilter] = None,
    ) -> list[RankedItem[EmbeddingRecord]]:
        """k nearest completed embeddings."""
        ...

    async def similarity_search(
        self,
        kind: EntityKind,
        query_vector: Sequence[float],
        limit: int = 10,
        threshold: Optional[float] = None,
        scope: Optional[ScopeFilter] = None,
    ) -> list[RankedItem[EntityRecord]]:
        """Thresholded, hydrated vector search."""
        ...


def create_embedding_repository(
    session_maker: async_sessionmaker[AsyncSession],
    app_config: Optional[MailSearchConfig] = None,
    database_backend: Optional[DatabaseBackend] = None,
) -> EmbeddingRepository:
    """Factory function to create the embedding store for the database backend.

    Args:
        session_maker: SQLAlchemy async session maker
        app_config: Configuration, read from ConfigManager when omitted
        database_backend: Optional explicit backend. If not provided, reads from config.

    Returns:
        EmbeddingRepository: Backend-appropriate embedding store
    """
    config = app_config or ConfigManager().config
    if database_backend is None:
        database_backend = config.database_backend

    if database_backend == DatabaseBackend.POSTGRES:  # pragma: no cover
        return PostgresEmbeddingRepository(session_maker, app_config=config)  # pragma: no cover
    return SQLiteEmbeddingRepository(session_maker, app_config=config)


__all__ = [
    "EmbeddingRepository",
    "EmbeddingRecord",
    "create_embedding_repository",
]
