"""Repository for keyword search.

This module provides the lexical index interface.
The actual repository implementations are backend-specific:
- SQLiteLexicalRepository: Uses FTS5 virtual tables
- PostgresLexicalRepository: Uses tsvector/tsquery with GIN indexes
"""

from typing import List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mail_search.config import ConfigManager, DatabaseBackend, MailSearchConfig
from mail_search.repository.postgres_lexical_repository import PostgresLexicalRepository
from mail_search.repository.records import EntityRecord, LexicalEntity, RankedItem
from mail_search.repository.sqlite_lexical_repository import SQLiteLexicalRepository
from mail_search.schemas.search import EntityKind, ScopeFilter


class LexicalRepository(Protocol):
    """Protocol defining the lexical index interface.

    Both SQLite and Postgres implementations must satisfy this protocol.
    """

    async def init_search_index(self) -> None:
        """Initialize the lexical index schema."""
        ...

    async def search(
        self,
        kind: EntityKind,
        query_text: str,
        limit: int = 10,
        scope: Optional[ScopeFilter] = None,
    ) -> List[RankedItem[EntityRecord]]:
        """Keyword search over one entity kind."""
        ...

    async def index_item(self, entity: LexicalEntity) -> None:
        """Index a single entity."""
        ...

    async def bulk_index_items(self, entities: List[LexicalEntity]) -> None:
        """Index multiple entities in a batch."""
        ...

    async def delete_by_entity_id(self, kind: EntityKind, entity_id: str) -> None:
        """Remove an entity from the index."""
        ...

    async def rebuild(self, kind: Optional[EntityKind] = None) -> int:
        """Re-derive the index from the entity tables."""
        ...


def create_lexical_repository(
    session_maker: async_sessionmaker[AsyncSession],
    app_config: Optional[MailSearchConfig] = None,
    database_backend: Optional[DatabaseBackend] = None,
) -> LexicalRepository:
    """Factory function to create the lexical index for the database backend.

    Args:
        session_maker: SQLAlchemy async session maker
        app_config: Configuration, read from ConfigManager when no backend is given
        database_backend: Optional explicit backend. Prefer passing explicitly from composition roots.
    """
    if database_backend is None:
        config = app_config or ConfigManager().config
        database_backend = config.database_backend

    if database_backend == DatabaseBackend.POSTGRES:  # pragma: no cover
        return PostgresLexicalRepository(session_maker)  # pragma: no cover
    return SQLiteLexicalRepository(session_maker)


__all__ = [
    "LexicalRepository",
    "LexicalEntity",
    "create_lexical_repository",
]
