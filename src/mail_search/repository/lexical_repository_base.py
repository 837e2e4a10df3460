"""Abstract base class for lexical (keyword) index implementations."""

import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mail_search import db
from mail_search.errors import InvalidArgumentError
from mail_search.repository.entity_kinds import (
    ENTITY_KIND_HANDLERS,
    LEXICAL_SCOPE_COLUMNS,
    build_scope_conditions,
    get_handler,
    validate_scope,
)
from mail_search.repository.records import EntityRecord, LexicalEntity, RankedItem
from mail_search.schemas.search import EntityKind, ScopeFilter

WORD_PATTERN = re.compile(r"\w+", re.UNICODE)

LEXICAL_COLUMNS = (
    "entity_id, kind, account_id, thread_id, organization_id, claim_type, subject, body, snippet"
)
LEXICAL_VALUES = (
    ":entity_id, :kind, :account_id, :thread_id, :organization_id, :claim_type, "
    ":subject, :body, :snippet"
)


def tokenize(query_text: str) -> list[str]:
    """Lower-cased word tokens; punctuation and query syntax are dropped."""
    return WORD_PATTERN.findall(query_text.lower())


class LexicalRepositoryBase(ABC):
    """Abstract base class for backend-specific lexical indexes.

    The index holds one row per (kind, entity) with the entity's searchable
    text and denormalized scope columns, so ranking never needs a join.

    Concrete implementations:
    - SQLiteLexicalRepository: FTS5 virtual table ranked with bm25()
    - PostgresLexicalRepository: generated tsvector column ranked with ts_rank()
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    # ------------------------------------------------------------------
    # Abstract methods (backend-specific)
    # ------------------------------------------------------------------

    @abstractmethod
    async def init_search_index(self) -> None:
        """Create the lexical index if it doesn't exist.

        Backend-specific implementations:
        - SQLite: CREATE VIRTUAL TABLE using FTS5
        - Postgres: CREATE TABLE with tsvector column and GIN index
        """
        pass

    @abstractmethod
    def _prepare_search_term(self, tokens: List[str]) -> str:
        """Turn word tokens into the backend's match expression (all terms required)."""
        pass

    @abstractmethod
    def _match_sql(self, where_clause: str) -> str:
        """SELECT entity_id, score ... ordered best first, ties by entity_id, LIMIT :limit."""
        pass

    @abstractmethod
    async def index_item(self, entity: LexicalEntity) -> None:
        """Index or replace a single entity."""
        pass

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        kind: EntityKind,
        query_text: str,
        limit: int = 10,
        scope: Optional[ScopeFilter] = None,
    ) -> List[RankedItem[EntityRecord]]:
        """Rank entities of one kind by keyword relevance to query_text.

        Blank text, or text without any word characters, returns no hits.
        """
        if limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
        handler = get_handler(kind)
        validate_scope(handler.kind, scope)

        tokens = tokenize(query_text or "")
        if not tokens:
            return []

        params: dict[str, Any] = {
            "text": self._prepare_search_term(tokens),
            "kind": handler.kind.value,
            "limit": limit,
        }
        conditions = ["lexical_index.kind = :kind"]
        conditions.extend(build_scope_conditions(scope, LEXICAL_SCOPE_COLUMNS, params))
        sql = self._match_sql(" AND ".join(conditions))

        logger.trace(f"Lexical search {sql} params: {params}")
        try:
            async with db.scoped_session(self.session_maker) as session:
                result = await session.execute(text(sql), params)
                rows = result.fetchall()
                entities = await handler.fetch_by_ids(session, [row.entity_id for row in rows])
        except Exception as e:
            logger.error(f"Database error during {handler.kind.value} lexical search: {e}")
            raise

        ranked: List[RankedItem[EntityRecord]] = []
        for row in rows:
            entity = entities.get(row.entity_id)
            if entity is None:
                # index row outlived its entity
                logger.debug(f"Skipping stale lexical row {handler.kind.value}:{row.entity_id}")
                continue
            ranked.append(RankedItem(item=entity, rank=len(ranked) + 1, score=float(row.score)))

        logger.trace(f"Found {len(ranked)} {handler.kind.value} lexical hits")
        return ranked

    # ------------------------------------------------------------------
    # Shared index / delete operations
    # ------------------------------------------------------------------

    async def bulk_index_items(self, entities: List[LexicalEntity]) -> None:
        """Index multiple entities in a single batch, replacing existing rows."""
        if not entities:
            return

        async with db.scoped_session(self.session_maker) as session:
            for entity in entities:
                await session.execute(
                    text("DELETE FROM lexical_index WHERE kind = :kind AND entity_id = :entity_id"),
                    {"kind": entity.kind.value, "entity_id": entity.entity_id},
                )
            # Batch insert all records using executemany
            await session.execute(
                text(f"INSERT INTO lexical_index ({LEXICAL_COLUMNS}) VALUES ({LEXICAL_VALUES})"),
                [entity.to_insert() for entity in entities],
            )
            logger.debug(f"Bulk indexed {len(entities)} rows")

    async def delete_by_entity_id(self, kind: EntityKind, entity_id: str) -> None:
        handler = get_handler(kind)
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(
                text("DELETE FROM lexical_index WHERE kind = :kind AND entity_id = :entity_id"),
                {"kind": handler.kind.value, "entity_id": entity_id},
            )

    async def rebuild(self, kind: Optional[EntityKind] = None) -> int:
        """Re-derive index rows from the entity tables. Returns the number of rows indexed."""
        handlers = (
            [get_handler(kind)] if kind is not None else list(ENTITY_KIND_HANDLERS.values())
        )
        total = 0
        async with db.scoped_session(self.session_maker) as session:
            for handler in handlers:
                await session.execute(
                    text("DELETE FROM lexical_index WHERE kind = :kind"),
                    {"kind": handler.kind.value},
                )
                await session.execute(
                    text(
                        f"INSERT INTO lexical_index ({LEXICAL_COLUMNS}) "
                        f"SELECT {handler.lexical_projection} FROM {handler.from_clause}"
                    )
                )
                result = await session.execute(
                    text("SELECT COUNT(*) FROM lexical_index WHERE kind = :kind"),
                    {"kind": handler.kind.value},
                )
                count = int(result.scalar() or 0)
                logger.info(f"Rebuilt lexical index for {handler.kind.value}: {count} rows")
                total += count
        return total
