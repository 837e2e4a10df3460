"""SQLite FTS5-based lexical index implementation."""

from typing import List

from loguru import logger
from sqlalchemy import text

from mail_search import db
from mail_search.models.search import CREATE_SQLITE_LEXICAL_INDEX
from mail_search.repository.lexical_repository_base import (
    LEXICAL_COLUMNS,
    LEXICAL_VALUES,
    LexicalRepositoryBase,
)
from mail_search.repository.records import LexicalEntity


class SQLiteLexicalRepository(LexicalRepositoryBase):
    """SQLite FTS5 implementation of the lexical index.

    Uses SQLite's FTS5 virtual tables for full-text search with:
    - MATCH operator for queries
    - bm25() function for relevance scoring (lower is better)
    - the porter stemmer over unicode61 tokens
    - every term quoted so query syntax in user text is inert
    """

    async def init_search_index(self) -> None:
        """Create FTS5 virtual table if it doesn't exist.

        Uses CREATE VIRTUAL TABLE IF NOT EXISTS to preserve existing indexed data.
        """
        logger.info("Initializing SQLite FTS5 lexical index")
        try:
            async with db.scoped_session(self.session_maker) as session:
                await session.execute(CREATE_SQLITE_LEXICAL_INDEX)
        except Exception as e:  # pragma: no cover
            logger.error(f"Error initializing lexical index: {e}")
            raise e

    def _prepare_search_term(self, tokens: List[str]) -> str:
        # Adjacent quoted strings are an implicit AND in FTS5
        return " ".join(f'"{token}"' for token in tokens)

    def _match_sql(self, where_clause: str) -> str:
        return f"""
            SELECT
                lexical_index.entity_id AS entity_id,
                bm25(lexical_index) AS score
            FROM lexical_index
            WHERE lexical_index MATCH :text AND {where_clause}
            ORDER BY score ASC, entity_id ASC
            LIMIT :limit
        """

    async def index_item(self, entity: LexicalEntity) -> None:
        """Index or replace a single entity (FTS5 has no upsert)."""
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(
                text("DELETE FROM lexical_index WHERE kind = :kind AND entity_id = :entity_id"),
                {"kind": entity.kind.value, "entity_id": entity.entity_id},
            )
            await session.execute(
                text(f"INSERT INTO lexical_index ({LEXICAL_COLUMNS}) VALUES ({LEXICAL_VALUES})"),
                entity.to_insert(),
            )
            logger.debug(f"indexed {entity.kind.value} {entity.entity_id}")
