"""PostgreSQL tsvector-based lexical index implementation."""

from typing import List

from loguru import logger
from sqlalchemy import text

from mail_search import db
from mail_search.models.search import (
    CREATE_POSTGRES_LEXICAL_INDEX_FTS,
    CREATE_POSTGRES_LEXICAL_INDEX_SCOPE,
    CREATE_POSTGRES_LEXICAL_INDEX_TABLE,
)
from mail_search.repository.lexical_repository_base import (
    LEXICAL_COLUMNS,
    LEXICAL_VALUES,
    LexicalRepositoryBase,
)
from mail_search.repository.records import LexicalEntity

UPSERT_LEXICAL_ROW = f"""
    INSERT INTO lexical_index ({LEXICAL_COLUMNS})
    VALUES ({LEXICAL_VALUES})
    ON CONFLICT (kind, entity_id) DO UPDATE SET
        account_id = EXCLUDED.account_id,
        thread_id = EXCLUDED.thread_id,
        organization_id = EXCLUDED.organization_id,
        claim_type = EXCLUDED.claim_type,
        subject = EXCLUDED.subject,
        body = EXCLUDED.body,
        snippet = EXCLUDED.snippet
"""


class PostgresLexicalRepository(LexicalRepositoryBase):
    """PostgreSQL tsvector implementation of the lexical index.

    Uses PostgreSQL's full-text search capabilities with:
    - a generated tsvector column over subject, body and snippet
    - plainto_tsquery('english', ...) so every term is required and syntax is ignored
    - a GIN index
    - ts_rank() for relevance scoring (higher is better)

    Writes use INSERT ... ON CONFLICT on the (kind, entity_id) primary key.
    """

    async def init_search_index(self) -> None:
        logger.info("Initializing Postgres lexical index")
        try:
            async with db.scoped_session(self.session_maker) as session:
                # asyncpg requires separate execute calls for each statement
                await session.execute(CREATE_POSTGRES_LEXICAL_INDEX_TABLE)
                await session.execute(CREATE_POSTGRES_LEXICAL_INDEX_FTS)
                await session.execute(CREATE_POSTGRES_LEXICAL_INDEX_SCOPE)
        except Exception as e:  # pragma: no cover
            logger.error(f"Error initializing lexical index: {e}")
            raise e

    def _prepare_search_term(self, tokens: List[str]) -> str:
        return " ".join(tokens)

    def _match_sql(self, where_clause: str) -> str:
        return f"""
            SELECT
                lexical_index.entity_id AS entity_id,
                ts_rank(lexical_index.textsearchable_index_col, plainto_tsquery('english', :text)) AS score
            FROM lexical_index
            WHERE lexical_index.textsearchable_index_col @@ plainto_tsquery('english', :text)
              AND {where_clause}
            ORDER BY score DESC, entity_id ASC
            LIMIT :limit
        """

    async def index_item(self, entity: LexicalEntity) -> None:
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(text(UPSERT_LEXICAL_ROW), entity.to_insert())
            logger.debug(f"indexed {entity.kind.value} {entity.entity_id}")

    async def bulk_index_items(self, entities: List[LexicalEntity]) -> None:
        """Index multiple entities in a single batch using UPSERT."""
        if not entities:
            return

        async with db.scoped_session(self.session_maker) as session:
            await session.execute(
                text(UPSERT_LEXICAL_ROW), [entity.to_insert() for entity in entities]
            )
            logger.debug(f"Bulk indexed {len(entities)} rows")
