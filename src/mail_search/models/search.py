"""Search DDL statements for SQLite and Postgres.

The embedding and lexical tables are created via raw DDL, not ORM models, because:
- the vector column type depends on the backend (pgvector ``vector(N)`` vs a float32 BLOB
  read by sqlite-vec) and on the configured dimension
- SQLite uses an FTS5 virtual table for the lexical index (cannot be represented as ORM)
- Postgres uses a generated tsvector column
- all search operations use raw SQL through dataclass rows
"""

from sqlalchemy import DDL

EMBEDDING_STATUSES = ("pending", "processing", "completed", "failed")
AGGREGATION_METHODS = ("mean", "first", "weighted", "max_pool", "cls")

_STATUS_CHECK = "status IN ({})".format(", ".join(f"'{s}'" for s in EMBEDDING_STATUSES))
_AGGREGATION_CHECK = "aggregation_method IN ({})".format(
    ", ".join(f"'{m}'" for m in AGGREGATION_METHODS)
)


def _thread_columns() -> str:
    return f"""
    aggregation_method TEXT NOT NULL DEFAULT 'mean' CHECK ({_AGGREGATION_CHECK}),
    message_count INTEGER NOT NULL CHECK (message_count >= 1),
    total_tokens INTEGER,"""


def create_sqlite_embedding_table(
    table: str, owner_column: str, owner_table: str, with_thread_columns: bool = False
) -> list[DDL]:
    """Embedding table for one entity kind.

    Vectors are float32 BLOBs (sqlite_vec.serialize_float32) compared with
    vec_distance_cosine(); ``dimensions`` lets searches skip rows written under
    another model.
    """
    thread_columns = _thread_columns() if with_thread_columns else ""
    return [
        DDL(f"""
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    {owner_column} TEXT NOT NULL UNIQUE REFERENCES {owner_table}(id) ON DELETE CASCADE,
    embedding BLOB NOT NULL,
    dimensions INTEGER NOT NULL,
    model TEXT NOT NULL,
    model_version TEXT,
    token_count INTEGER,
    input_hash TEXT,
    status TEXT NOT NULL DEFAULT 'completed' CHECK ({_STATUS_CHECK}),
    error_message TEXT,{thread_columns}
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""),
        DDL(f"CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table} (status)"),
    ]


def create_postgres_embedding_table(
    table: str,
    owner_column: str,
    owner_table: str,
    dimensions: int,
    with_thread_columns: bool = False,
) -> list[DDL]:
    """pgvector embedding table for one entity kind, with an HNSW cosine index.

    asyncpg doesn't support multiple statements in a single execute call, so
    each statement is its own DDL.
    """
    thread_columns = _thread_columns() if with_thread_columns else ""
    return [
        DDL(f"""
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    {owner_column} TEXT NOT NULL UNIQUE REFERENCES {owner_table}(id) ON DELETE CASCADE,
    embedding vector({dimensions}) NOT NULL,
    dimensions INTEGER NOT NULL,
    model TEXT NOT NULL,
    model_version TEXT,
    token_count INTEGER,
    input_hash TEXT,
    status TEXT NOT NULL DEFAULT 'completed' CHECK ({_STATUS_CHECK}),
    error_message TEXT,{thread_columns}
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""),
        DDL(f"CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table} (status)"),
        # HNSW index for approximate nearest-neighbour search at scale.
        DDL(f"""
CREATE INDEX IF NOT EXISTS idx_{table}_hnsw
ON {table}
USING hnsw (embedding vector_cosine_ops)
WITH (m = 16, ef_construction = 64)
"""),
    ]


# FTS5 virtual table for SQLite. Scope columns are denormalized so keyword
# search never needs a join before ranking.
CREATE_SQLITE_LEXICAL_INDEX = DDL("""
CREATE VIRTUAL TABLE IF NOT EXISTS lexical_index USING fts5(
    -- Identity
    entity_id UNINDEXED,       -- message/thread/claim id
    kind UNINDEXED,            -- message, thread or claim

    -- Scope
    account_id UNINDEXED,
    thread_id UNINDEXED,
    organization_id UNINDEXED,
    claim_type UNINDEXED,

    -- Searchable text
    subject,
    body,
    snippet,

    -- Configuration
    tokenize='porter unicode61'
);
""")

CREATE_POSTGRES_LEXICAL_INDEX_TABLE = DDL("""
CREATE TABLE IF NOT EXISTS lexical_index (
    entity_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    account_id TEXT,
    thread_id TEXT,
    organization_id TEXT,
    claim_type TEXT,
    subject TEXT,
    body TEXT,
    snippet TEXT,
    textsearchable_index_col tsvector GENERATED ALWAYS AS (
        to_tsvector(
            'english',
            coalesce(subject, '') || ' ' || coalesce(body, '') || ' ' || coalesce(snippet, '')
        )
    ) STORED,
    PRIMARY KEY (kind, entity_id)
)
""")

CREATE_POSTGRES_LEXICAL_INDEX_FTS = DDL("""
CREATE INDEX IF NOT EXISTS idx_lexical_index_fts ON lexical_index USING gin(textsearchable_index_col)
""")

CREATE_POSTGRES_LEXICAL_INDEX_SCOPE = DDL("""
CREATE INDEX IF NOT EXISTS idx_lexical_index_kind_account ON lexical_index (kind, account_id)
""")
