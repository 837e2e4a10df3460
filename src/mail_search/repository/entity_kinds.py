"""Per-kind table layout for messages, threads and claims.

Every SQL identifier the repositories interpolate comes from this closed
table, never from caller input.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mail_search.errors import InvalidArgumentError
from mail_search.repository.records import (
    ClaimRecord,
    EntityRecord,
    MessageRecord,
    ThreadRecord,
)
from mail_search.schemas.search import EntityKind, ScopeFilter
from mail_search.utils import parse_db_datetime

SCOPE_FIELDS = ("account_ids", "thread_ids", "organization_id", "claim_types")


@dataclass(frozen=True)
class EntityKindHandler:
    kind: EntityKind
    embedding_table: str
    owner_column: str
    owner_table: str
    # entity table aliased, joined to whatever the scope columns need
    from_clause: str
    id_column: str
    select_columns: str
    # ScopeFilter field -> qualified column
    scope_columns: Mapping[str, str]
    # SELECT list producing the lexical_index columns, evaluated over from_clause
    lexical_projection: str
    record_factory: Callable[[Mapping[str, Any]], EntityRecord]

    @property
    def is_thread(self) -> bool:
        return self.kind == EntityKind.THREAD

    async def fetch_by_ids(
        self, session: AsyncSession, entity_ids: Sequence[str]
    ) -> dict[str, EntityRecord]:
        """Hydrate entities by id. Missing ids are simply absent from the result."""
        if not entity_ids:
            return {}
        params: dict[str, Any] = {}
        placeholders = bind_list("entity_id", entity_ids, params)
        result = await session.execute(
            text(
                f"SELECT {self.select_columns} FROM {self.from_clause} "
                f"WHERE {self.id_column} IN ({placeholders})"
            ),
            params,
        )
        return {row["id"]: self.record_factory(row) for row in result.mappings().all()}


def _message_record(row: Mapping[str, Any]) -> MessageRecord:
    return MessageRecord(
        id=row["id"],
        thread_id=row["thread_id"],
        subject=row["subject"],
        snippet=row["snippet"],
        from_email=row["from_email"],
        from_name=row["from_name"],
        sent_at=parse_db_datetime(row["sent_at"]),
    )


def _thread_record(row: Mapping[str, Any]) -> ThreadRecord:
    return ThreadRecord(
        id=row["id"],
        account_id=row["account_id"],
        subject=row["subject"],
        snippet=row["snippet"],
        brief_summary=row["brief_summary"],
        last_message_at=parse_db_datetime(row["last_message_at"]),
        message_count=row["message_count"] or 0,
    )


def _claim_record(row: Mapping[str, Any]) -> ClaimRecord:
    return ClaimRecord(
        id=row["id"],
        organization_id=row["organization_id"],
        type=row["type"],
        text=row["text"],
        thread_id=row["thread_id"],
        message_id=row["message_id"],
        confidence=row["confidence"],
    )


ENTITY_KIND_HANDLERS: dict[EntityKind, EntityKindHandler] = {
    EntityKind.MESSAGE: EntityKindHandler(
        kind=EntityKind.MESSAGE,
        embedding_table="message_embedding",
        owner_column="message_id",
        owner_table="email_message",
        from_clause=(
            "email_message m "
            "JOIN email_thread t ON t.id = m.thread_id "
            "LEFT JOIN email_account a ON a.id = t.account_id"
        ),
        id_column="m.id",
        select_columns=(
            "m.id AS id, m.thread_id AS thread_id, m.subject AS subject, m.snippet AS snippet, "
            "m.from_email AS from_email, m.from_name AS from_name, m.sent_at AS sent_at"
        ),
        scope_columns={
            "account_ids": "t.account_id",
            "thread_ids": "m.thread_id",
            "organization_id": "a.organization_id",
        },
        lexical_projection=(
            "m.id, 'message', t.account_id, m.thread_id, a.organization_id, NULL, "
            "m.subject, m.body_text, m.snippet"
        ),
        record_factory=_message_record,
    ),
    EntityKind.THREAD: EntityKindHandler(
        kind=EntityKind.THREAD,
        embedding_table="thread_embedding",
        owner_column="thread_id",
        owner_table="email_thread",
        from_clause="email_thread t LEFT JOIN email_account a ON a.id = t.account_id",
        id_column="t.id",
        select_columns=(
            "t.id AS id, t.account_id AS account_id, t.subject AS subject, t.snippet AS snippet, "
            "t.brief_summary AS brief_summary, t.last_message_at AS last_message_at, "
            "t.message_count AS message_count"
        ),
        scope_columns={
            "account_ids": "t.account_id",
            "thread_ids": "t.id",
            "organization_id": "a.organization_id",
        },
        lexical_projection=(
            "t.id, 'thread', t.account_id, t.id, a.organization_id, NULL, "
            "t.subject, t.brief_summary, t.snippet"
        ),
        record_factory=_thread_record,
    ),
    EntityKind.CLAIM: EntityKindHandler(
        kind=EntityKind.CLAIM,
        embedding_table="claim_embedding",
        owner_column="claim_id",
        owner_table="claim",
        from_clause="claim c LEFT JOIN email_thread t ON t.id = c.thread_id",
        id_column="c.id",
        select_columns=(
            "c.id AS id, c.organization_id AS organization_id, c.thread_id AS thread_id, "
            "c.message_id AS message_id, c.type AS type, c.text AS text, "
            "c.confidence AS confidence"
        ),
        scope_columns={
            "account_ids": "t.account_id",
            "thread_ids": "c.thread_id",
            "organization_id": "c.organization_id",
            "claim_types": "c.type",
        },
        lexical_projection=(
            "c.id, 'claim', t.account_id, c.thread_id, c.organization_id, c.type, "
            "NULL, c.text, NULL"
        ),
        record_factory=_claim_record,
    ),
}

# Scope columns of the denormalized lexical index, shared by every kind
LEXICAL_SCOPE_COLUMNS: dict[str, str] = {
    "account_ids": "lexical_index.account_id",
    "thread_ids": "lexical_index.thread_id",
    "organization_id": "lexical_index.organization_id",
    "claim_types": "lexical_index.claim_type",
}


def get_handler(kind: EntityKind | str) -> EntityKindHandler:
    try:
        return ENTITY_KIND_HANDLERS[EntityKind(kind)]
    except ValueError as exc:
        raise InvalidArgumentError(f"Unknown entity kind: {kind}") from exc


def validate_scope(kind: EntityKind, scope: Optional[ScopeFilter]) -> None:
    """Reject scope fields that do not apply to the kind."""
    if scope is None or scope.is_empty():
        return
    handler = ENTITY_KIND_HANDLERS[kind]
    for field_name in SCOPE_FIELDS:
        if getattr(scope, field_name) and field_name not in handler.scope_columns:
            raise InvalidArgumentError(f"{field_name} filter is not supported for {kind.value}")


def bind_list(prefix: str, values: Sequence[Any], params: dict[str, Any]) -> str:
    """Add one bind parameter per value and return the IN (...) placeholder list."""
    names = []
    for idx, value in enumerate(values):
        name = f"{prefix}_{idx}"
        params[name] = value
        names.append(f":{name}")
    return ", ".join(names)


def build_scope_conditions(
    scope: Optional[ScopeFilter],
    columns: Mapping[str, str],
    params: dict[str, Any],
) -> list[str]:
    """SQL conditions for the set scope fields. Empty lists do not filter."""
    if scope is None or scope.is_empty():
        return []

    conditions = []
    for field_name in ("account_ids", "thread_ids", "claim_types"):
        values = getattr(scope, field_name)
        if values:
            placeholders = bind_list(f"scope_{field_name}", values, params)
            conditions.append(f"{columns[field_name]} IN ({placeholders})")

    if scope.organization_id:
        params["scope_organization_id"] = scope.organization_id
        conditions.append(f"{columns['organization_id']} = :scope_organization_id")

    return conditions
