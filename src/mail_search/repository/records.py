"""Row data structures returned by the repositories."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Optional, TypeVar

from mail_search.schemas.search import EmbeddingStatus, EntityKind

T = TypeVar("T")


@dataclass
class MessageRecord:
    id: str
    thread_id: str
    subject: Optional[str] = None
    snippet: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    sent_at: Optional[datetime] = None


@dataclass
class ThreadRecord:
    id: str
    account_id: str
    subject: Optional[str] = None
    snippet: Optional[str] = None
    brief_summary: Optional[str] = None
    last_message_at: Optional[datetime] = None
    message_count: int = 0


@dataclass
class ClaimRecord:
    id: str
    organization_id: str
    type: str
    text: str
    thread_id: Optional[str] = None
    message_id: Optional[str] = None
    confidence: Optional[float] = None


EntityRecord = MessageRecord | ThreadRecord | ClaimRecord


@dataclass
class EmbeddingRecord:
    """A stored embedding for one owner entity.

    Thread embeddings also carry how they were aggregated from message vectors.
    """

    id: str
    owner_entity_id: str
    owner_entity_kind: EntityKind
    vector: list[float]
    model: str
    status: EmbeddingStatus
    model_version: Optional[str] = None
    input_hash: Optional[str] = None
    error_message: Optional[str] = None
    token_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # thread kind only
    aggregation_method: Optional[str] = None
    message_count: Optional[int] = None
    total_tokens: Optional[int] = None


@dataclass
class RankedItem(Generic[T]):
    """One hit from a single retrieval path. rank is 1-based, 1 is best."""

    item: T
    rank: int
    similarity: Optional[float] = None  # vector path, in [0, 1]
    distance: Optional[float] = None  # vector path, >= 0
    score: Optional[float] = None  # lexical path, raw backend relevance

    @property
    def item_id(self) -> str:
        return self.item.id  # type: ignore[attr-defined]


@dataclass
class LexicalEntity:
    """Text projection of one entity in the lexical index."""

    entity_id: str
    kind: EntityKind
    subject: Optional[str] = None
    body: Optional[str] = None
    snippet: Optional[str] = None

    # denormalized scope
    account_id: Optional[str] = None
    thread_id: Optional[str] = None
    organization_id: Optional[str] = None
    claim_type: Optional[str] = None

    def to_insert(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "subject": _strip_nul(self.subject),
            "body": _strip_nul(self.body),
            "snippet": _strip_nul(self.snippet),
            "account_id": self.account_id,
            "thread_id": self.thread_id,
            "organization_id": self.organization_id,
            "claim_type": self.claim_type,
        }


@dataclass
class CachedQueryEmbedding:
    query_hash: str
    query_text: str
    vector: list[float]
    model: str
    hit_count: int
    last_used_at: datetime
    created_at: datetime
    expires_at: Optional[datetime] = None


@dataclass
class StatusCounts:
    """Per-status embedding totals for one kind."""

    kind: EntityKind
    counts: dict[EmbeddingStatus, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _strip_nul(value: Optional[str]) -> Optional[str]:
    # Postgres text columns cannot store \x00
    if value is None:
        return None
    return value.replace("\x00", "")
