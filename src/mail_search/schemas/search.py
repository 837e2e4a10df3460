"""Search schemas for mail-search.

A search targets one entity kind (message, thread or claim) and combines:
1. Vector similarity of the query embedding against stored embeddings
2. Keyword relevance of the query text against the lexical index
fused with reciprocal rank fusion.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mail_search.vector_math import AggregationMethod


class EntityKind(str, Enum):
    """Searchable entity kinds."""

    MESSAGE = "message"
    THREAD = "thread"
    CLAIM = "claim"


class EmbeddingStatus(str, Enum):
    """Lifecycle of a stored embedding. Only completed rows are searchable."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ScopeFilter(BaseModel):
    """Restricts a search to a subset of the corpus. All set fields must match."""

    account_ids: Optional[List[str]] = None
    thread_ids: Optional[List[str]] = None
    organization_id: Optional[str] = None
    claim_types: Optional[List[str]] = None  # claims only

    def is_empty(self) -> bool:
        return not (self.account_ids or self.thread_ids or self.organization_id or self.claim_types)


class SearchQuery(BaseModel):
    """Hybrid search request.

    Range checks on limit, threshold and vector_weight happen in the service so
    that every entry point reports them the same way (InvalidArgumentError).
    """

    entity_kind: EntityKind
    query_text: str
    query_vector: Optional[List[float]] = None
    limit: int = 10
    threshold: Optional[float] = None  # defaults to the configured hybrid threshold (0.3)
    vector_weight: float = 0.5
    scope: ScopeFilter = Field(default_factory=ScopeFilter)

    @field_validator("query_text")
    @classmethod
    def strip_query_text(cls, v: str) -> str:
        return v.strip()


class MessageResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: Literal["message"] = "message"
    id: str
    thread_id: str
    subject: Optional[str] = None
    snippet: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    sent_at: Optional[datetime] = None


class ThreadResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: Literal["thread"] = "thread"
    id: str
    account_id: str
    subject: Optional[str] = None
    snippet: Optional[str] = None
    brief_summary: Optional[str] = None
    last_message_at: Optional[datetime] = None
    message_count: int = 0


class ClaimResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: Literal["claim"] = "claim"
    id: str
    organization_id: str
    thread_id: Optional[str] = None
    message_id: Optional[str] = None
    type: str
    text: str
    confidence: Optional[float] = None


EntityResult = Annotated[
    Union[MessageResult, ThreadResult, ClaimResult], Field(discriminator="kind")
]


class SearchResultItem(BaseModel):
    """One fused hit."""

    item: EntityResult
    rrf_score: float
    vector_similarity: float
    vector_rank: Optional[int] = None
    lexical_rank: Optional[int] = None


class SearchResponse(BaseModel):
    """Ordered hits, best first, at most ``limit`` long."""

    entity_kind: EntityKind
    results: List[SearchResultItem]
    query_embedding_cached: bool = False


__all__ = [
    "AggregationMethod",
    "ClaimResult",
    "EmbeddingStatus",
    "EntityKind",
    "EntityResult",
    "MessageResult",
    "ScopeFilter",
    "SearchQuery",
    "SearchResponse",
    "SearchResultItem",
    "ThreadResult",
]
