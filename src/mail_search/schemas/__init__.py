"""Search schema exports.

Rather than importing from individual schema files, you can
import everything from mail_search.schemas.
"""

from mail_search.schemas.search import (
    AggregationMethod,
    ClaimResult,
    EmbeddingStatus,
    EntityKind,
    MessageResult,
    ScopeFilter,
    SearchQuery,
    SearchResponse,
    SearchResultItem,
    ThreadResult,
)

__all__ = [
    "AggregationMethod",
    "ClaimResult",
    "EmbeddingStatus",
    "EntityKind",
    "MessageResult",
    "ScopeFilter",
    "SearchQuery",
    "SearchResponse",
    "SearchResultItem",
    "ThreadResult",
]
