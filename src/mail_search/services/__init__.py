"""Services package."""

from mail_search.services.hybrid_search_service import HybridSearchService
from mail_search.services.query_embedding_cache import QueryEmbeddingCache
from mail_search.services.rank_fusion import FusedResult, RankFuser

__all__ = ["HybridSearchService", "QueryEmbeddingCache", "FusedResult", "RankFuser"]
