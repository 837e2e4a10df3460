"""Hybrid (vector + keyword) search over messages, threads and claims."""

import asyncio
import time
from typing import Any, Optional, Sequence

from loguru import logger

from mail_search.config import MailSearchConfig
from mail_search.errors import (
    EmbeddingRequiredError,
    InvalidArgumentError,
    MailSearchError,
    SearchBackendError,
)
from mail_search.repository.embedding_provider import EmbeddingProvider
from mail_search.repository.embedding_repository import EmbeddingRepository
from mail_search.repository.entity_kinds import get_handler, validate_scope
from mail_search.repository.lexical_repository import LexicalRepository
from mail_search.repository.records import EntityRecord, RankedItem
from mail_search.schemas.search import (
    ClaimResult,
    EntityKind,
    MessageResult,
    ScopeFilter,
    SearchQuery,
    SearchResponse,
    SearchResultItem,
    ThreadResult,
)
from mail_search.services.query_embedding_cache import QueryEmbeddingCache
from mail_search.services.rank_fusion import FusedResult, RankFuser
from mail_search.vector_math import check_dimensions

RESULT_MODELS = {
    EntityKind.MESSAGE: MessageResult,
    EntityKind.THREAD: ThreadResult,
    EntityKind.CLAIM: ClaimResult,
}


class HybridSearchService:
    """Runs the vector and keyword paths concurrently and fuses them with RRF.

    The query vector comes from the caller, the query embedding cache, or an
    optional embedding provider, in that order. Without any of them the search
    fails with EmbeddingRequiredError rather than silently dropping to keyword
    search.
    """

    def __init__(
        self,
        embedding_repository: EmbeddingRepository,
        lexical_repository: LexicalRepository,
        app_config: MailSearchConfig,
        query_cache: Optional[QueryEmbeddingCache] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        rank_fuser: Optional[RankFuser] = None,
    ):
        self.embedding_repository = embedding_repository
        self.lexical_repository = lexical_repository
        self.app_config = app_config
        self.query_cache = query_cache
        self.embedding_provider = embedding_provider
        self.rank_fuser = rank_fuser or RankFuser(
            k=app_config.rrf_k, missing_rank=app_config.rrf_missing_rank
        )

    async def search(
        self,
        kind: EntityKind,
        query_text: str,
        query_vector: Optional[Sequence[float]] = None,
        *,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        vector_weight: Optional[float] = None,
        scope: Optional[ScopeFilter] = None,
    ) -> list[FusedResult[EntityRecord]]:
        """Fused hits for query_text, best first, at most limit long.

        Raises:
            InvalidArgumentError: bad limit, threshold, weight, scope, or a blank
                query without a vector
            DimensionMismatchError: query_vector of the wrong length
            EmbeddingRequiredError: no vector given, none cached, no provider
            SearchBackendError: a retrieval path failed (unless degrading is enabled)
        """
        results, _ = await self._search(
            kind,
            query_text,
            query_vector,
            limit=limit,
            threshold=threshold,
            vector_weight=vector_weight,
            scope=scope,
        )
        return results

    async def search_query(self, query: SearchQuery) -> SearchResponse:
        """Pydantic request/response wrapper around search()."""
        results, cached = await self._search(
            query.entity_kind,
            query.query_text,
            query.query_vector,
            limit=query.limit,
            threshold=query.threshold,
            vector_weight=query.vector_weight,
            scope=query.scope,
        )
        result_model = RESULT_MODELS[query.entity_kind]
        return SearchResponse(
            entity_kind=query.entity_kind,
            results=[
                SearchResultItem(
                    item=result_model.model_validate(result.item),
                    rrf_score=result.rrf_score,
                    vector_similarity=result.vector_similarity,
                    vector_rank=result.vector_rank,
                    lexical_rank=result.lexical_rank,
                )
                for result in results
            ],
            query_embedding_cached=cached,
        )

    async def _search(
        self,
        kind: EntityKind,
        query_text: str,
        query_vector: Optional[Sequence[float]],
        *,
        limit: Optional[int],
        threshold: Optional[float],
        vector_weight: Optional[float],
        scope: Optional[ScopeFilter],
    ) -> tuple[list[FusedResult[EntityRecord]], bool]:
        config = self.app_config
        limit = config.default_limit if limit is None else limit
        threshold = config.hybrid_similarity_threshold if threshold is None else threshold
        vector_weight = config.default_vector_weight if vector_weight is None else vector_weight

        # --- validation, before any I/O ---
        handler = get_handler(kind)
        if limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
        if not 0.0 <= threshold <= 1.0:
            raise InvalidArgumentError(f"threshold must be within [0, 1], got {threshold}")
        if not 0.0 <= vector_weight <= 1.0:
            raise InvalidArgumentError(f"vector_weight must be within [0, 1], got {vector_weight}")
        validate_scope(handler.kind, scope)
        if query_vector is not None:
            check_dimensions(query_vector, self.embedding_repository.vector_dimensions)
        query_text = query_text or ""
        if not query_text.strip() and query_vector is None:
            raise InvalidArgumentError("query_text is blank and no query_vector was given")

        start_time = time.perf_counter()
        vector, cached = await self._resolve_query_vector(query_text, query_vector)

        candidate_limit = max(config.hybrid_candidate_limit, limit)
        vector_outcome, lexical_outcome = await asyncio.gather(
            self.embedding_repository.similarity_search(
                handler.kind, vector, limit=candidate_limit, threshold=threshold, scope=scope
            ),
            self.lexical_repository.search(
                handler.kind, query_text, limit=candidate_limit, scope=scope
            ),
            return_exceptions=True,
        )
        vector_hits, lexical_hits = self._settle_paths(vector_outcome, lexical_outcome)

        results = self.rank_fuser.fuse(
            vector_hits, lexical_hits, vector_weight=vector_weight, limit=limit
        )
        elapsed = time.perf_counter() - start_time
        logger.debug(
            f"Hybrid {handler.kind.value} search: vector={len(vector_hits)} "
            f"lexical={len(lexical_hits)} fused={len(results)} in {elapsed:.3f}s"
        )
        return results, cached

    async def _resolve_query_vector(
        self, query_text: str, query_vector: Optional[Sequence[float]]
    ) -> tuple[list[float], bool]:
        """Caller vector, then cache, then provider. Returns (vector, came_from_cache)."""
        dimensions = self.embedding_repository.vector_dimensions
        if query_vector is not None:
            return list(query_vector), False

        if self.query_cache is not None:
            cached = await self.query_cache.get(query_text)
            if cached is not None:
                if len(cached) == dimensions:
                    return cached, True
                logger.warning(
                    f"Ignoring cached query embedding with {len(cached)} dimensions, "
                    f"expected {dimensions}"
                )

        if self.embedding_provider is None:
            raise EmbeddingRequiredError(query_text)

        vector = await self.embedding_provider.embed_query(query_text)
        check_dimensions(vector, dimensions)
        if self.query_cache is not None:
            await self.query_cache.put(query_text, vector, self.embedding_provider.model_name)
        return vector, False

    def _settle_paths(
        self, vector_outcome: Any, lexical_outcome: Any
    ) -> tuple[list[RankedItem[EntityRecord]], list[RankedItem[EntityRecord]]]:
        """Unwrap gather() results, wrapping or degrading storage failures."""
        outcomes = {"vector": vector_outcome, "lexical": lexical_outcome}
        failures: dict[str, Exception] = {}
        for path, outcome in outcomes.items():
            if not isinstance(outcome, BaseException):
                continue
            # argument errors and cancellation are never degraded
            if isinstance(outcome, MailSearchError) or not isinstance(outcome, Exception):
                raise outcome
            failures[path] = outcome

        if failures:
            degrade = self.app_config.degrade_on_path_failure and len(failures) == 1
            if not degrade:
                path, error = next(iter(failures.items()))
                logger.error(f"{path} retrieval failed: {error}")
                raise SearchBackendError(path, error) from error
            path, error = next(iter(failures.items()))
            logger.warning(f"{path} retrieval failed, continuing with the other path: {error}")
            outcomes[path] = []

        return outcomes["vector"], outcomes["lexical"]
