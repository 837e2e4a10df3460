"""Weighted reciprocal rank fusion of a vector ranking and a keyword ranking."""

from dataclasses import dataclass
from typing import Generic, Optional, Sequence, TypeVar

from mail_search.errors import InvalidArgumentError
from mail_search.repository.records import RankedItem

T = TypeVar("T")

RRF_K = 60
MISSING_RANK = 1000


@dataclass
class FusedResult(Generic[T]):
    item: T
    rrf_score: float
    vector_similarity: float
    vector_rank: Optional[int] = None
    lexical_rank: Optional[int] = None


class RankFuser:
    """Combines two ranked lists using only ranks, never raw scores.

    score(id) = w / (k + vector_rank) + (1 - w) / (k + lexical_rank)

    An item missing from one list gets ``missing_rank`` there, so it still
    scores but below anything the other list ranked.
    """

    def __init__(self, k: int = RRF_K, missing_rank: int = MISSING_RANK):
        if k < 0:
            raise InvalidArgumentError(f"k must be non-negative, got {k}")
        if missing_rank < 1:
            raise InvalidArgumentError(f"missing_rank must be positive, got {missing_rank}")
        self.k = k
        self.missing_rank = missing_rank

    @staticmethod
    def _best_ranks(ranked: Sequence[RankedItem[T]]) -> dict[str, RankedItem[T]]:
        # an id listed twice keeps its best rank
        best: dict[str, RankedItem[T]] = {}
        for entry in ranked:
            current = best.get(entry.item_id)
            if current is None or entry.rank < current.rank:
                best[entry.item_id] = entry
        return best

    def fuse(
        self,
        vector_ranked: Sequence[RankedItem[T]],
        lexical_ranked: Sequence[RankedItem[T]],
        *,
        vector_weight: float = 0.5,
        limit: Optional[int] = None,
    ) -> list[FusedResult[T]]:
        """Fuse, sort by score desc then id asc, and truncate to limit."""
        if not 0.0 <= vector_weight <= 1.0:
            raise InvalidArgumentError(f"vector_weight must be within [0, 1], got {vector_weight}")
        if limit is not None and limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")

        keyword_weight = 1.0 - vector_weight
        vector_by_id = self._best_ranks(vector_ranked)
        lexical_by_id = self._best_ranks(lexical_ranked)

        fused: list[FusedResult[T]] = []
        for item_id in vector_by_id.keys() | lexical_by_id.keys():
            vector_entry = vector_by_id.get(item_id)
            lexical_entry = lexical_by_id.get(item_id)
            vector_rank = vector_entry.rank if vector_entry else self.missing_rank
            lexical_rank = lexical_entry.rank if lexical_entry else self.missing_rank

            score = vector_weight / (self.k + vector_rank) + keyword_weight / (
                self.k + lexical_rank
            )
            source = vector_entry or lexical_entry
            assert source is not None
            fused.append(
                FusedResult(
                    item=source.item,
                    rrf_score=score,
                    vector_similarity=(vector_entry.similarity or 0.0) if vector_entry else 0.0,
                    vector_rank=vector_entry.rank if vector_entry else None,
                    lexical_rank=lexical_entry.rank if lexical_entry else None,
                )
            )

        fused.sort(key=lambda result: (-result.rrf_score, result.item.id))  # type: ignore[attr-defined]
        if limit is not None:
            fused = fused[:limit]
        return fused
