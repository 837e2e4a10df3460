"""Pure vector helpers shared by the embedding store and tests.

All functions take plain sequences of floats. Dimension mismatches raise
DimensionMismatchError; a zero vector is treated as "no direction" rather
than an error, so its cosine similarity to anything is 0.0.
"""

import math
from enum import Enum
from typing import Optional, Sequence

from mail_search.errors import DimensionMismatchError, InvalidArgumentError

DEFAULT_EMBEDDING_DIMENSIONS = 1536

# Output sizes of the embedding models the ingestion pipeline knows about
EMBEDDING_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "e5-small-v2": 384,
    "e5-base-v2": 768,
    "e5-large-v2": 1024,
    "bge-small-en": 384,
    "bge-base-en": 768,
    "bge-large-en": 1024,
}


class AggregationMethod(str, Enum):
    """How a thread vector was derived from its message vectors."""

    MEAN = "mean"
    FIRST = "first"
    WEIGHTED = "weighted"
    MAX_POOL = "max_pool"
    CLS = "cls"


def embedding_dimensions_for_model(model: str) -> int:
    return EMBEDDING_DIMENSIONS.get(model, DEFAULT_EMBEDDING_DIMENSIONS)


def check_dimensions(vector: Sequence[float], expected: int) -> None:
    """Raise DimensionMismatchError unless len(vector) == expected."""
    if len(vector) != expected:
        raise DimensionMismatchError(expected, len(vector))


def _check_same_length(a: Sequence[float], b: Sequence[float]) -> None:
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))


def l2_norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(x * x for x in vector))


def inner_product(a: Sequence[float], b: Sequence[float]) -> float:
    _check_same_length(a, b)
    return sum(x * y for x, y in zip(a, b))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between a and b, 0.0 when either has zero norm."""
    _check_same_length(a, b)
    norm_a = l2_norm(a)
    norm_b = l2_norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    similarity = inner_product(a, b) / (norm_a * norm_b)
    # rounding can push |cos| slightly past 1
    return max(-1.0, min(1.0, similarity))


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return 1.0 - cosine_similarity(a, b)


def l2_distance(a: Sequence[float], b: Sequence[float]) -> float:
    _check_same_length(a, b)
    return math.sqrt(sum((x - y) * (x - y) for x, y in zip(a, b)))


def normalize(vector: Sequence[float]) -> list[float]:
    """Scale to unit L2 norm. A zero vector is returned unchanged."""
    norm = l2_norm(vector)
    if norm == 0.0:
        return list(vector)
    return [x / norm for x in vector]


def aggregate(
    vectors: Sequence[Sequence[float]],
    method: AggregationMethod | str = AggregationMethod.MEAN,
    weights: Optional[Sequence[float]] = None,
) -> list[float]:
    """Fold per-message vectors into one thread vector.

    Args:
        vectors: Message vectors in thread order, all the same dimension
        method: mean, first, weighted or max_pool
        weights: Per-vector weights, required for ``weighted``

    Raises:
        InvalidArgumentError: Empty input, bad weights, or ``cls`` (that vector
            comes from the model and cannot be rebuilt from message vectors)
        DimensionMismatchError: Vectors of different lengths
    """
    method = AggregationMethod(method)
    if not vectors:
        raise InvalidArgumentError("cannot aggregate an empty list of vectors")

    dimensions = len(vectors[0])
    for vector in vectors[1:]:
        check_dimensions(vector, dimensions)

    if method == AggregationMethod.FIRST:
        return list(vectors[0])

    if method == AggregationMethod.MEAN:
        count = len(vectors)
        return [sum(column) / count for column in zip(*vectors)]

    if method == AggregationMethod.MAX_POOL:
        return [max(column) for column in zip(*vectors)]

    if method == AggregationMethod.WEIGHTED:
        if weights is None or len(weights) != len(vectors):
            raise InvalidArgumentError("weighted aggregation needs one weight per vector")
        total = sum(weights)
        if total <= 0:
            raise InvalidArgumentError("aggregation weights must sum to a positive value")
        return [
            sum(w * value for w, value in zip(weights, column)) / total
            for column in zip(*vectors)
        ]

    raise InvalidArgumentError(f"aggregation method '{method.value}' cannot be computed locally")
