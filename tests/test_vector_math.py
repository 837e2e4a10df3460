"""Tests for the pure vector helpers."""

import math
import random

import pytest

from mail_search.errors import DimensionMismatchError, InvalidArgumentError
from mail_search.vector_math import (
    AggregationMethod,
    aggregate,
    check_dimensions,
    cosine_distance,
    cosine_similarity,
    embedding_dimensions_for_model,
    inner_product,
    l2_distance,
    l2_norm,
    normalize,
)


def _random_vectors(count: int, dimensions: int = 8, seed: int = 7) -> list[list[float]]:
    rng = random.Random(seed)
    return [[rng.gauss(0.0, 1.0) for _ in range(dimensions)] for _ in range(count)]


def test_cosine_similarity_of_vector_with_itself_is_one():
    for vector in _random_vectors(25):
        assert cosine_similarity(vector, vector) == pytest.approx(1.0)


def test_cosine_similarity_is_symmetric():
    vectors = _random_vectors(20)
    for a, b in zip(vectors, vectors[1:]):
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


def test_cosine_similarity_known_values():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 1.0], [1.0, 0.0]) == pytest.approx(1 / math.sqrt(2))


def test_cosine_similarity_zero_vector_is_zero():
    assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0
    assert cosine_distance([0.0, 0.0], [0.0, 0.0]) == 1.0


def test_cosine_similarity_stays_within_bounds():
    vector = [1e-3, 3.0, 7.5]
    scaled = [x * 1e6 for x in vector]
    assert -1.0 <= cosine_similarity(vector, scaled) <= 1.0


@pytest.mark.parametrize("func", [cosine_similarity, inner_product, l2_distance, cosine_distance])
def test_dimension_mismatch_raises(func):
    with pytest.raises(DimensionMismatchError) as exc_info:
        func([1.0, 2.0], [1.0, 2.0, 3.0])
    assert exc_info.value.expected == 2
    assert exc_info.value.actual == 3


def test_dimension_mismatch_is_a_value_error():
    with pytest.raises(ValueError):
        check_dimensions([1.0, 2.0], 3)


def test_inner_product_and_l2():
    assert inner_product([1.0, 2.0, 3.0], [4.0, 5.0, 6.0]) == 32.0
    assert l2_distance([0.0, 0.0], [3.0, 4.0]) == 5.0
    assert l2_norm([3.0, 4.0]) == 5.0


def test_normalize_unit_length():
    for vector in _random_vectors(10):
        assert l2_norm(normalize(vector)) == pytest.approx(1.0)


def test_normalize_is_idempotent():
    for vector in _random_vectors(10):
        once = normalize(vector)
        twice = normalize(once)
        assert twice == pytest.approx(once)


def test_normalize_zero_vector_unchanged():
    assert normalize([0.0, 0.0, 0.0]) == [0.0, 0.0, 0.0]


def test_embedding_dimensions_for_model():
    assert embedding_dimensions_for_model("text-embedding-3-small") == 1536
    assert embedding_dimensions_for_model("text-embedding-3-large") == 3072
    assert embedding_dimensions_for_model("bge-small-en") == 384
    assert embedding_dimensions_for_model("unknown-model") == 1536


class TestAggregate:
    vectors = [[1.0, 0.0, 4.0], [3.0, 2.0, 0.0]]

    def test_mean(self):
        assert aggregate(self.vectors) == [2.0, 1.0, 2.0]

    def test_first(self):
        assert aggregate(self.vectors, AggregationMethod.FIRST) == [1.0, 0.0, 4.0]

    def test_max_pool(self):
        assert aggregate(self.vectors, "max_pool") == [3.0, 2.0, 4.0]

    def test_weighted(self):
        result = aggregate(self.vectors, AggregationMethod.WEIGHTED, weights=[3.0, 1.0])
        assert result == pytest.approx([1.5, 0.5, 3.0])

    def test_weighted_requires_matching_weights(self):
        with pytest.raises(InvalidArgumentError):
            aggregate(self.vectors, AggregationMethod.WEIGHTED)
        with pytest.raises(InvalidArgumentError):
            aggregate(self.vectors, AggregationMethod.WEIGHTED, weights=[1.0])
        with pytest.raises(InvalidArgumentError):
            aggregate(self.vectors, AggregationMethod.WEIGHTED, weights=[0.0, 0.0])

    def test_cls_cannot_be_computed(self):
        with pytest.raises(InvalidArgumentError):
            aggregate(self.vectors, AggregationMethod.CLS)

    def test_empty_input(self):
        with pytest.raises(InvalidArgumentError):
            aggregate([])

    def test_mixed_lengths(self):
        with pytest.raises(DimensionMismatchError):
            aggregate([[1.0, 2.0], [1.0, 2.0, 3.0]])

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            aggregate(self.vectors, "median")
