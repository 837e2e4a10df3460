"""Tests for the query embedding cache."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from mail_search.services.query_embedding_cache import QueryEmbeddingCache
from mail_search.utils import hash_query_text

VECTOR = [0.25, -0.5, 0.125, 1.0]


@pytest.mark.asyncio
async def test_put_then_get_returns_vector_and_counts_hit(query_cache, engine_factory):
    await query_cache.put("budget review", VECTOR, "test-model")

    entry = await query_cache.get_entry("budget review")
    assert entry is not None
    assert entry.hit_count == 1

    assert await query_cache.get("budget review") == VECTOR

    entry = await query_cache.get_entry("budget review")
    assert entry.hit_count == 2
    assert entry.model == "test-model"
    assert entry.query_hash == hash_query_text("budget review")


@pytest.mark.asyncio
async def test_get_refreshes_last_used_at(query_cache, clock, engine_factory):
    await query_cache.put("budget review", VECTOR, "test-model")
    created = clock()

    clock.advance(30)
    await query_cache.get("budget review")

    entry = await query_cache.get_entry("budget review")
    assert entry.last_used_at == created + timedelta(seconds=30)
    assert entry.created_at == created


@pytest.mark.asyncio
async def test_miss_returns_none(query_cache, engine_factory):
    assert await query_cache.get("never cached") is None


@pytest.mark.asyncio
async def test_whitespace_variants_share_an_entry(query_cache, engine_factory):
    await query_cache.put("  budget \n  review ", VECTOR, "test-model")

    assert await query_cache.get("budget review") == VECTOR
    entry = await query_cache.get_entry("budget review")
    assert entry.query_text == "budget review"


@pytest.mark.asyncio
async def test_entry_expires_after_ttl(query_cache, clock, engine_factory):
    await query_cache.put("budget review", VECTOR, "test-model", ttl=60)

    entry = await query_cache.get_entry("budget review")
    assert entry.expires_at == clock() + timedelta(seconds=60)

    clock.advance(60)
    # still live at exactly expires_at
    assert await query_cache.get("budget review") == VECTOR

    clock.advance(1)
    assert await query_cache.get("budget review") is None


@pytest.mark.asyncio
async def test_ttl_accepts_timedelta(query_cache, clock, engine_factory):
    await query_cache.put("budget review", VECTOR, "test-model", ttl=timedelta(minutes=5))

    entry = await query_cache.get_entry("budget review")
    assert entry.expires_at == clock() + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_default_ttl_from_config(cache_repository, app_config, clock, engine_factory):
    config = app_config.model_copy(update={"query_cache_ttl_seconds": 90})
    cache = QueryEmbeddingCache(cache_repository, config, clock=clock)

    await cache.put("budget review", VECTOR, "test-model")

    entry = await cache.get_entry("budget review")
    assert entry.expires_at == clock() + timedelta(seconds=90)


@pytest.mark.asyncio
async def test_no_ttl_never_expires(query_cache, clock, engine_factory):
    await query_cache.put("budget review", VECTOR, "test-model")

    clock.advance(365 * 24 * 3600)

    assert await query_cache.get("budget review") == VECTOR
    assert await query_cache.evict_expired() == 0


@pytest.mark.asyncio
async def test_put_overwrites_and_resets_hits(query_cache, engine_factory):
    await query_cache.put("budget review", VECTOR, "old-model")
    await query_cache.get("budget review")
    await query_cache.get("budget review")

    replacement = [1.0, 0.0, 0.0, 0.0]
    await query_cache.put("budget review", replacement, "new-model")

    entry = await query_cache.get_entry("budget review")
    assert entry.vector == replacement
    assert entry.model == "new-model"
    assert entry.hit_count == 1


@pytest.mark.asyncio
async def test_evict(query_cache, engine_factory):
    await query_cache.put("budget review", VECTOR, "test-model")

    assert await query_cache.evict("budget review") is True
    assert await query_cache.evict("budget review") is False
    assert await query_cache.get("budget review") is None


@pytest.mark.asyncio
async def test_evict_expired_removes_only_expired(query_cache, clock, engine_factory):
    await query_cache.put("short lived", VECTOR, "test-model", ttl=10)
    await query_cache.put("long lived", VECTOR, "test-model", ttl=3600)
    await query_cache.put("forever", VECTOR, "test-model")

    clock.advance(11)

    assert await query_cache.evict_expired() == 1
    assert await query_cache.get_entry("short lived") is None
    assert await query_cache.get_entry("long lived") is not None
    assert await query_cache.get_entry("forever") is not None


@pytest.mark.asyncio
async def test_evict_on_get(cache_repository, app_config, clock, engine_factory):
    config = app_config.model_copy(update={"query_cache_evict_on_get": True})
    cache = QueryEmbeddingCache(cache_repository, config, clock=clock)
    await cache.put("short lived", VECTOR, "test-model", ttl=10)

    clock.advance(11)
    await cache.get("anything else")

    # expired row was removed as a side effect of the lookup
    assert await cache.get_entry("short lived") is None


@pytest.mark.asyncio
async def test_concurrent_hits_are_all_counted(query_cache, engine_factory):
    await query_cache.put("budget review", VECTOR, "test-model")

    await asyncio.gather(*(query_cache.get("budget review") for _ in range(5)))

    entry = await query_cache.get_entry("budget review")
    assert entry.hit_count == 6


@pytest.mark.asyncio
async def test_lookup_failure_is_a_miss(app_config):
    repository = MagicMock()
    repository.record_hit = AsyncMock(side_effect=RuntimeError("cache store unavailable"))
    cache = QueryEmbeddingCache(repository, app_config)

    assert await cache.get("budget review") is None


@pytest.mark.asyncio
async def test_write_failure_is_swallowed(app_config):
    repository = MagicMock()
    repository.upsert = AsyncMock(side_effect=RuntimeError("cache store unavailable"))
    cache = QueryEmbeddingCache(repository, app_config)

    await cache.put("budget review", VECTOR, "test-model")

    repository.upsert.assert_awaited_once()
