"""
Tests for the embedding cache: keying, TTL, order preservation, dedupe and failure tolerance.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from vocabmind.vector.cache import EmbeddingCache, InMemoryCacheBackend, normalize_text, text_hash


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_compute(calls):
    async def compute(texts):
        calls.append(list(texts))
        return [[float(len(t)), 1.0] for t in texts]
    return compute


def test_normalize_text_ignores_case_and_whitespace():
    assert normalize_text("  Hello   World ") == "hello world"
    assert text_hash("Hello World") == text_hash("hello  world")
    assert text_hash("hello") != text_hash("help")


def test_cache_key_separates_models():
    cache = EmbeddingCache(model="model-a")
    cache.put("apple", [1.0, 0.0])

    assert cache.get("apple") == [1.0, 0.0]
    assert cache.get("apple", model="model-b") is None
    assert cache.cache_key("apple") != cache.cache_key("apple", model="model-b")


def test_get_or_compute_preserves_order_across_hits_and_misses():
    cache = EmbeddingCache(model="m1")
    cache.put("beta", [2.0, 2.0])
    calls = []

    result = asyncio.run(cache.get_or_compute(["alpha", "beta", "gamma"], make_compute(calls)))

    assert calls == [["alpha", "gamma"]]
    assert result == [[5.0, 1.0], [2.0, 2.0], [5.0, 1.0]]


def test_get_or_compute_all_cached_skips_compute():
    cache = EmbeddingCache(model="m1")
    cache.put("one", [1.0])
    cache.put("two", [2.0])
    compute = MagicMock()

    result = asyncio.run(cache.get_or_compute(["two", "one"], compute))

    assert result == [[2.0], [1.0]]
    compute.assert_not_called()


def test_get_or_compute_deduplicates_equivalent_texts():
    cache = EmbeddingCache(model="m1")
    calls = []

    result = asyncio.run(cache.get_or_compute(["cat", "Cat ", "dog", "cat"], make_compute(calls)))

    assert calls == [["cat", "dog"]]
    assert result[0] == result[1] == result[3]
    assert result[2] == [3.0, 1.0]


def test_duplicate_positions_get_independent_vectors():
    cache = EmbeddingCache(model="m1")

    result = asyncio.run(cache.get_or_compute(["cat", "cat"], make_compute([])))
    result[0][0] = -1.0

    assert result[1] == [3.0, 1.0]
    assert cache.get("cat") == [3.0, 1.0]


def test_computed_entries_are_stored():
    cache = EmbeddingCache(model="m1")
    asyncio.run(cache.get_or_compute(["river"], make_compute([])))

    assert cache.get("river") == [5.0, 1.0]


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = EmbeddingCache(model="m1", ttl_seconds=60, clock=clock)
    cache.put("apple", [1.0])

    clock.now += 59
    assert cache.get("apple") == [1.0]

    clock.now += 2
    assert cache.get("apple") is None
    assert cache.backend.size() == 0


def test_backend_failures_are_treated_as_misses():
    backend = MagicMock()
    backend.get.side_effect = RuntimeError("cache down")
    backend.set.side_effect = RuntimeError("cache down")
    cache = EmbeddingCache(model="m1", backend=backend)
    calls = []

    result = asyncio.run(cache.get_or_compute(["a", "bb"], make_compute(calls)))

    assert calls == [["a", "bb"]]
    assert result == [[1.0, 1.0], [2.0, 1.0]]


def test_compute_count_mismatch_raises():
    cache = EmbeddingCache(model="m1")

    async def short_compute(texts):
        return [[1.0]]

    with pytest.raises(ValueError):
        asyncio.run(cache.get_or_compute(["a", "b"], short_compute))


def test_stats_and_clear():
    cache = EmbeddingCache(model="m1")
    cache.put("a", [1.0])
    cache.get("a")
    cache.get("missing")

    stats = cache.stats()
    assert stats == {"hits": 1, "misses": 1, "size": 1}

    cache.clear()
    assert cache.stats()["size"] == 0


def test_lru_backend_evicts_least_recently_used():
    backend = InMemoryCacheBackend(max_entries=2)
    cache = EmbeddingCache(model="m1", backend=backend)
    cache.put("first", [1.0])
    cache.put("second", [2.0])
    cache.get("first")
    cache.put("third", [3.0])

    assert backend.size() == 2
    assert cache.get("first") == [1.0]
    assert cache.get("second") is None
    assert cache.get("third") == [3.0]
