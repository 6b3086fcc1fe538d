"""Tests for the sub-query answer cache."""

from __future__ import annotations

from rlm_runtime.cache import CacheStats, SubQueryCache


class TestSubQueryCacheBasic:
    def test_put_and_get(self):
        cache = SubQueryCache()
        cache.put("k1", "value1")
        assert cache.get("k1") == "value1"

    def test_get_miss_returns_none(self):
        assert SubQueryCache().get("nonexistent") is None

    def test_key_is_deterministic(self):
        assert SubQueryCache.key("m", "p", "ctx") == SubQueryCache.key("m", "p", "ctx")

    def test_key_depends_on_every_part(self):
        base = SubQueryCache.key("m", "p", "ctx")
        assert SubQueryCache.key("other", "p", "ctx") != base
        assert SubQueryCache.key("m", "other", "ctx") != base
        assert SubQueryCache.key("m", "p", "other") != base

    def test_list_context_differs_from_joined_string(self):
        assert SubQueryCache.key("m", "p", ["ab", "c"]) != SubQueryCache.key("m", "p", "abc")

    def test_list_context_boundaries_matter(self):
        assert SubQueryCache.key("m", "p", ["ab", "c"]) != SubQueryCache.key("m", "p", ["a", "bc"])

    def test_overwrite_existing_key(self):
        cache = SubQueryCache()
        cache.put("k", "v1")
        cache.put("k", "v2")
        assert cache.get("k") == "v2"
        assert cache.stats.size == 1


class TestSubQueryCacheStats:
    def test_initial_stats(self):
        assert SubQueryCache().stats == CacheStats(hits=0, misses=0, size=0)

    def test_hits_and_misses_counted(self):
        cache = SubQueryCache()
        cache.get("missing")
        cache.put("k", "v")
        cache.get("k")
        cache.get("k")
        assert cache.stats == CacheStats(hits=2, misses=1, size=1)


class TestSubQueryCacheEviction:
    def test_evicts_least_recently_used(self):
        cache = SubQueryCache(max_size=2)
        cache.put("a", "1")
        cache.put("b", "2")
        cache.get("a")
        cache.put("c", "3")
        assert cache.get("b") is None
        assert cache.get("a") == "1"
        assert cache.get("c") == "3"

    def test_size_never_exceeds_max(self):
        cache = SubQueryCache(max_size=3)
        for i in range(10):
            cache.put(f"k{i}", str(i))
        assert cache.stats.size == 3
