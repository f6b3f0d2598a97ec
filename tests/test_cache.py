"""
TTL cache: expiry boundary, LRU bound and coalesced computation.
"""
import threading
import time

import pytest

from llm_txt.cache import CacheCategory, TTLCache, estimate_key, get_ttl_for_category, identifier_key

from .conftest import FakeClock


def test_value_visible_until_ttl_then_absent():
    clock = FakeClock(start=0.0)
    cache = TTLCache(clock=clock)
    cache.set("id:farcaster:alice", "42", ttl=300)

    clock.advance(299.999)
    assert cache.get("id:farcaster:alice") == "42"

    clock.advance(0.001)
    assert cache.get("id:farcaster:alice") is None
    assert cache.get_stats()["expired"] == 1


def test_default_ttl_comes_from_category():
    clock = FakeClock(start=0.0)
    cache = TTLCache(clock=clock)
    cache.set("estimate:farcaster:x", "v", category=CacheCategory.ESTIMATE)

    clock.advance(get_ttl_for_category(CacheCategory.ESTIMATE) - 1)
    assert cache.get("estimate:farcaster:x") == "v"
    clock.advance(1)
    assert cache.get("estimate:farcaster:x") is None


def test_none_is_never_stored():
    cache = TTLCache(clock=FakeClock())
    cache.set("k", None)
    assert len(cache) == 0


def test_lru_eviction_drops_least_recently_used():
    cache = TTLCache(max_entries=2, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1  # a is now most recent

    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.get_stats()["evicted"] == 1


def test_get_or_set_computes_once_and_caches():
    cache = TTLCache(clock=FakeClock())
    calls = []

    def compute():
        calls.append(1)
        return "value"

    assert cache.get_or_set("k", compute, ttl=60) == "value"
    assert cache.get_or_set("k", compute, ttl=60) == "value"
    assert len(calls) == 1


def test_get_or_set_propagates_errors_without_storing():
    cache = TTLCache(clock=FakeClock())

    def boom():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        cache.get_or_set("k", boom)
    assert cache.get("k") is None


def test_concurrent_misses_share_one_computation():
    cache = TTLCache(clock=FakeClock())
    calls = []
    release = threading.Event()
    results = []

    def compute():
        calls.append(1)
        release.wait(2)
        return "shared"

    def worker():
        results.append(cache.get_or_set("k", compute))

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    time.sleep(0.05)
    release.set()
    for t in threads:
        t.join()

    assert results == ["shared"] * 5
    assert len(calls) == 1


def test_invalidate_and_clear():
    cache = TTLCache(clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    assert cache.clear() == 1
    assert len(cache) == 0


def test_cache_keys():
    assert identifier_key("farcaster", "alice") == "id:farcaster:alice"
    assert estimate_key("rss", "url=x|all|c") == "estimate:rss:url=x|all|c"
