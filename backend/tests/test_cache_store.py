from services.cache_store import MemoryCacheStore, TieredCacheStore, resolve_ttl_ms


class FakeClockMs:
    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now


def test_resolve_ttl_ms_upscales_seconds_only():
    assert resolve_ttl_ms(60) == 60_000
    assert resolve_ttl_ms(100_000) == 100_000_000
    assert resolve_ttl_ms(3_600_000) == 3_600_000
    assert resolve_ttl_ms(None) == 3_600_000


def test_get_set_and_expiry():
    clock = FakeClockMs()
    cache = MemoryCacheStore(clock_ms=clock)
    cache.set("k", {"v": 1}, ttl=10)
    assert cache.get("k") == {"v": 1}
    assert cache.has("k")
    clock.now += 10_001
    assert cache.get("k") is None
    assert not cache.has("k")
    assert cache.get_stats()["size"] == 0


def test_fifo_eviction_on_new_key():
    cache = MemoryCacheStore(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")  # access does not protect from eviction
    cache.set("c", 3)
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_replacing_key_does_not_evict():
    cache = MemoryCacheStore(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    assert cache.get_stats()["size"] == 2
    assert cache.get("a") == 10
    assert cache.get("b") == 2


def test_clear_expired_and_stats():
    clock = FakeClockMs()
    cache = MemoryCacheStore(clock_ms=clock)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2, ttl=100)
    clock.now += 2_000
    assert cache.clear_expired() == 1
    cache.get("long")
    cache.get("missing")
    stats = cache.get_stats()
    assert stats == {"size": 1, "hits": 1, "misses": 1, "hit_rate": 0.5, "max_entries": 1000}


def test_delete_and_clear():
    cache = MemoryCacheStore()
    cache.set("a", 1)
    assert cache.delete("a") is True
    assert cache.delete("a") is False
    cache.set("b", 2)
    cache.clear()
    assert cache.get_stats()["size"] == 0


def test_access_count_increments():
    cache = MemoryCacheStore()
    cache.set("a", 1)
    cache.get("a")
    assert cache.get_entry("a").access_count == 2


def test_tiered_store_backfills_primary():
    clock = FakeClockMs()
    primary = MemoryCacheStore(clock_ms=clock)
    secondary = MemoryCacheStore(clock_ms=clock)
    tiered = TieredCacheStore(primary, secondary, clock_ms=clock)

    secondary.set("k", [1, 2], ttl=60)
    assert tiered.get("k") == [1, 2]
    assert primary.get("k") == [1, 2]

    tiered.set("j", "x", ttl=60)
    assert primary.has("j") and secondary.has("j")
    assert "secondary" in tiered.get_stats()
