import threading
import unittest

from tracescope.cache.trace_cache import FALLBACK_SIZE_BYTES, CacheKey, TraceCache, estimate_size
from tracescope.core.enums import EvictionStrategy


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _cache(clock=None, **kwargs) -> TraceCache:
    kwargs.setdefault("max_bytes", 10**9)
    kwargs.setdefault("default_ttl", 100.0)
    return TraceCache(cleanup_interval=0, clock=clock or FakeClock(), **kwargs)


class TraceCacheTests(unittest.TestCase):
    def test_hit_and_miss(self) -> None:
        cache = _cache()
        key = CacheKey("0xabc", "mainnet", "callTracer")
        self.assertIsNone(cache.get(key))
        cache.set(key, {"gas": 1})

        self.assertEqual(cache.get(key), {"gas": 1})
        self.assertIn(key, cache)
        stats = cache.stats()
        self.assertEqual((stats.hits, stats.misses, stats.entries), (1, 1, 1))
        self.assertAlmostEqual(stats.hit_rate, 0.5)

    def test_expired_entry_is_a_miss(self) -> None:
        clock = FakeClock()
        cache = _cache(clock)
        cache.set("a", 1, ttl=10)
        clock.advance(11)

        self.assertNotIn("a", cache)
        self.assertIsNone(cache.get("a"))
        self.assertEqual(len(cache), 0)
        self.assertEqual(cache.stats().misses, 1)

    def test_cleanup_expired(self) -> None:
        clock = FakeClock()
        cache = _cache(clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=50)
        clock.advance(10)

        self.assertEqual(cache.cleanup_expired(), 1)
        self.assertEqual(cache.get("long"), 2)

    def test_lru_evicts_least_recently_used(self) -> None:
        clock = FakeClock()
        cache = _cache(clock, max_entries=2, strategy="lru")
        cache.set("a", 1)
        clock.advance(1)
        cache.set("b", 2)
        clock.advance(1)
        cache.get("a")
        clock.advance(1)
        cache.set("c", 3)

        self.assertEqual(len(cache), 2)
        self.assertIn("a", cache)
        self.assertNotIn("b", cache)
        self.assertEqual(cache.stats().evictions, 1)

    def test_lfu_evicts_least_frequently_used(self) -> None:
        cache = _cache(max_entries=2, strategy=EvictionStrategy.LFU)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.get("a")
        cache.get("b")
        cache.set("c", 3)

        self.assertEqual(len(cache), 2)
        self.assertNotIn("b", cache)
        self.assertIn("a", cache)

    def test_ttl_strategy_evicts_oldest(self) -> None:
        clock = FakeClock()
        cache = _cache(clock, max_entries=2, strategy="ttl")
        cache.set("a", 1)
        clock.advance(1)
        cache.set("b", 2)
        clock.advance(1)
        cache.get("a")
        cache.set("c", 3)

        self.assertNotIn("a", cache)
        self.assertIn("b", cache)

    def test_size_strategy_evicts_largest(self) -> None:
        cache = _cache(max_entries=2, strategy="size-aware")
        cache.set("big", "x" * 500)
        cache.set("small", "y")
        cache.set("c", "z")

        self.assertEqual(len(cache), 2)
        self.assertNotIn("big", cache)

    def test_byte_limit(self) -> None:
        one = estimate_size("x" * 10)
        cache = _cache(max_entries=10, max_bytes=one * 2)
        for key in ("a", "b", "c"):
            cache.set(key, "x" * 10)

        stats = cache.stats()
        self.assertEqual(stats.entries, 2)
        self.assertLessEqual(stats.total_bytes, one * 2)

    def test_oversized_value_is_not_stored(self) -> None:
        cache = _cache(max_entries=10, max_bytes=100)
        cache.set("a", "x" * 10)
        cache.set("b", "x" * 10)
        with self.assertLogs("tracescope.cache.trace_cache", level="WARNING"):
            cache.set("big", "x" * 500)

        stats = cache.stats()
        self.assertNotIn("big", cache)
        self.assertIn("a", cache)
        self.assertIn("b", cache)
        self.assertEqual(stats.entries, 2)
        self.assertLessEqual(stats.total_bytes, 100)
        self.assertEqual(stats.evictions, 0)

    def test_oversized_replacement_drops_stale_value(self) -> None:
        cache = _cache(max_bytes=100)
        cache.set("a", "x")
        with self.assertLogs("tracescope.cache.trace_cache", level="WARNING"):
            cache.set("a", "x" * 500)

        self.assertIsNone(cache.get("a"))
        self.assertEqual(cache.stats().total_bytes, 0)

    def test_concurrent_access_keeps_accounting_consistent(self) -> None:
        cache = TraceCache(max_entries=20, max_bytes=2_000, default_ttl=60, cleanup_interval=0)
        errors = []

        def worker(n: int) -> None:
            try:
                for i in range(300):
                    key = (n, i % 25)
                    cache.set(key, "v" * (i % 40), tags=[f"t{i % 5}"])
                    cache.get((n + 1, i % 25))
                    if i % 50 == 0:
                        cache.invalidate_by_dependency(f"t{n % 5}")
                    if i % 70 == 0:
                        cache.delete(key)
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        stats = cache.stats()
        entries = list(cache._entries.values())
        self.assertEqual(stats.entries, len(entries))
        self.assertEqual(stats.total_bytes, sum(e.size_bytes for e in entries))
        self.assertLessEqual(stats.entries, 20)
        self.assertLessEqual(stats.total_bytes, 2_000)
        self.assertEqual(stats.hits + stats.misses, 8 * 300)

    def test_replacing_a_key_does_not_evict(self) -> None:
        cache = _cache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        self.assertEqual(len(cache), 2)
        self.assertEqual(cache.get("a"), 10)
        self.assertEqual(cache.stats().evictions, 0)

    def test_invalidate_by_dependency(self) -> None:
        cache = _cache()
        cache.set("call", 1, tags=["0xabc"])
        cache.set("struct", 2, tags=["0xabc"])
        cache.set("block", 3, tags=["12345", "0xdef"])

        self.assertEqual(cache.invalidate_by_dependency("0xabc"), 2)
        self.assertEqual(cache.invalidate_by_dependency("0xabc"), 0)
        self.assertEqual(len(cache), 1)
        self.assertEqual(cache.stats().total_bytes, estimate_size(3))

    def test_get_or_compute_caches(self) -> None:
        cache = _cache()
        calls = []

        def compute():
            calls.append(1)
            return {"v": len(calls)}

        self.assertEqual(cache.get_or_compute("k", compute), {"v": 1})
        self.assertEqual(cache.get_or_compute("k", compute), {"v": 1})
        self.assertEqual(len(calls), 1)

    def test_delete_and_clear(self) -> None:
        cache = _cache()
        cache.set("a", 1)
        self.assertTrue(cache.delete("a"))
        self.assertFalse(cache.delete("a"))

        cache.set("b", 2)
        cache.get("b")
        cache.clear()
        stats = cache.stats()
        self.assertEqual((stats.entries, stats.total_bytes, stats.hits), (0, 0, 0))

    def test_background_sweep_stops_on_close(self) -> None:
        with TraceCache(cleanup_interval=3600) as cache:
            self.assertIsNotNone(cache._timer)
        self.assertIsNone(cache._timer)

    def test_invalid_configuration(self) -> None:
        with self.assertRaises(ValueError):
            TraceCache(max_entries=0, cleanup_interval=0)
        with self.assertRaises(ValueError):
            TraceCache(strategy="random", cleanup_interval=0)

    def test_estimate_size_falls_back(self) -> None:
        self.assertEqual(estimate_size("ab"), len('"ab"') * 2)
        circular = {}
        circular["self"] = circular
        self.assertEqual(estimate_size(circular), FALLBACK_SIZE_BYTES)


if __name__ == "__main__":
    unittest.main()
