"""Tests for the TTL cache."""

from datetime import timedelta

from portfolio_valuation.cache_service import TimedCache


class TestTimedCache:
    """Tests for TimedCache."""

    def test_fresh_entry_returned(self, wall_clock):
        cache = TimedCache(timedelta(hours=24), clock=wall_clock)
        cache.set("btc", [{"id": "bitcoin"}])
        wall_clock.advance(hours=23)

        assert cache.get("btc") == [{"id": "bitcoin"}]

    def test_stale_entry_dropped(self, wall_clock):
        """Test that an entry expires exactly at the TTL."""
        cache = TimedCache(timedelta(hours=24), clock=wall_clock)
        entry = cache.set("btc", ["x"])
        assert entry.fetched_at == wall_clock.now

        wall_clock.advance(hours=24)

        assert cache.get("btc") is None
        assert cache.get_cache_stats()["entries"] == 0

    def test_get_or_load_caches_results(self, wall_clock):
        cache = TimedCache(timedelta(minutes=5), clock=wall_clock)
        calls = []

        def loader():
            calls.append(1)
            return {"AAA": 1}

        assert cache.get_or_load("k", loader) == {"AAA": 1}
        assert cache.get_or_load("k", loader) == {"AAA": 1}
        assert len(calls) == 1

        wall_clock.advance(minutes=6)
        cache.get_or_load("k", loader)
        assert len(calls) == 2

    def test_empty_results_not_cached(self, wall_clock):
        cache = TimedCache(timedelta(minutes=5), clock=wall_clock)
        calls = []

        def loader():
            calls.append(1)
            return []

        cache.get_or_load("k", loader)
        cache.get_or_load("k", loader)
        assert len(calls) == 2

    def test_invalidate(self, wall_clock):
        cache = TimedCache(timedelta(minutes=5), clock=wall_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == 2

        cache.invalidate()
        assert cache.get("b") is None

    def test_stats(self, wall_clock):
        cache = TimedCache(timedelta(minutes=5), clock=wall_clock, name="prices")
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")

        stats = cache.get_cache_stats()
        assert stats["name"] == "prices"
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["fresh_entries"] == 1
        assert stats["ttl_seconds"] == 300
