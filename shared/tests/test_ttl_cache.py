"""
Unit tests for the in-process TTL cache.
"""

import pytest

from shared.ttl_cache import TTLCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class TestTTLCache:
    """Test cases for TTLCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return TTLCache(ttl_seconds=10, max_entries=3, clock=clock)

    def test_get_returns_stored_value(self, cache):
        """Test a fresh entry is returned."""
        cache.set("a", 1)

        assert cache.get("a") == 1
        assert "a" in cache

    def test_entry_expires_after_ttl(self, cache, clock):
        """Test entries expire lazily on read."""
        cache.set("a", 1)
        clock.advance(10)

        assert cache.get("a") is None
        assert len(cache) == 0

    def test_per_entry_ttl_override(self, cache, clock):
        """Test a per-entry TTL replaces the default."""
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2)
        clock.advance(5)

        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_oldest_entry_evicted_when_full(self, cache):
        """Test the oldest insert is dropped at capacity."""
        for key in ("a", "b", "c", "d"):
            cache.set(key, key)

        assert cache.get("a") is None
        assert cache.get("d") == "d"
        assert len(cache) == 3

    def test_overwrite_does_not_evict(self, cache):
        """Test rewriting a key keeps other entries."""
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.set("a", "again")

        assert len(cache) == 3
        assert cache.get("b") == "b"
        assert cache.get("a") == "again"

    def test_purge_expired(self, cache, clock):
        """Test the sweep removes only expired entries."""
        cache.set("old", 1)
        clock.advance(6)
        cache.set("new", 2)
        clock.advance(5)

        assert cache.purge_expired() == 1
        assert cache.get("new") == 2

    def test_delete_and_clear(self, cache):
        """Test explicit invalidation."""
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_rejects_non_positive_capacity(self):
        """Test capacity validation."""
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)
