"""
Tests for the provider token cache.
"""

import threading
import time

import pytest

from imgauto.core.auth.cache import TokenCache, cache_key


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TokenCache(max_ttl=3600, expiry_buffer=300, clock=clock)


class TestCacheKey:
    def test_format(self):
        key = cache_key("github", "ImageUpdateAutomation", "apps", "podinfo", "git")
        assert key == "github:ImageUpdateAutomation/apps/podinfo:git"


class TestExpiry:
    """Entries expire at min(token expiry - buffer, insert + max_ttl)."""

    def test_hit_before_expiry(self, cache, clock):
        cache.set("k", "tok", clock.now + 1000)
        clock.now += 699
        assert cache.get("k") == "tok"

    def test_expiry_buffer(self, cache, clock):
        cache.set("k", "tok", clock.now + 1000)
        clock.now += 700
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_max_ttl_caps_long_tokens(self, cache, clock):
        cache.set("k", "tok", clock.now + 86400)
        clock.now += 3599
        assert cache.get("k") == "tok"
        clock.now += 1
        assert cache.get("k") is None

    def test_token_expiring_within_buffer_not_cached(self, cache, clock):
        cache.set("k", "tok", clock.now + 60)
        assert cache.get("k") is None

    def test_invalidate_and_clear(self, cache, clock):
        cache.set("a", "1", clock.now + 3600)
        cache.set("b", "2", clock.now + 3600)
        cache.invalidate("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

    def test_clear_drops_key_locks(self, cache, clock):
        for key in ("a", "b"):
            cache.get_or_fetch(key, lambda: ("tok", clock.now + 3600))
        cache.invalidate("a")
        assert set(cache._key_locks) == {"b"}
        cache.clear()
        assert cache._key_locks == {}
        assert cache.get_or_fetch("b", lambda: ("new", clock.now + 3600)) == "new"


class TestGetOrFetch:
    """Test fetch-on-miss behaviour."""

    def test_fetch_once(self, cache, clock):
        calls = []

        def fetch():
            calls.append(1)
            return "tok", clock.now + 3600

        assert cache.get_or_fetch("k", fetch) == "tok"
        assert cache.get_or_fetch("k", fetch) == "tok"
        assert len(calls) == 1

    def test_fetch_again_after_expiry(self, cache, clock):
        tokens = iter(["first", "second"])
        fetch = lambda: (next(tokens), clock.now + 3600)  # noqa: E731

        assert cache.get_or_fetch("k", fetch) == "first"
        clock.now += 3600
        assert cache.get_or_fetch("k", fetch) == "second"

    def test_fetch_error_not_cached(self, cache, clock):
        def failing():
            raise RuntimeError("exchange failed")

        with pytest.raises(RuntimeError):
            cache.get_or_fetch("k", failing)
        assert cache.get_or_fetch("k", lambda: ("tok", clock.now + 3600)) == "tok"


class TestConcurrency:
    """Concurrent misses for one key share a fetch; other keys are not blocked."""

    def test_single_fetch_per_key(self):
        cache = TokenCache()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def fetch():
            calls.append(1)
            started.set()
            release.wait(5)
            return "tok", time.time() + 3600

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.get_or_fetch("k", fetch)))
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        assert started.wait(5)
        release.set()
        for t in threads:
            t.join(5)

        assert results == ["tok"] * 5
        assert len(calls) == 1

    def test_other_keys_not_blocked(self):
        cache = TokenCache()
        release = threading.Event()
        started = threading.Event()

        def slow_fetch():
            started.set()
            release.wait(5)
            return "slow", time.time() + 3600

        worker = threading.Thread(target=lambda: cache.get_or_fetch("slow", slow_fetch))
        worker.start()
        try:
            assert started.wait(5)
            value = cache.get_or_fetch("fast", lambda: ("fast", time.time() + 3600))
            assert value == "fast"
            assert cache.get("slow") is None
        finally:
            release.set()
            worker.join(5)
        assert cache.get("slow") == "slow"
