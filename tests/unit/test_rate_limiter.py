"""Unit tests for polaris.ratelimit."""

import pytest

from polaris.config import Settings
from polaris.ratelimit import (
    PRESETS,
    MemoryRateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
    rate_limit_headers,
)
from polaris.store.redis_store import RedisStore
from polaris.types import RateLimitConfig, RateLimitResult

CONFIG = RateLimitConfig(window_ms=60_000, max_requests=5, key_prefix="test_rl")


@pytest.fixture
def memory_limiter(clock):
    return MemoryRateLimiter(CONFIG, clock=clock)


@pytest.fixture
def redis_limiter(redis_store, clock):
    return RedisRateLimiter(CONFIG, redis_store, clock=clock)


@pytest.fixture(params=["memory", "redis"])
def limiter(request, memory_limiter, redis_limiter):
    return memory_limiter if request.param == "memory" else redis_limiter


class TestSlidingWindow:
    async def test_allows_up_to_limit_then_denies(self, limiter):
        remaining = []
        for _ in range(5):
            result = await limiter.check_limit("1.2.3.4")
            assert result.allowed is True
            remaining.append(result.remaining)

        denied = await limiter.check_limit("1.2.3.4")

        assert remaining == [4, 3, 2, 1, 0]
        assert denied.allowed is False
        assert denied.remaining == 0
        assert denied.retry_after_ms == CONFIG.window_ms

    async def test_identifiers_are_independent(self, limiter):
        for _ in range(5):
            await limiter.check_limit("a")
        assert (await limiter.check_limit("b")).allowed is True

    async def test_window_slides(self, limiter, clock):
        for _ in range(5):
            await limiter.check_limit("a")
        clock.advance(CONFIG.window_ms + 1)
        result = await limiter.check_limit("a")
        assert result.allowed is True
        assert result.remaining == 4

    async def test_denied_requests_do_not_count(self, limiter, clock):
        for _ in range(5):
            await limiter.check_limit("a")
        for _ in range(3):
            await limiter.check_limit("a")
        clock.advance(CONFIG.window_ms + 1)
        assert (await limiter.check_limit("a")).remaining == 4

    async def test_status_does_not_consume(self, limiter):
        await limiter.check_limit("a")
        first = await limiter.get_status("a")
        second = await limiter.get_status("a")
        assert first.remaining == second.remaining == 4

    async def test_status_for_unknown_identifier(self, limiter, clock):
        status = await limiter.get_status("nobody")
        assert status.allowed is True
        assert status.remaining == CONFIG.max_requests

    async def test_reset(self, limiter):
        for _ in range(5):
            await limiter.check_limit("a")
        await limiter.reset("a")
        assert (await limiter.check_limit("a")).allowed is True


class TestMemoryLimiter:
    async def test_reset_at_tracks_oldest_request(self, memory_limiter, clock):
        start = clock.now
        await memory_limiter.check_limit("a")
        clock.advance(10_000)
        result = await memory_limiter.check_limit("a")
        assert result.reset_at == start + CONFIG.window_ms

    async def test_cleanup_drops_idle_identifiers(self, memory_limiter, clock):
        await memory_limiter.check_limit("a")
        await memory_limiter.check_limit("b")
        clock.advance(CONFIG.window_ms + 1)
        assert memory_limiter.cleanup() == 2
        assert memory_limiter.cleanup() == 0


class TestRedisLimiter:
    async def test_uses_sorted_set_with_expiry(self, redis_limiter, fake_redis):
        await redis_limiter.check_limit("a")
        assert len(fake_redis.zsets["test_rl:a"]) == 1
        assert fake_redis.expiries["test_rl:a"] == CONFIG.window_ms // 1000

    async def test_denied_member_is_removed(self, redis_limiter, fake_redis):
        for _ in range(7):
            await redis_limiter.check_limit("a")
        assert len(fake_redis.zsets["test_rl:a"]) == 5

    async def test_store_outage_uses_local_limiter(self, failing_store, clock):
        limiter = RedisRateLimiter(CONFIG, failing_store, clock=clock)
        results = [await limiter.check_limit("a") for _ in range(6)]
        assert [r.allowed for r in results] == [True] * 5 + [False]

    async def test_store_outage_fails_open_without_local_fallback(self, failing_store, clock):
        limiter = RedisRateLimiter(CONFIG, failing_store, local_fallback=False, clock=clock)
        results = [await limiter.check_limit("a") for _ in range(10)]
        assert all(r.allowed for r in results)
        assert all(r.remaining == CONFIG.max_requests for r in results)

    async def test_status_during_outage_matches_local_limiter(self, failing_store, clock):
        limiter = RedisRateLimiter(CONFIG, failing_store, clock=clock)
        assert (await limiter.get_status("a")).allowed is True

        for _ in range(5):
            await limiter.check_limit("a")
        status = await limiter.get_status("a")

        assert status.allowed is False
        assert status.remaining == 0

    async def test_status_during_outage_is_open_without_local_fallback(self, failing_store, clock):
        limiter = RedisRateLimiter(CONFIG, failing_store, local_fallback=False, clock=clock)
        for _ in range(5):
            await limiter.check_limit("a")
        status = await limiter.get_status("a")
        assert status.allowed is True
        assert status.remaining == CONFIG.max_requests

    async def test_cleanup_reaches_local_fallback(self, failing_store, clock):
        limiter = RedisRateLimiter(CONFIG, failing_store, clock=clock)
        await limiter.check_limit("a")
        clock.advance(CONFIG.window_ms + 1)
        assert limiter.cleanup() == 1

    async def test_unusable_store_url_degrades_to_local_limiter(self, clock):
        store = RedisStore(Settings(redis_url="https://eu1-demo.upstash.io"))
        limiter = RedisRateLimiter(CONFIG, store, clock=clock)
        results = [await limiter.check_limit("a") for _ in range(6)]
        assert [r.allowed for r in results] == [True] * 5 + [False]


class TestFactoryAndHeaders:
    def test_factory_picks_redis_when_store_enabled(self, redis_store):
        assert isinstance(create_rate_limiter(CONFIG, redis_store), RedisRateLimiter)

    def test_factory_falls_back_to_memory(self, test_settings):
        assert isinstance(create_rate_limiter(CONFIG, RedisStore(test_settings)), MemoryRateLimiter)
        assert isinstance(create_rate_limiter(CONFIG), MemoryRateLimiter)

    def test_presets(self):
        assert set(PRESETS) == {"api", "subscription", "blueprint_generation", "auth"}
        assert PRESETS["blueprint_generation"].max_requests == 5
        assert PRESETS["blueprint_generation"].window_ms == 60 * 60 * 1000
        assert PRESETS["api"].max_requests == 10
        assert PRESETS["auth"].window_ms == 15 * 60 * 1000

    def test_headers_when_allowed(self):
        result = RateLimitResult(allowed=True, limit=5, remaining=3, reset_at=1_700_000_000_500)
        headers = rate_limit_headers(result)
        assert headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "3",
            "X-RateLimit-Reset": "1700000001",
        }

    def test_headers_when_denied(self):
        result = RateLimitResult(
            allowed=False, limit=5, remaining=0, reset_at=1_700_000_000_000, retry_after_ms=60_000
        )
        assert rate_limit_headers(result)["Retry-After"] == "60"
