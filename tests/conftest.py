"""Shared pytest fixtures for Polaris tests."""

import pytest

from polaris.cache.blueprint import BlueprintCache
from polaris.cache.tiered import TieredCache
from polaris.config import Settings
from polaris.store.redis_store import RedisStore
from tests.helpers import FailingRedis, FakeClock, FakeRedis


@pytest.fixture
def test_settings():
    """Settings isolated from the environment: no remote store, no credentials."""
    return Settings(
        redis_url=None,
        redis_token=None,
        anthropic_api_key=None,
        ollama_base_url=None,
        backend_timeout=5.0,
        backend_retry_base_delay=0.0,
        cache_max_size=100,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_store(test_settings, fake_redis):
    """A RedisStore wired to an in-memory client."""
    return RedisStore(test_settings, client=fake_redis)


@pytest.fixture
def failing_store(test_settings):
    """A RedisStore whose client fails every command."""
    return RedisStore(test_settings, client=FailingRedis())


@pytest.fixture
def tiered_cache(redis_store, clock):
    return TieredCache(redis_store, max_size=100, default_ttl_ms=60_000, kind="generic", clock=clock)


@pytest.fixture
def blueprint_cache(test_settings, redis_store, clock):
    tier = TieredCache(
        redis_store,
        max_size=test_settings.blueprint_cache_max_size,
        default_ttl_ms=test_settings.blueprint_cache_ttl_ms,
        key_prefix=test_settings.blueprint_cache_prefix,
        kind="blueprint",
        clock=clock,
    )
    return BlueprintCache(tier, test_settings, clock=clock)


@pytest.fixture
def static_answers():
    return {
        "domain": "Software Engineering",
        "subject_area": "Backend Development",
        "complexity_level": "Intermediate",
        "experience_level": "Mid",
        "goal_type": "upskilling",
        "timeline": "3 months",
        "audience_type": "engineers",
        "skill_level": "intermediate",
        "team_size": 12,
    }
