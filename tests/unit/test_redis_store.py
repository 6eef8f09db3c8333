"""Unit tests for polaris.store.redis_store.RedisStore."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from polaris.cache.tiered import TieredCache
from polaris.config import Settings
from polaris.interfaces.store import KeyValueStore
from polaris.store.redis_store import RedisStore
from tests.helpers import FakeRedis


class TestOperations:
    async def test_set_then_get_round_trips_json(self, redis_store, fake_redis):
        assert await redis_store.set("k", {"a": [1, 2]}, ttl_seconds=30) is True
        assert fake_redis.expiries["k"] == 30
        assert await redis_store.get("k") == {"a": [1, 2]}

    async def test_get_missing_is_none(self, redis_store):
        assert await redis_store.get("missing") is None

    async def test_undecodable_value_is_a_miss(self, redis_store, fake_redis):
        fake_redis.data["k"] = "{not json"
        assert await redis_store.get("k") is None

    async def test_unserializable_value_rejected(self, redis_store):
        assert await redis_store.set("k", {"s": {1, 2}}, 10) is False

    async def test_ttl_floor_is_one_second(self, redis_store, fake_redis):
        await redis_store.set("k", 1, ttl_seconds=0)
        assert fake_redis.expiries["k"] == 1

    async def test_delete_exists_expire_ttl(self, redis_store):
        await redis_store.set("k", "v", 10)
        assert await redis_store.exists("k") is True
        assert await redis_store.expire("k", 99) is True
        assert await redis_store.ttl("k") == 99
        assert await redis_store.delete("k") is True
        assert await redis_store.delete("k") is False
        assert await redis_store.exists("k") is False

    async def test_increment(self, redis_store):
        assert await redis_store.increment("counter") == 1
        assert await redis_store.increment("counter", 5) == 6

    async def test_keys_and_delete_matching(self, redis_store):
        for key in ("blueprint:exact:1", "blueprint:domain:2", "other:1"):
            await redis_store.set(key, 1, 10)
        assert sorted(await redis_store.keys_matching("blueprint:*")) == [
            "blueprint:domain:2",
            "blueprint:exact:1",
        ]
        assert await redis_store.delete_matching("blueprint:*") == 2
        assert await redis_store.keys_matching("*") == ["other:1"]

    async def test_delete_matching_nothing(self, redis_store):
        assert await redis_store.delete_matching("none:*") == 0

    async def test_health_check_connected(self, redis_store):
        status = await redis_store.health_check()
        assert status.connected is True
        assert status.latency_ms is not None

    async def test_context_manager_closes(self, test_settings, fake_redis):
        async with RedisStore(test_settings, client=fake_redis) as store:
            assert isinstance(store, KeyValueStore)
        assert fake_redis.closed is True


class TestFailSoft:
    """Transport errors turn into sentinels, never exceptions."""

    async def test_every_operation_returns_sentinel(self, failing_store):
        assert await failing_store.get("k") is None
        assert await failing_store.set("k", 1, 10) is False
        assert await failing_store.delete("k") is False
        assert await failing_store.exists("k") is False
        assert await failing_store.expire("k", 10) is False
        assert await failing_store.ttl("k") == -1
        assert await failing_store.increment("k") is None
        assert await failing_store.keys_matching("*") == []
        assert await failing_store.delete_matching("*") == 0

    async def test_health_check_reports_error(self, failing_store):
        status = await failing_store.health_check()
        assert status.connected is False
        assert "refused" in status.error.lower()

    async def test_close_swallows_transport_error(self, failing_store):
        await failing_store.close()
        assert failing_store.connected is False


class TestDisabled:
    async def test_no_url_means_disabled(self, test_settings):
        store = RedisStore(test_settings)
        assert store.enabled is False
        assert await store.get_client() is None
        assert await store.get("k") is None
        assert await store.set("k", 1, 10) is False
        status = await store.health_check()
        assert status.connected is False
        assert status.error == "Remote store not configured"


class _CountingStore(RedisStore):
    """RedisStore whose client factory is observable."""

    def __init__(self, settings, clients, **kwargs):
        super().__init__(settings, **kwargs)
        self._clients = clients
        self.built = 0

    def _build_client(self):
        self.built += 1
        return self._clients.pop(0)


class _SlowPingRedis(FakeRedis):
    async def ping(self):
        await asyncio.sleep(0.01)
        return await super().ping()


class _DownRedis(FakeRedis):
    async def ping(self):
        raise RedisConnectionError("Connection refused")


class TestLazyConnection:
    @pytest.fixture
    def url_settings(self):
        return Settings(redis_url="redis://localhost:6379/0", redis_reconnect_cooldown=30.0)

    async def test_not_connected_at_construction(self, url_settings):
        store = _CountingStore(url_settings, [FakeRedis()])
        assert store.enabled is True
        assert store.connected is False
        assert store.built == 0

    async def test_concurrent_first_use_builds_one_client(self, url_settings):
        store = _CountingStore(url_settings, [_SlowPingRedis(), _SlowPingRedis()])
        clients = await asyncio.gather(*(store.get_client() for _ in range(10)))

        assert store.built == 1
        assert all(c is clients[0] for c in clients)

    async def test_failed_connect_enters_cooldown(self, url_settings):
        now = [100.0]
        store = _CountingStore(url_settings, [_DownRedis(), FakeRedis()], clock=lambda: now[0])

        assert await store.connect() is False
        assert await store.get("k") is None
        assert store.built == 1

        now[0] += 31.0
        assert await store.connect() is True
        assert store.built == 2


class TestUnusableUrl:
    """REST-style URLs (Upstash, Vercel KV) are accepted by settings but not by redis-py."""

    @pytest.fixture
    def rest_store(self):
        now = [100.0]
        store = RedisStore(
            Settings(redis_url="https://eu1-demo.upstash.io", redis_reconnect_cooldown=30.0),
            clock=lambda: now[0],
        )
        return store, now

    async def test_operations_fail_soft(self, rest_store):
        store, _ = rest_store
        assert store.enabled is True
        assert await store.connect() is False
        assert await store.get("k") is None
        assert await store.set("k", 1, 10) is False
        assert await store.keys_matching("*") == []

    async def test_health_check_reports_unavailable(self, rest_store):
        store, _ = rest_store
        status = await store.health_check()
        assert status.connected is False
        assert status.error == "Remote store not available"

    async def test_failure_enters_cooldown(self, rest_store, monkeypatch):
        store, now = rest_store
        attempts = []
        original = store._build_client

        def counting_build():
            attempts.append(1)
            return original()

        monkeypatch.setattr(store, "_build_client", counting_build)

        await store.get("k")
        await store.get("k")
        assert len(attempts) == 1

        now[0] += 31.0
        await store.get("k")
        assert len(attempts) == 2

    async def test_tiered_cache_keeps_serving_locally(self, rest_store, clock):
        store, _ = rest_store
        cache = TieredCache(store, max_size=10, default_ttl_ms=60_000, kind="generic", clock=clock)
        assert await cache.get("k") is None
        await cache.set("k", {"v": 1})
        assert await cache.get("k") == {"v": 1}
