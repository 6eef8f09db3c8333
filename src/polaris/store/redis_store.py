"""Redis adapter for the shared cache tier, built on ``redis.asyncio``."""

import asyncio
import json
import logging
import time
from typing import Any, Callable, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from polaris.config import Settings
from polaris.exceptions import StoreConnectionError
from polaris.interfaces.store import KeyValueStore
from polaris.types import HealthStatus

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisStore(KeyValueStore):
    """Fail-soft Redis adapter with lazy, single-flight connection setup.

    The connection is opened on first use, never at construction time.
    Concurrent first callers wait on one lock so that only one client is
    ever created. After a failed attempt, new attempts are suppressed for
    ``settings.redis_reconnect_cooldown`` seconds and operations return
    their miss sentinel in the meantime.

    Args:
        settings: Polaris settings. If None, loads from environment.
        client: Pre-built ``redis.asyncio`` client (tests, shared pools).
            Treated as already connected.
        clock: Monotonic clock in seconds, overridable for tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: Any | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings or Settings()
        self._url = self._settings.redis_url
        self._client = client
        self._clock = clock
        self._connect_lock = asyncio.Lock()
        self._last_failure: Optional[float] = None

        if not self.enabled:
            logger.info("Remote store not configured, running with in-process caching only")

    @property
    def enabled(self) -> bool:
        return bool(self._url) or self._client is not None

    @property
    def connected(self) -> bool:
        return self._client is not None

    # --- Lifecycle ---

    async def connect(self) -> bool:
        """Eagerly open the connection. Returns whether a client is available."""
        return await self.get_client() is not None

    async def get_client(self) -> Optional[Any]:
        if self._client is not None:
            return self._client
        if not self._url:
            return None

        async with self._connect_lock:
            # Another caller may have finished initialization while we waited
            if self._client is not None:
                return self._client
            if self._in_cooldown():
                return None

            try:
                client = await self._open_client()
            except StoreConnectionError as e:
                self._last_failure = self._clock()
                logger.warning("Remote store connection failed: %s", e)
                return None

            self._client = client
            self._last_failure = None
            logger.info("Connected to remote store")
            return client

    async def close(self) -> None:
        if self._client is not None:
            await self._safe_close(self._client)
            self._client = None
            logger.info("Remote store connection closed")

    def _in_cooldown(self) -> bool:
        if self._last_failure is None:
            return False
        return self._clock() - self._last_failure < self._settings.redis_reconnect_cooldown

    async def _open_client(self) -> Any:
        try:
            client = self._build_client()
        except ValueError as e:
            # redis-py rejects URLs without a redis://, rediss:// or unix:// scheme
            raise StoreConnectionError(f"Unusable remote store URL: {e}") from e
        try:
            await client.ping()
        except _TRANSPORT_ERRORS as e:
            await self._safe_close(client)
            raise StoreConnectionError(str(e)) from e
        return client

    def _build_client(self) -> Any:
        kwargs = {
            "decode_responses": True,
            "socket_connect_timeout": self._settings.redis_connect_timeout,
            "socket_timeout": self._settings.redis_command_timeout,
        }
        if self._settings.redis_token:
            kwargs["password"] = self._settings.redis_token
        return redis.from_url(self._url, **kwargs)

    @staticmethod
    async def _safe_close(client: Any) -> None:
        try:
            await client.aclose()
        except _TRANSPORT_ERRORS as e:
            logger.debug("Ignoring error while closing remote store client: %s", e)

    # --- Operations ---

    async def get(self, key: str) -> Optional[Any]:
        client = await self.get_client()
        if client is None:
            return None
        try:
            raw = await client.get(key)
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote GET failed for key '%s': %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Discarding undecodable value for key '%s': %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        client = await self.get_client()
        if client is None:
            return False
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("Value for key '%s' is not JSON serializable: %s", key, e)
            return False
        try:
            await client.set(key, payload, ex=max(1, int(ttl_seconds)))
            return True
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote SET failed for key '%s': %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        client = await self.get_client()
        if client is None:
            return False
        try:
            return await client.delete(key) > 0
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote DEL failed for key '%s': %s", key, e)
            return False

    async def exists(self, key: str) -> bool:
        client = await self.get_client()
        if client is None:
            return False
        try:
            return await client.exists(key) > 0
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote EXISTS failed for key '%s': %s", key, e)
            return False

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        client = await self.get_client()
        if client is None:
            return False
        try:
            return bool(await client.expire(key, max(1, int(ttl_seconds))))
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote EXPIRE failed for key '%s': %s", key, e)
            return False

    async def ttl(self, key: str) -> int:
        client = await self.get_client()
        if client is None:
            return -1
        try:
            return int(await client.ttl(key))
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote TTL failed for key '%s': %s", key, e)
            return -1

    async def increment(self, key: str, amount: int = 1) -> Optional[int]:
        client = await self.get_client()
        if client is None:
            return None
        try:
            if amount == 1:
                return int(await client.incr(key))
            return int(await client.incrby(key, amount))
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote INCR failed for key '%s': %s", key, e)
            return None

    async def keys_matching(self, pattern: str) -> List[str]:
        client = await self.get_client()
        if client is None:
            return []
        try:
            return list(await client.keys(pattern))
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote KEYS failed for pattern '%s': %s", pattern, e)
            return []

    async def delete_matching(self, pattern: str) -> int:
        keys = await self.keys_matching(pattern)
        if not keys:
            return 0
        client = await self.get_client()
        if client is None:
            return 0
        try:
            deleted = int(await client.delete(*keys))
        except _TRANSPORT_ERRORS as e:
            logger.warning("Remote bulk DEL failed for pattern '%s': %s", pattern, e)
            return 0
        logger.debug("Deleted %d remote keys matching '%s'", deleted, pattern)
        return deleted

    async def health_check(self) -> HealthStatus:
        if not self.enabled:
            return HealthStatus(connected=False, error="Remote store not configured")
        client = await self.get_client()
        if client is None:
            return HealthStatus(connected=False, error="Remote store not available")
        started = time.perf_counter()
        try:
            await client.ping()
        except _TRANSPORT_ERRORS as e:
            return HealthStatus(connected=False, error=str(e))
        latency_ms = (time.perf_counter() - started) * 1000
        return HealthStatus(connected=True, latency_ms=round(latency_ms, 3))
