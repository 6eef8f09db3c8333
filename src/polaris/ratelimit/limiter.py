"""Sliding-window rate limiters: remote sorted-set and in-process fallback."""

import asyncio
import logging
import math
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from redis.exceptions import RedisError

from polaris.interfaces.store import KeyValueStore
from polaris.types import RateLimitConfig, RateLimitResult
from polaris.utils.retry import now_ms

logger = logging.getLogger(__name__)

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS

PRESETS: Dict[str, RateLimitConfig] = {
    "api": RateLimitConfig(window_ms=_MINUTE_MS, max_requests=10, key_prefix="api_rate_limit"),
    "subscription": RateLimitConfig(
        window_ms=_HOUR_MS, max_requests=3, key_prefix="subscription_rate_limit"
    ),
    "blueprint_generation": RateLimitConfig(
        window_ms=_HOUR_MS, max_requests=5, key_prefix="blueprint_gen_rate_limit"
    ),
    "auth": RateLimitConfig(window_ms=15 * _MINUTE_MS, max_requests=5, key_prefix="auth_rate_limit"),
}


class RateLimiter(ABC):
    """Counts requests per identifier over a sliding window."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], int] = now_ms):
        self.config = config
        self._clock = clock

    def key_for(self, identifier: str) -> str:
        return f"{self.config.key_prefix}:{identifier}"

    def _open(self, now: int) -> RateLimitResult:
        """Full quota, used when nothing has been counted."""
        return RateLimitResult(
            allowed=True,
            limit=self.config.max_requests,
            remaining=self.config.max_requests,
            reset_at=now + self.config.window_ms,
        )

    @abstractmethod
    async def check_limit(self, identifier: str) -> RateLimitResult:
        """Count one request for *identifier* and report whether it is allowed."""
        ...

    @abstractmethod
    async def reset(self, identifier: str) -> None:
        ...

    @abstractmethod
    async def get_status(self, identifier: str) -> RateLimitResult:
        """Report the current window without consuming a request."""
        ...

    def cleanup(self) -> int:
        """Drop in-process state for idle identifiers. Returns how many were dropped."""
        return 0


class MemoryRateLimiter(RateLimiter):
    """Per-process sliding window over a dict of timestamp lists."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], int] = now_ms):
        super().__init__(config, clock)
        self._windows: Dict[str, List[int]] = {}

    def _purge(self, key: str, now: int) -> List[int]:
        window_start = now - self.config.window_ms
        stamps = [t for t in self._windows.get(key, []) if t > window_start]
        if stamps:
            self._windows[key] = stamps
        else:
            self._windows.pop(key, None)
        return stamps

    async def check_limit(self, identifier: str) -> RateLimitResult:
        key = self.key_for(identifier)
        now = self._clock()
        stamps = self._purge(key, now)
        limit = self.config.max_requests

        if len(stamps) >= limit:
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=stamps[0] + self.config.window_ms,
                retry_after_ms=self.config.window_ms,
            )

        stamps.append(now)
        self._windows[key] = stamps
        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=limit - len(stamps),
            reset_at=stamps[0] + self.config.window_ms,
        )

    async def reset(self, identifier: str) -> None:
        self._windows.pop(self.key_for(identifier), None)

    async def get_status(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        stamps = self._purge(self.key_for(identifier), now)
        if not stamps:
            return self._open(now)
        limit = self.config.max_requests
        return RateLimitResult(
            allowed=len(stamps) < limit,
            limit=limit,
            remaining=max(0, limit - len(stamps)),
            reset_at=stamps[0] + self.config.window_ms,
        )

    def cleanup(self) -> int:
        """Drop identifiers whose windows are empty. Returns how many were dropped."""
        now = self._clock()
        stale = [k for k in list(self._windows) if not self._purge(k, now)]
        return len(stale)


_TRANSPORT_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisRateLimiter(RateLimiter):
    """Sliding window over a remote sorted set, shared by every process.

    One transaction per check: drop members older than the window, count
    the rest, add this request, refresh the key expiry. A request over the
    limit removes its own member again so denied calls do not extend the
    window.

    When the store is unreachable, checks go to an in-process
    ``MemoryRateLimiter`` (per-process correctness only). With
    ``local_fallback=False`` the limiter fails fully open instead.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        store: KeyValueStore,
        local_fallback: bool = True,
        clock: Callable[[], int] = now_ms,
    ):
        super().__init__(config, clock)
        self._store = store
        self._fallback: Optional[MemoryRateLimiter] = (
            MemoryRateLimiter(config, clock) if local_fallback else None
        )

    async def _degraded_check(self, identifier: str, now: int) -> RateLimitResult:
        if self._fallback is not None:
            return await self._fallback.check_limit(identifier)
        return self._open(now)

    async def _degraded_status(self, identifier: str, now: int) -> RateLimitResult:
        if self._fallback is not None:
            return await self._fallback.get_status(identifier)
        return self._open(now)

    async def check_limit(self, identifier: str) -> RateLimitResult:
        key = self.key_for(identifier)
        now = self._clock()
        client = await self._store.get_client()
        if client is None:
            return await self._degraded_check(identifier, now)

        member = f"{now}-{uuid.uuid4().hex}"
        window_ms = self.config.window_ms
        limit = self.config.max_requests
        try:
            pipe = client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, 0, now - window_ms)
            pipe.zcard(key)
            pipe.zadd(key, {member: now})
            pipe.pexpire(key, window_ms)
            results = await pipe.execute()
            count_before = int(results[1])

            if count_before >= limit:
                await client.zrem(key, member)
                return RateLimitResult(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    reset_at=now + window_ms,
                    retry_after_ms=window_ms,
                )
        except _TRANSPORT_ERRORS as e:
            logger.warning("Rate limit check failed for '%s', degrading: %s", key, e)
            return await self._degraded_check(identifier, now)

        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=limit - count_before - 1,
            reset_at=now + window_ms,
        )

    async def reset(self, identifier: str) -> None:
        await self._store.delete(self.key_for(identifier))
        if self._fallback is not None:
            await self._fallback.reset(identifier)

    async def get_status(self, identifier: str) -> RateLimitResult:
        key = self.key_for(identifier)
        now = self._clock()
        client = await self._store.get_client()
        if client is None:
            return await self._degraded_status(identifier, now)
        try:
            pipe = client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, 0, now - self.config.window_ms)
            pipe.zcard(key)
            results = await pipe.execute()
        except _TRANSPORT_ERRORS as e:
            logger.warning("Rate limit status failed for '%s', degrading: %s", key, e)
            return await self._degraded_status(identifier, now)
        count = int(results[1])
        limit = self.config.max_requests
        return RateLimitResult(
            allowed=count < limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=now + self.config.window_ms,
        )

    def cleanup(self) -> int:
        return self._fallback.cleanup() if self._fallback is not None else 0


def create_rate_limiter(
    config: RateLimitConfig,
    store: KeyValueStore | None = None,
    local_fallback: bool = True,
    clock: Callable[[], int] = now_ms,
) -> RateLimiter:
    """Remote limiter when a store is configured, in-process limiter otherwise."""
    if store is not None and store.enabled:
        return RedisRateLimiter(config, store, local_fallback=local_fallback, clock=clock)
    logger.info("Rate limiter '%s' running in-process only", config.key_prefix)
    return MemoryRateLimiter(config, clock)


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    """HTTP response headers describing *result*."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at / 1000)),
    }
    if not result.allowed:
        headers["Retry-After"] = str(math.ceil((result.retry_after_ms or _MINUTE_MS) / 1000))
    return headers
