"""Sliding-window rate limiting on top of the remote store."""

from polaris.ratelimit.limiter import (
    PRESETS,
    MemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
    rate_limit_headers,
)

__all__ = [
    "PRESETS",
    "MemoryRateLimiter",
    "RateLimiter",
    "RedisRateLimiter",
    "create_rate_limiter",
    "rate_limit_headers",
]
