"""Polaris - tiered caching and fallback-driven generation for learning blueprints."""

__version__ = "0.1.0"

from polaris.core import Polaris
from polaris.config import Settings
from polaris.cache import BlueprintCache, TieredCache
from polaris.generation import GenerationOrchestrator, RankedBackend
from polaris.interfaces.backend import GenerationBackend
from polaris.interfaces.store import KeyValueStore
from polaris.logging import configure_from_settings, setup_logging
from polaris.ratelimit import MemoryRateLimiter, RedisRateLimiter, create_rate_limiter
from polaris.store import RedisStore
from polaris.types import (
    CacheTier,
    GenerationContext,
    GenerationResult,
    RateLimitConfig,
    RateLimitResult,
    SimilarMatch,
)

__all__ = [
    "Polaris", "Settings", "BlueprintCache", "TieredCache", "GenerationOrchestrator",
    "RankedBackend", "GenerationBackend", "KeyValueStore", "setup_logging",
    "configure_from_settings",
    "MemoryRateLimiter", "RedisRateLimiter", "create_rate_limiter", "RedisStore",
    "CacheTier", "GenerationContext", "GenerationResult", "RateLimitConfig",
    "RateLimitResult", "SimilarMatch",
]
