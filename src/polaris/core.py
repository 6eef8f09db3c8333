"""Polaris runtime: wires the store, caches, orchestrator and rate limiters together."""

import logging
from typing import Any, Dict, List, Mapping, Sequence, Union

from polaris.backends.anthropic import AnthropicBackend
from polaris.backends.ollama import OllamaBackend
from polaris.cache.blueprint import BlueprintCache
from polaris.cache.tiered import TieredCache
from polaris.config import Settings
from polaris.exceptions import ConfigurationError
from polaris.generation.orchestrator import GenerationOrchestrator, RankedBackend
from polaris.interfaces.store import KeyValueStore
from polaris.ratelimit.limiter import PRESETS, RateLimiter, create_rate_limiter
from polaris.store.redis_store import RedisStore
from polaris.types import GenerationContext, GenerationResult, RateLimitConfig, RateLimitResult

logger = logging.getLogger(__name__)


def default_backends(settings: Settings) -> List[RankedBackend]:
    """Primary model, larger fallback model, then local Ollama when configured."""
    anthropic = AnthropicBackend(settings)
    ranked = [
        RankedBackend(
            backend=anthropic,
            model=settings.primary_model,
            max_tokens=settings.primary_max_tokens,
            temperature=settings.temperature,
            label="anthropic-primary",
        ),
        RankedBackend(
            backend=anthropic,
            model=settings.fallback_model,
            max_tokens=settings.fallback_max_tokens,
            temperature=settings.temperature,
            label="anthropic-fallback",
        ),
    ]
    if settings.ollama_base_url:
        ranked.append(
            RankedBackend(
                backend=OllamaBackend(settings),
                model=settings.ollama_model,
                max_tokens=settings.ollama_max_tokens,
                temperature=settings.temperature,
                label="ollama-emergency",
            )
        )
    return ranked


class Polaris:
    """Explicitly constructed runtime for blueprint caching and generation.

    Nothing here is a module-level singleton: every collaborator is built
    (or injected) in the constructor and released by ``close()``.

    Args:
        settings: Configuration. If None, loads from environment.
        store: Remote store. If None, a ``RedisStore`` is built from settings
            (disabled when no URL is configured).
        backends: Ranked generation backends. If None, built from settings.
        rate_limits: Named rate limit configs. Defaults to ``PRESETS``.

    Example:
        >>> async with Polaris() as polaris:
        ...     result = await polaris.generate(context)
        ...     print(result.success, result.metadata.backend_used)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: KeyValueStore | None = None,
        backends: Sequence[RankedBackend] | None = None,
        rate_limits: Mapping[str, RateLimitConfig] | None = None,
    ):
        self._settings = settings or Settings()
        self._store = store if store is not None else RedisStore(self._settings)

        self._cache = TieredCache(
            self._store,
            max_size=self._settings.cache_max_size,
            default_ttl_ms=self._settings.cache_default_ttl_ms,
            key_prefix=self._settings.cache_key_prefix,
            kind="generic",
        )
        self._blueprint_cache = BlueprintCache(
            TieredCache(
                self._store,
                max_size=self._settings.blueprint_cache_max_size,
                default_ttl_ms=self._settings.blueprint_cache_ttl_ms,
                key_prefix=self._settings.blueprint_cache_prefix,
                kind="blueprint",
            ),
            self._settings,
        )
        ranked = list(backends) if backends is not None else default_backends(self._settings)
        self._orchestrator = GenerationOrchestrator(self._blueprint_cache, ranked, self._settings)

        self._rate_limiters: Dict[str, RateLimiter] = {
            name: create_rate_limiter(
                config, self._store, local_fallback=self._settings.rate_limit_local_fallback
            )
            for name, config in (rate_limits or PRESETS).items()
        }

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @property
    def blueprint_cache(self) -> BlueprintCache:
        return self._blueprint_cache

    @property
    def orchestrator(self) -> GenerationOrchestrator:
        return self._orchestrator

    # --- Lifecycle ---

    async def start(self) -> None:
        """Open the remote store connection, if one is configured.

        A store that cannot be reached is not an error: Polaris keeps
        running on in-process state and retries the connection later.
        """
        if self._store.enabled and hasattr(self._store, "connect"):
            connected = await self._store.connect()
            if not connected:
                logger.warning("Remote store unreachable at startup, continuing in-process only")
        logger.info(
            "Polaris started: remote=%s, backends=%d, rate_limiters=%s",
            self._store.enabled,
            len(self._orchestrator.backends),
            sorted(self._rate_limiters),
        )

    async def close(self) -> None:
        """Close every backend once, then the store."""
        seen = set()
        for ranked in self._orchestrator.backends:
            if id(ranked.backend) in seen:
                continue
            seen.add(id(ranked.backend))
            await ranked.backend.close()
        await self._store.close()
        logger.info("Polaris closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    # --- Operations ---

    async def generate(
        self, context: Union[GenerationContext, Mapping[str, Any]]
    ) -> GenerationResult:
        return await self._orchestrator.generate(context)

    def rate_limiter(self, name: str) -> RateLimiter:
        try:
            return self._rate_limiters[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown rate limiter '{name}'. Available: {sorted(self._rate_limiters)}"
            ) from None

    async def check_rate_limit(self, name: str, identifier: str) -> RateLimitResult:
        return await self.rate_limiter(name).check_limit(identifier)

    async def health(self) -> Dict[str, Any]:
        store_health = await self._store.health_check()
        return {
            "store": store_health.model_dump(),
            "backends": {
                ranked.display_name: ranked.backend.is_configured
                for ranked in self._orchestrator.backends
            },
        }

    async def stats(self) -> Dict[str, Any]:
        cache_stats = await self._cache.get_stats()
        blueprint_tier = await self._blueprint_cache.get_cache_stats()
        return {
            "cache": cache_stats.model_dump(),
            "blueprint_cache": {
                **self._blueprint_cache.get_stats().model_dump(),
                "tier": blueprint_tier.model_dump(),
            },
            "generation": self._orchestrator.stats,
        }

    def cleanup(self) -> Dict[str, int]:
        """Purge expired in-process entries from both caches and idle rate limit windows."""
        return {
            "cache": self._cache.cleanup(),
            "blueprint_cache": self._blueprint_cache.cleanup(),
            "rate_limiters": sum(limiter.cleanup() for limiter in self._rate_limiters.values()),
        }
