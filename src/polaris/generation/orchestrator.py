"""Blueprint generation: cache check, then a cascade over ranked backends."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from polaris.cache.blueprint import BlueprintCache
from polaris.config import Settings
from polaris.exceptions import (
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    BlueprintValidationError,
    InputValidationError,
)
from polaris.generation.fallback import decide_fallback
from polaris.generation.prompts import BLUEPRINT_SYSTEM_PROMPT, build_blueprint_prompt
from polaris.generation.validation import validate_and_normalize_blueprint
from polaris.interfaces.backend import GenerationBackend
from polaris.types import (
    BackendRequest,
    CacheTier,
    FallbackDecision,
    GenerationContext,
    GenerationMetadata,
    GenerationResult,
    TokenUsage,
)
from polaris.utils.fingerprint import canonical_json, digest
from polaris.utils.singleflight import SingleFlight

logger = logging.getLogger(__name__)

CACHE_BACKEND_LABEL = "cache"


class RankedBackend(BaseModel):
    """A backend plus the model parameters used when it is its turn."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    backend: GenerationBackend
    model: str
    max_tokens: int = Field(ge=1)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    label: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.label or f"{self.backend.name}:{self.model}"


class GenerationOrchestrator:
    """Drive one ``generate()`` call from cache check to a final result.

    States: cache check, primary attempt, zero or more fallback attempts,
    done. Escalation between backends is immediate. Retrying the *same*
    backend is the backend's own concern.

    Expected failures (bad input, backend errors, invalid output) come back
    as ``GenerationResult(success=False)``. Anything else propagates.

    Args:
        cache: Blueprint cache, or None to always generate.
        backends: Backends in rank order (primary first).
        settings: Polaris settings. If None, loads from environment.
        decide: Maps a failed attempt's error to a ``FallbackDecision``.
        clock: Monotonic clock in seconds, used for ``duration_ms``.
    """

    def __init__(
        self,
        cache: BlueprintCache | None,
        backends: Sequence[RankedBackend],
        settings: Settings | None = None,
        decide: Callable[[BaseException], FallbackDecision] = decide_fallback,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._cache = cache
        self._backends: List[RankedBackend] = list(backends)
        self._settings = settings or Settings()
        self._decide = decide
        self._clock = clock
        self._flights = SingleFlight()

        self._stats = {
            "requests": 0,
            "cache_hits": 0,
            "successes": 0,
            "failures": 0,
            "fallbacks": 0,
            "backend_calls": 0,
            "coalesced": 0,
        }

    @property
    def backends(self) -> List[RankedBackend]:
        return list(self._backends)

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    # --- Public API ---

    async def generate(
        self, context: Union[GenerationContext, Mapping[str, Any]]
    ) -> GenerationResult:
        """Generate (or fetch from cache) the blueprint for *context*.

        Concurrent calls with identical static answers share one in-flight
        generation when ``settings.single_flight`` is on.
        """
        started = self._clock()
        self._stats["requests"] += 1
        try:
            ctx = self._coerce_context(context)
        except InputValidationError as e:
            logger.warning("Rejected generation input: %s", e)
            self._stats["failures"] += 1
            return self._failure(str(e), started, attempts=0, fallback_used=False)

        if not self._settings.single_flight:
            return await self._generate(ctx, started)

        key = digest(canonical_json(ctx.static_answers))
        if self._flights.in_flight(key):
            # Joined callers are counted here; the shared run counts its own outcome once
            self._stats["coalesced"] += 1
        result = await self._flights.do(key, lambda: self._generate(ctx, started))
        result = result.model_copy(deep=True)
        result.metadata.duration_ms = self._elapsed_ms(started)
        return result

    @staticmethod
    def _coerce_context(context: Union[GenerationContext, Mapping[str, Any]]) -> GenerationContext:
        if isinstance(context, GenerationContext):
            return context
        if not isinstance(context, Mapping):
            raise InputValidationError(
                f"Generation context must be a mapping, got {type(context).__name__}"
            )
        try:
            return GenerationContext.model_validate(dict(context))
        except ValidationError as e:
            raise InputValidationError(f"Invalid generation context: {e}") from e

    # --- State machine ---

    async def _generate(self, ctx: GenerationContext, started: float) -> GenerationResult:
        cached = await self._check_cache(ctx, started)
        if cached is not None:
            return cached

        chain = self._backends if self._settings.enable_fallback else self._backends[:1]
        if not chain:
            self._stats["failures"] += 1
            return self._failure("No generation backends configured", started, 0, False)

        generated_at = datetime.now(timezone.utc)
        user_prompt = build_blueprint_prompt(ctx, generated_at)

        attempts = 0
        last_error: Optional[BaseException] = None
        for index, ranked in enumerate(chain):
            attempts += 1
            try:
                artifact, usage = await self._attempt(ranked, user_prompt)
            except (BackendError, BlueprintValidationError) as e:
                last_error = e
                logger.warning(
                    "Generation attempt %d failed: backend=%s, error=%s",
                    attempts,
                    ranked.display_name,
                    e,
                )
                decision = self._decide(e)
                if not decision.should_fallback:
                    self._stats["failures"] += 1
                    return self._failure(str(e), started, attempts, fallback_used=index > 0)
                continue

            fallback_used = index > 0
            if fallback_used:
                self._stats["fallbacks"] += 1
            self._stats["successes"] += 1
            if self._cache is not None:
                await self._cache.store(ctx.static_answers, artifact)
            logger.info(
                "Blueprint generated: backend=%s, attempts=%d, fallback=%s",
                ranked.display_name,
                attempts,
                fallback_used,
            )
            return GenerationResult(
                success=True,
                artifact=artifact,
                metadata=GenerationMetadata(
                    backend_used=ranked.display_name,
                    duration_ms=self._elapsed_ms(started),
                    fallback_used=fallback_used,
                    attempt_count=attempts,
                ),
                usage=usage,
            )

        self._stats["failures"] += 1
        message = f"All {attempts} backends failed; last error: {last_error}"
        logger.error(message)
        return self._failure(message, started, attempts, fallback_used=attempts > 1)

    async def _check_cache(self, ctx: GenerationContext, started: float) -> Optional[GenerationResult]:
        if self._cache is None:
            return None

        blueprint = await self._cache.lookup_exact(ctx.static_answers)
        if blueprint is not None:
            self._stats["cache_hits"] += 1
            self._stats["successes"] += 1
            return self._cache_hit(blueprint, started, CacheTier.EXACT, 1.0)

        match = await self._cache.lookup_similar(ctx.static_answers)
        if match is None:
            return None
        await self._cache.store_exact(ctx.static_answers, match.blueprint, match.similarity)
        self._stats["cache_hits"] += 1
        self._stats["successes"] += 1
        return self._cache_hit(match.blueprint, started, match.tier, match.similarity)

    async def _attempt(
        self, ranked: RankedBackend, user_prompt: str
    ) -> Tuple[Dict[str, Any], TokenUsage]:
        """One backend call plus validation. Raises on any failure."""
        backend = ranked.backend
        if not backend.is_configured:
            raise BackendUnavailableError(
                f"Backend '{ranked.display_name}' is not configured", backend=backend.name
            )

        request = BackendRequest(
            model=ranked.model,
            system_prompt=BLUEPRINT_SYSTEM_PROMPT,
            user_prompt=user_prompt,
            max_output_tokens=ranked.max_tokens,
            temperature=ranked.temperature,
        )
        self._stats["backend_calls"] += 1
        timeout = self._settings.backend_timeout
        try:
            response = await asyncio.wait_for(backend.generate(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(
                f"Backend '{ranked.display_name}' timed out after {timeout}s", backend=backend.name
            ) from e

        artifact, _ = validate_and_normalize_blueprint(response.text)
        return artifact, response.usage

    # --- Results ---

    def _elapsed_ms(self, started: float) -> float:
        return round((self._clock() - started) * 1000, 3)

    def _cache_hit(
        self, blueprint: Dict[str, Any], started: float, tier: CacheTier, similarity: float
    ) -> GenerationResult:
        logger.info("Blueprint served from cache: tier=%s, similarity=%.3f", tier.value, similarity)
        return GenerationResult(
            success=True,
            artifact=blueprint,
            metadata=GenerationMetadata(
                backend_used=CACHE_BACKEND_LABEL,
                duration_ms=self._elapsed_ms(started),
                fallback_used=False,
                attempt_count=0,
                cache_hit=True,
                cache_tier=tier,
                similarity=similarity,
            ),
        )

    def _failure(
        self, error: str, started: float, attempts: int, fallback_used: bool
    ) -> GenerationResult:
        return GenerationResult(
            success=False,
            error=error,
            metadata=GenerationMetadata(
                duration_ms=self._elapsed_ms(started),
                fallback_used=fallback_used,
                attempt_count=attempts,
            ),
        )
