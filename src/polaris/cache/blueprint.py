"""Similarity-keyed cache of generated blueprints.

Every stored blueprint is written under four keys of decreasing specificity
(exact, combined, domain, complexity), each with its own TTL. A lookup walks
the keys from most to least specific and accepts the first stored row whose
original answers score at or above the similarity threshold.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from polaris.cache.tiered import TieredCache
from polaris.config import Settings
from polaris.types import (
    BlueprintCacheEntry,
    BlueprintCacheStats,
    CacheKeyComponents,
    CacheStats,
    CacheTier,
    SimilarMatch,
)
from polaris.utils.fingerprint import answer_similarity, fingerprint
from polaris.utils.retry import now_ms

logger = logging.getLogger(__name__)

_LOOKUP_ORDER = (CacheTier.EXACT, CacheTier.COMBINED, CacheTier.DOMAIN, CacheTier.COMPLEXITY)


class BlueprintCache:
    """Blueprint cache over a ``TieredCache``.

    All public operations fail soft: errors are logged and turned into a miss
    or a no-op. Returned blueprints are deep copies, so callers can never
    mutate a cached row through them.

    Args:
        cache: Underlying tiered cache (kind ``"blueprint"``).
        settings: Thresholds, comparable fields, key namespace and tier TTLs.
        clock: Epoch-milliseconds clock, overridable for tests.
    """

    def __init__(
        self,
        cache: TieredCache,
        settings: Settings | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._cache = cache
        self._settings = settings or Settings()
        self._clock = clock
        self._namespace = self._settings.blueprint_key_namespace
        self._ttls = {CacheTier(k): v for k, v in self._settings.tier_ttls_ms().items()}
        self._stats = BlueprintCacheStats()

    @property
    def threshold(self) -> float:
        return self._settings.similarity_threshold

    # --- Keys ---

    def fingerprint(self, answers: Mapping[str, Any]) -> CacheKeyComponents:
        return fingerprint(
            answers,
            domain_fields=self._settings.domain_fields,
            complexity_fields=self._settings.complexity_fields,
            schema_version=self._settings.blueprint_schema_version,
        )

    def key_for(self, tier: CacheTier, components: CacheKeyComponents) -> str:
        if tier is CacheTier.EXACT:
            suffix = components.exact_fingerprint
        elif tier is CacheTier.DOMAIN:
            suffix = components.domain_fingerprint
        elif tier is CacheTier.COMPLEXITY:
            suffix = components.complexity_fingerprint
        else:
            suffix = f"{components.domain_fingerprint}:{components.complexity_fingerprint}"
        return f"{self._namespace}:{tier.value}:{suffix}"

    def keys_for(self, answers: Mapping[str, Any]) -> List[Tuple[CacheTier, str]]:
        """Candidate keys, most specific first."""
        components = self.fingerprint(answers)
        return [(tier, self.key_for(tier, components)) for tier in _LOOKUP_ORDER]

    # --- Rows ---

    async def _load(self, key: str) -> Optional[BlueprintCacheEntry]:
        raw = await self._cache.get(key)
        if raw is None:
            return None
        try:
            return BlueprintCacheEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning("Dropping invalid blueprint row '%s': %s", key, e.errors()[:1])
            self._stats.invalid_rows += 1
            await self._cache.delete(key)
            return None

    async def _touch(self, tier: CacheTier, key: str, entry: BlueprintCacheEntry) -> None:
        """Bump use_count and re-save the row with its remaining TTL."""
        entry.use_count += 1
        remaining = self._ttls[tier] - (self._clock() - entry.generated_at)
        if remaining <= 0:
            return
        await self._cache.set(key, entry.model_dump(mode="json"), remaining)

    # --- Lookups ---

    async def lookup_exact(self, answers: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Return a copy of the blueprint stored for these exact answers, or None."""
        try:
            key = self.key_for(CacheTier.EXACT, self.fingerprint(answers))
            entry = await self._load(key)
            if entry is None:
                return None
            await self._touch(CacheTier.EXACT, key, entry)
            self._stats.exact_hits += 1
            logger.debug("Exact blueprint hit: key=%s, use_count=%d", key, entry.use_count)
            return copy.deepcopy(entry.blueprint)
        except Exception as e:
            logger.error("Exact blueprint lookup failed: %s", e, exc_info=True)
            return None

    async def lookup_similar(self, answers: Mapping[str, Any]) -> Optional[SimilarMatch]:
        """Find a blueprint generated for answers close enough to *answers*.

        Steps:
            1. Derive the candidate keys, most specific first.
            2. Score each stored row's original answers against *answers*.
            3. Accept the first row scoring at or above the threshold.

        Returns:
            SimilarMatch with a blueprint copy, or None (counted as a miss).
        """
        try:
            for tier, key in self.keys_for(answers):
                entry = await self._load(key)
                if entry is None:
                    continue
                score = answer_similarity(
                    entry.questionnaire_fingerprint,
                    answers,
                    self._settings.similarity_fields,
                    partial_floor=self._settings.partial_match_floor,
                )
                if score < self.threshold:
                    logger.debug(
                        "Similar candidate rejected: tier=%s, score=%.3f", tier.value, score
                    )
                    continue
                await self._touch(tier, key, entry)
                self._stats.similar_hits += 1
                logger.info("Similar blueprint hit: tier=%s, score=%.3f", tier.value, score)
                return SimilarMatch(
                    blueprint=copy.deepcopy(entry.blueprint),
                    similarity=score,
                    tier=tier,
                    cache_age_ms=max(0, self._clock() - entry.generated_at),
                    use_count=entry.use_count,
                )
        except Exception as e:
            logger.error("Similar blueprint lookup failed: %s", e, exc_info=True)
            return None

        self._stats.misses += 1
        return None

    # --- Writes ---

    def _entry(
        self,
        answers: Mapping[str, Any],
        blueprint: Mapping[str, Any],
        similarity: float,
    ) -> BlueprintCacheEntry:
        return BlueprintCacheEntry(
            blueprint=copy.deepcopy(dict(blueprint)),
            questionnaire_fingerprint=copy.deepcopy(dict(answers)),
            generated_at=self._clock(),
            similarity_score_at_store=similarity,
            use_count=1,
            schema_version=self._settings.blueprint_schema_version,
        )

    async def store(
        self,
        answers: Mapping[str, Any],
        blueprint: Mapping[str, Any],
        similarity_score_at_store: float = 1.0,
    ) -> bool:
        """Write the blueprint under all four tiers with per-tier TTLs."""
        try:
            row = self._entry(answers, blueprint, similarity_score_at_store).model_dump(mode="json")
            for tier, key in self.keys_for(answers):
                await self._cache.set(key, copy.deepcopy(row), self._ttls[tier])
        except Exception as e:
            logger.error("Blueprint store failed: %s", e, exc_info=True)
            return False
        self._stats.stores += 1
        logger.info("Stored blueprint (similarity=%.0f%%)", similarity_score_at_store * 100)
        return True

    async def store_exact(
        self,
        answers: Mapping[str, Any],
        blueprint: Mapping[str, Any],
        similarity: float,
    ) -> bool:
        """Write only the exact-tier row, so identical requests become exact hits."""
        try:
            key = self.key_for(CacheTier.EXACT, self.fingerprint(answers))
            row = self._entry(answers, blueprint, similarity).model_dump(mode="json")
            await self._cache.set(key, row, self._ttls[CacheTier.EXACT])
        except Exception as e:
            logger.error("Exact blueprint store failed: %s", e, exc_info=True)
            return False
        return True

    async def invalidate(self, answers: Mapping[str, Any] | None = None) -> None:
        """Delete the four keys derived from *answers*, or the whole namespace."""
        try:
            if answers is None:
                await self._cache.clear(f"{self._namespace}:*")
                return
            for _, key in self.keys_for(answers):
                await self._cache.delete(key)
        except Exception as e:
            logger.error("Blueprint invalidation failed: %s", e, exc_info=True)

    # --- Maintenance ---

    def get_stats(self) -> BlueprintCacheStats:
        return self._stats.model_copy()

    async def get_cache_stats(self) -> CacheStats:
        return await self._cache.get_stats()

    def cleanup(self) -> int:
        return self._cache.cleanup()
