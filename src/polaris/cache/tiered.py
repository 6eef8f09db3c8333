"""Two-level cache: bounded in-process LRU in front of the remote store."""

import logging
import math
from collections import OrderedDict
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, List, Optional

from polaris.cache.envelope import is_expired, unwrap, wrap
from polaris.exceptions import CacheSerializationError
from polaris.interfaces.store import KeyValueStore
from polaris.types import CacheEntry, CacheMetrics, CacheStats
from polaris.utils.retry import now_ms
from polaris.utils.singleflight import SingleFlight

logger = logging.getLogger(__name__)


class TieredCache:
    """In-process LRU cache backed by an optional shared remote store.

    Lookup order:
        1. In-process store (valid while ``now - timestamp < ttl``).
        2. Remote store. A hit is promoted into the in-process store with
           the configured default TTL.

    Writes go to both tiers. The remote tier is best effort: its failures are
    logged and never fail the call.

    Args:
        store: Remote key-value store. If None or disabled, the cache runs
            in-process only.
        max_size: Max in-process entries. 0 disables the in-process tier.
        default_ttl_ms: TTL used when ``set`` gets none, and for promotion.
        key_prefix: Prefix applied to every remote key.
        kind: Envelope tag. Remote rows written by another kind are misses.
        clock: Epoch-milliseconds clock, overridable for tests.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        max_size: int = 1000,
        default_ttl_ms: int = 5 * 60 * 1000,
        key_prefix: str = "polaris_cache:",
        kind: str = "generic",
        clock: Callable[[], int] = now_ms,
    ):
        if default_ttl_ms <= 0:
            raise ValueError("default_ttl_ms must be positive")
        self._store = store
        self._max_size = max_size
        self._default_ttl_ms = default_ttl_ms
        self._prefix = key_prefix
        self._kind = kind
        self._clock = clock

        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._metrics = CacheMetrics()
        self._flights = SingleFlight()

    @property
    def remote_enabled(self) -> bool:
        return self._store is not None and self._store.enabled

    @property
    def size(self) -> int:
        return len(self._memory)

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics.model_copy()

    def keys(self) -> List[str]:
        """Logical keys currently held in process, least recently used first."""
        return list(self._memory.keys())

    def _remote_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    # --- Reads ---

    async def get(self, key: str) -> Optional[Any]:
        value = self._get_local(key)
        if value is not None:
            self._metrics.hits += 1
            return value

        if self.remote_enabled:
            value = await self._get_remote(key)
            if value is not None:
                self._put_local(key, value, self._default_ttl_ms, hits=1)
                self._metrics.remote_hits += 1
                self._metrics.hits += 1
                logger.debug("Remote hit promoted: key=%s", key)
                return value
            self._metrics.remote_misses += 1

        self._metrics.misses += 1
        return None

    def _get_local(self, key: str) -> Optional[Any]:
        entry = self._memory.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._memory[key]
            logger.debug("Expired entry dropped: key=%s, size=%d", key, len(self._memory))
            return None
        self._memory.move_to_end(key)
        entry.hits += 1
        return entry.value

    async def _get_remote(self, key: str) -> Optional[Any]:
        remote_key = self._remote_key(key)
        raw = await self._store.get(remote_key)
        if raw is None:
            return None
        try:
            envelope = unwrap(raw, self._kind)
        except CacheSerializationError as e:
            logger.warning("Rejecting remote value for key '%s': %s", key, e)
            await self._store.delete(remote_key)
            return None
        if is_expired(envelope, self._clock()):
            await self._store.delete(remote_key)
            return None
        return envelope["payload"]

    async def has(self, key: str) -> bool:
        entry = self._memory.get(key)
        if entry is not None and entry.is_valid(self._clock()):
            return True
        if self.remote_enabled:
            return await self._store.exists(self._remote_key(key))
        return False

    # --- Writes ---

    async def set(self, key: str, value: Any, ttl_ms: int | None = None) -> bool:
        """Store *value* in both tiers. Returns False only for a None value."""
        if value is None:
            logger.debug("Refusing to cache None for key=%s", key)
            return False
        ttl = ttl_ms if ttl_ms and ttl_ms > 0 else self._default_ttl_ms
        self._put_local(key, value, ttl)
        self._metrics.sets += 1

        if self.remote_enabled:
            envelope = wrap(self._kind, value, self._clock(), ttl)
            ok = await self._store.set(self._remote_key(key), envelope, math.ceil(ttl / 1000))
            if not ok:
                logger.warning("Remote write failed for key '%s', kept in process only", key)
        return True

    def _put_local(self, key: str, value: Any, ttl_ms: int, hits: int = 0) -> None:
        if self._max_size <= 0:
            return
        if key in self._memory:
            del self._memory[key]
        evicted = False
        while len(self._memory) >= self._max_size:
            self._memory.popitem(last=False)
            self._metrics.evictions += 1
            evicted = True
        self._memory[key] = CacheEntry(value=value, timestamp=self._clock(), ttl=ttl_ms, hits=hits)
        logger.debug(
            "In-process store: key=%s, size=%d%s",
            key,
            len(self._memory),
            " (evicted oldest)" if evicted else "",
        )

    async def delete(self, key: str) -> bool:
        removed = self._memory.pop(key, None) is not None
        if self.remote_enabled:
            removed = await self._store.delete(self._remote_key(key)) or removed
        self._metrics.deletes += 1
        return removed

    async def clear(self, pattern: str | None = None) -> bool:
        """Remove keys matching a glob *pattern* from both tiers (all keys if None)."""
        pattern = pattern or "*"
        doomed = [k for k in self._memory if fnmatchcase(k, pattern)]
        for k in doomed:
            del self._memory[k]
        remote_deleted = 0
        if self.remote_enabled:
            remote_deleted = await self._store.delete_matching(self._remote_key(pattern))
        logger.info(
            "Cache cleared: pattern='%s', memory=%d, remote=%d",
            pattern,
            len(doomed),
            remote_deleted,
        )
        return True

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        ttl_ms: int | None = None,
    ) -> Any:
        """Cache-aside helper. Concurrent misses for one key share one computation."""
        value = await self.get(key)
        if value is not None:
            return value

        async def _compute() -> Any:
            result = await compute_fn()
            await self.set(key, result, ttl_ms)
            return result

        return await self._flights.do(key, _compute)

    # --- Maintenance ---

    def cleanup(self) -> int:
        """Drop every expired in-process entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, entry in self._memory.items() if not entry.is_valid(now)]
        for k in expired:
            del self._memory[k]
        if expired:
            logger.debug("Cleanup removed %d expired entries", len(expired))
        return len(expired)

    def reset_metrics(self) -> None:
        self._metrics = CacheMetrics()

    async def get_stats(self) -> CacheStats:
        remote = await self._store.health_check() if self.remote_enabled else None
        return CacheStats(
            metrics=self.metrics,
            memory_size=len(self._memory),
            max_size=self._max_size,
            remote_enabled=self.remote_enabled,
            remote=remote,
        )
