"""KeyValueStore abstract class defining the remote store interface."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from polaris.types import HealthStatus


class KeyValueStore(ABC):
    """Abstract base class for the shared, networked cache tier.

    Implementations must fail soft: transport errors are logged and the
    documented sentinel is returned instead of raising, so that cache and
    rate-limit failures never fail the request that triggered them.
    """

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Return False when the store is not configured at all."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the deserialized value, or None on miss/decode error/outage."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Serialize and store *value* with an expiry. Returns success."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete *key*. Returns True if a key was removed."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds, or -1 when unknown/unavailable."""
        ...

    @abstractmethod
    async def increment(self, key: str, amount: int = 1) -> Optional[int]:
        """Atomically add *amount*; None when the store is unavailable."""
        ...

    @abstractmethod
    async def keys_matching(self, pattern: str) -> List[str]:
        """Return keys matching a glob-style *pattern*."""
        ...

    @abstractmethod
    async def delete_matching(self, pattern: str) -> int:
        """Delete keys matching *pattern*. Returns the number removed."""
        ...

    @abstractmethod
    async def health_check(self) -> HealthStatus:
        ...

    @abstractmethod
    async def get_client(self) -> Optional[Any]:
        """Return the connected low-level client, or None when unavailable.

        Used by callers that need multi-command pipelines.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        ...

    # --- Context manager support ---

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
