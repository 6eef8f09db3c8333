"""Remote key-value store adapters."""

from polaris.store.redis_store import RedisStore

__all__ = ["RedisStore"]
