"""Two-level caching: in-process LRU over a shared remote store."""

from polaris.cache.blueprint import BlueprintCache
from polaris.cache.tiered import TieredCache

__all__ = ["BlueprintCache", "TieredCache"]
