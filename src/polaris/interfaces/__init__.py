"""Abstract base classes for remote stores and generation backends."""

from polaris.interfaces.backend import GenerationBackend
from polaris.interfaces.store import KeyValueStore

__all__ = ["GenerationBackend", "KeyValueStore"]
