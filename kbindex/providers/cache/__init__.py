"""Cache provider implementations."""

from kbindex.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
