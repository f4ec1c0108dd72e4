"""Request-level result caching with fan-in, TTL and LRU capacity."""

from .cache import DEFAULT_TTL, CacheEntry, CacheState, ResultCache, fingerprint

__all__ = ["CacheEntry", "CacheState", "DEFAULT_TTL", "ResultCache", "fingerprint"]
