"""In-process caching."""

from .ttl_cache import CacheEntry, CacheStats, CacheTTL, TTLCache, build_cache_key

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheTTL",
    "TTLCache",
    "build_cache_key",
]
