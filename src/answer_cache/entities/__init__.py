"""Domain entities for internal representation.

These are pure dataclasses (frozen) used by services and repositories.
They are NOT used for API contracts - use DTOs from the dto package for that.
"""

from .cache_match import CacheMatch, VectorMatch
from .query_cache_entry import NewQueryCacheEntry, QueryCacheEntry, SourceReference
from .query_context import QueryContext

__all__ = [
    "CacheMatch",
    "NewQueryCacheEntry",
    "QueryCacheEntry",
    "QueryContext",
    "SourceReference",
    "VectorMatch",
]
