"""Cache match domain entities."""

from dataclasses import dataclass, field
from typing import Any

from .query_cache_entry import QueryCacheEntry


@dataclass(frozen=True)
class VectorMatch:
    """Single result of a nearest-neighbour query.

    Attributes:
        id: Vector id in the index
        score: Cosine similarity (1 = identical)
        metadata: Metadata stored with the vector
    """

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheMatch:
    """A cached answer returned by the query cache.

    Attributes:
        entry: The durable cache entry
        similarity: 1.0 for exact hash matches, otherwise the vector score
        exact: True when found by hash, False when found by similarity
    """

    entry: QueryCacheEntry
    similarity: float
    exact: bool = False
