"""Service layer for business logic.

Services depend on protocols (interfaces), not concrete implementations,
making them testable and flexible.

Architecture:
    Handler -> Service -> Repository
    (HTTP)  -> (Business) -> (Data Access)
"""

from .normalization import embedding_id_for, generate_query_hash, normalize_query
from .query_cache_service import SemanticQueryCache

__all__ = [
    "SemanticQueryCache",
    "embedding_id_for",
    "generate_query_hash",
    "normalize_query",
]
