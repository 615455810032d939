"""Repository layer for data access.

This layer puts external dependencies (Postgres, Redis, embedding APIs)
behind protocol-based interfaces, so the query cache can be run against
in-memory fakes in tests and real backends in production.

The repositories are protocol-based (structural typing), not inheritance-based.
Heavy adapters (Postgres, Redis, Ollama, sentence-transformers) are imported
from their own modules so the in-memory ones stay cheap to import.
"""

from .in_memory_store import InMemoryQueryStore
from .in_memory_vector_index import InMemoryVectorIndex

__all__ = [
    "InMemoryQueryStore",
    "InMemoryVectorIndex",
]
