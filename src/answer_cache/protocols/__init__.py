"""Protocol interfaces for swappable collaborators.

The query cache depends on these structural types only, so the durable
store, vector index and embedding provider can be swapped (Postgres vs.
in-memory, Redis vs. in-memory, Ollama vs. sentence-transformers) without
touching the service.
"""

from .durable_store import DurableStore
from .embedding_provider import EmbeddingProvider
from .vector_index import VectorIndex

__all__ = [
    "DurableStore",
    "EmbeddingProvider",
    "VectorIndex",
]
