"""Vector index protocol.

Defines the nearest-neighbour search backend the query cache stores query
vectors in. Cache vectors live in their own namespace so they never mix
with document vectors.
"""

from typing import Any, Protocol, runtime_checkable

from answer_cache.entities import VectorMatch


@runtime_checkable
class VectorIndex(Protocol):
    """Protocol for vector search backends."""

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, str],
        namespace: str,
    ) -> list[VectorMatch]:
        """Find the nearest neighbours of a vector.

        Args:
            vector: The query embedding
            top_k: Maximum number of matches
            filter: Exact-match conjunction over metadata fields
            namespace: Logical partition to search

        Returns:
            Matches ranked by descending similarity score
        """
        ...

    async def upsert(
        self,
        id: str,
        vector: list[float],
        metadata: dict[str, Any],
        namespace: str,
    ) -> None:
        """Insert or replace a vector. Idempotent on ``id``."""
        ...
