"""In-memory implementation of VectorIndex.

Brute-force cosine similarity over numpy arrays, partitioned by namespace.
Good enough for tests and small local corpora.
"""

import asyncio
from typing import Any

import numpy as np

from answer_cache.entities import VectorMatch
from answer_cache.exceptions import ProviderError


def _cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


class InMemoryVectorIndex:
    """Namespace-partitioned vector index satisfying the VectorIndex protocol."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._namespaces: dict[str, dict[str, tuple[np.ndarray, dict[str, Any]]]] = {}

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, str],
        namespace: str,
    ) -> list[VectorMatch]:
        query_vector = np.asarray(vector, dtype=np.float32)
        async with self._lock:
            items = list(self._namespaces.get(namespace, {}).items())

        matches = []
        for vector_id, (stored, metadata) in items:
            if stored.shape != query_vector.shape:
                raise ProviderError(
                    f"Vector dimension mismatch: index has {stored.shape[0]}, query has {query_vector.shape[0]}",
                    {"namespace": namespace},
                )
            if any(metadata.get(key) != value for key, value in filter.items()):
                continue
            matches.append(
                VectorMatch(id=vector_id, score=_cosine_similarity(query_vector, stored), metadata=metadata)
            )

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def upsert(
        self,
        id: str,
        vector: list[float],
        metadata: dict[str, Any],
        namespace: str,
    ) -> None:
        async with self._lock:
            self._namespaces.setdefault(namespace, {})[id] = (
                np.asarray(vector, dtype=np.float32),
                dict(metadata),
            )

    def count(self, namespace: str) -> int:
        return len(self._namespaces.get(namespace, {}))
