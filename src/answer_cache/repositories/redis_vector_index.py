"""Redis implementation of VectorIndex.

Uses Redis Stack vector search (HNSW, cosine distance) through redisvl.
Namespaces and the context fields the query cache filters on are indexed as
tags; everything else in the metadata is kept as a JSON blob.

The redis client is synchronous, so blocking calls run in a worker thread.
"""

import asyncio
import json
import struct
from functools import reduce
from typing import Any

import redis
from redisvl.index import SearchIndex
from redisvl.query import VectorQuery
from redisvl.query.filter import FilterExpression, Tag

from answer_cache.config import get_redis_client, get_settings
from answer_cache.entities import VectorMatch
from answer_cache.exceptions import ProviderError
from answer_cache.observability import get_logger

logger = get_logger(__name__)

FILTERABLE_FIELDS = ("zone", "development", "document_type")


class RedisVectorIndex:
    """Redis implementation using an HNSW vector index.

    This class satisfies the VectorIndex protocol through structural
    typing - no explicit inheritance needed.

    Each vector is a Redis hash keyed ``<index>:<namespace>:<id>``, so
    upserting the same id twice overwrites the same key.
    """

    def __init__(
        self,
        dimension: int,
        redis_client: redis.Redis | None = None,
        index_name: str | None = None,
        ttl: int | None = None,
    ) -> None:
        """Initialize the Redis vector index.

        Args:
            dimension: Embedding vector dimension.
            redis_client: Redis client instance. If None, creates default.
            index_name: Name of the Redis search index.
            ttl: Optional key expiry in seconds for stored vectors.
        """
        self._client = redis_client or get_redis_client()
        self._index_name = index_name or get_settings().cache_index_name
        self._dimension = dimension
        self._ttl = ttl
        self._index: SearchIndex | None = None

    @classmethod
    def create(
        cls,
        dimension: int,
        index_name: str | None = None,
        ttl: int | None = None,
    ) -> "RedisVectorIndex":
        """Factory method to create RedisVectorIndex with defaults.

        Args:
            dimension: Embedding vector dimension.
            index_name: Redis index name. If None, uses settings.
            ttl: Key expiry in seconds. If None, vectors never expire.

        Returns:
            Configured RedisVectorIndex
        """
        return cls(dimension=dimension, index_name=index_name, ttl=ttl)

    def _ensure_index(self) -> SearchIndex:
        """Ensure the Redis vector index exists."""
        if self._index is not None:
            return self._index

        index_schema = {
            "index": {
                "name": self._index_name,
                "prefix": f"{self._index_name}:",
                "storage_type": "hash",
            },
            "fields": [
                {"name": "vector_id", "type": "tag"},
                {"name": "namespace", "type": "tag"},
                {"name": "zone", "type": "tag"},
                {"name": "development", "type": "tag"},
                {"name": "document_type", "type": "tag"},
                {"name": "metadata", "type": "text"},
                {
                    "name": "query_vector",
                    "type": "vector",
                    "attrs": {
                        "dims": self._dimension,
                        "algorithm": "HNSW",
                        "metric": "COSINE",
                        "datatype": "float32",
                    },
                },
            ],
        }

        index = SearchIndex.from_dict(index_schema, redis_client=self._client)
        try:
            index.create(overwrite=False)
            logger.info("vector_index_created", index=self._index_name, dims=self._dimension)
        except Exception as e:
            if "already exists" not in str(e).lower():
                raise
            logger.info("vector_index_reused", index=self._index_name)

        self._index = index
        return index

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, str],
        namespace: str,
    ) -> list[VectorMatch]:
        try:
            return await asyncio.to_thread(self._query, vector, top_k, filter, namespace)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Redis vector query failed: {e}", {"namespace": namespace}) from e

    async def upsert(
        self,
        id: str,
        vector: list[float],
        metadata: dict[str, Any],
        namespace: str,
    ) -> None:
        try:
            await asyncio.to_thread(self._upsert, id, vector, metadata, namespace)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"Redis vector upsert failed: {e}", {"namespace": namespace, "id": id}
            ) from e

    def _query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, str],
        namespace: str,
    ) -> list[VectorMatch]:
        index = self._ensure_index()

        unknown = set(filter) - set(FILTERABLE_FIELDS)
        if unknown:
            raise ProviderError(f"Cannot filter on non-indexed fields: {sorted(unknown)}")

        clauses = [Tag("namespace") == namespace]
        clauses += [Tag(key) == value for key, value in filter.items()]
        expression: FilterExpression = reduce(lambda a, b: a & b, clauses)

        query = VectorQuery(
            vector=vector,
            vector_field_name="query_vector",
            return_fields=["vector_id", "metadata"],
            num_results=top_k,
            filter_expression=expression,
        )

        matches = []
        for result in index.query(query):
            distance = float(result.get("vector_distance", 2.0))
            try:
                metadata = json.loads(result.get("metadata") or "{}")
            except json.JSONDecodeError:
                metadata = {"raw": result["metadata"]}
            # cosine distance is 1 - cosine similarity
            matches.append(
                VectorMatch(id=result["vector_id"], score=1.0 - distance, metadata=metadata)
            )

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def _upsert(
        self,
        id: str,
        vector: list[float],
        metadata: dict[str, Any],
        namespace: str,
    ) -> None:
        self._ensure_index()
        if len(vector) != self._dimension:
            raise ProviderError(
                f"Vector dimension mismatch: index has {self._dimension}, got {len(vector)}"
            )

        key = f"{self._index_name}:{namespace}:{id}"
        mapping: dict[str, Any] = {
            "vector_id": id,
            "namespace": namespace,
            "metadata": json.dumps(metadata),
            "query_vector": struct.pack(f"{len(vector)}f", *vector),
        }
        for field in FILTERABLE_FIELDS:
            if metadata.get(field):
                mapping[field] = str(metadata[field])

        pipe = self._client.pipeline()
        pipe.delete(key)
        pipe.hset(key, mapping=mapping)
        if self._ttl:
            pipe.expire(key, self._ttl)
        pipe.execute()
