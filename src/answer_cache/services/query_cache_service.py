"""Semantic query cache.

This service sits in front of the answer-generation pipeline. It looks up
previously generated answers by exact hash first and by embedding
similarity second, refuses to serve (or store) answers users flagged as
bad, and persists new answers with a fixed expiry.

Caching is an optimization only: every collaborator failure is logged and
turned into a miss or a no-op. Nothing raised by the store, the vector
index or the embedding provider reaches the caller.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from answer_cache.config import CacheTimeouts, get_settings
from answer_cache.entities import (
    CacheMatch,
    NewQueryCacheEntry,
    QueryCacheEntry,
    QueryContext,
    SourceReference,
)
from answer_cache.exceptions import CircuitOpenError
from answer_cache.memory import TTLCache, build_cache_key
from answer_cache.observability import get_logger
from answer_cache.protocols import DurableStore, EmbeddingProvider, VectorIndex
from answer_cache.resilience import CircuitBreaker, with_timeout
from answer_cache.services.normalization import (
    embedding_id_for,
    generate_query_hash,
    normalize_query,
)

logger = get_logger(__name__)

T = TypeVar("T")

_PREVIEW_CHARS = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _source_filenames(sources: Iterable[str | SourceReference] | None) -> tuple[str, ...]:
    if not sources:
        return ()
    return tuple(s if isinstance(s, str) else s.filename for s in sources)


class SemanticQueryCache:
    """Two-tier (exact, then semantic) cache over generated answers.

    This service depends on PROTOCOLS, not concrete implementations:
    - DurableStore: Postgres, in-memory, ...
    - VectorIndex: Redis, in-memory, ...
    - EmbeddingProvider: Ollama, sentence-transformers, ...

    Durable store calls go through the circuit breaker; embedding and vector
    calls only through timeouts.

    Example:
        ```python
        cache = SemanticQueryCache.create(
            store=PostgresQueryStore.create(),
            embedding_provider=OllamaEmbeddingProvider.create(),
            vector_index=RedisVectorIndex.create(dimension=768),
            circuit_breaker=CircuitBreaker(settings.circuit_breaker_config()),
        )

        context = QueryContext(zone="yucatan", development="amura")
        match = await cache.find_cached_response("precio de Amura?", context)
        if match is None:
            answer, sources = await generate(...)
            await cache.save_to_cache("precio de Amura?", context, answer, sources)
        ```
    """

    def __init__(
        self,
        store: DurableStore,
        embedding_provider: EmbeddingProvider,
        vector_index: VectorIndex,
        circuit_breaker: CircuitBreaker,
        embedding_memo: TTLCache[list[float]] | None = None,
        similarity_threshold: float | None = None,
        top_k: int | None = None,
        expiry_days: int | None = None,
        namespace: str | None = None,
        timeouts: CacheTimeouts | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the query cache.

        Args:
            store: Durable store for cache entries and feedback (required).
            embedding_provider: Embedding generation service (required).
            vector_index: Nearest-neighbour index for query vectors (required).
            circuit_breaker: Breaker guarding ``store`` (required).
            embedding_memo: In-process embedding memo. Defaults to a TTLCache
                sized from settings.
            similarity_threshold: Minimum cosine similarity for a semantic hit.
            top_k: Neighbours fetched per similarity lookup.
            expiry_days: Days a saved answer stays servable.
            namespace: Vector index namespace for cache vectors.
            timeouts: Per-call network timeouts.
            now: UTC clock used for expiry timestamps.
        """
        settings = get_settings()
        self._store = store
        self._embeddings = embedding_provider
        self._index = vector_index
        self._breaker = circuit_breaker
        if embedding_memo is None:
            embedding_memo = TTLCache(
                default_ttl=settings.embedding_memo_ttl,
                max_entries=settings.embedding_memo_size,
                name="embedding-memo",
            )
        self._memo: TTLCache[list[float]] = embedding_memo
        self._threshold = (
            settings.cache_similarity_threshold
            if similarity_threshold is None
            else similarity_threshold
        )
        self._top_k = settings.cache_top_k if top_k is None else top_k
        self._expiry_days = settings.cache_expiry_days if expiry_days is None else expiry_days
        self._namespace = settings.cache_namespace if namespace is None else namespace
        self._timeouts = timeouts or settings.timeouts
        self._now = now

    @classmethod
    def create(
        cls,
        store: DurableStore,
        embedding_provider: EmbeddingProvider,
        vector_index: VectorIndex,
        circuit_breaker: CircuitBreaker,
        similarity_threshold: float | None = None,
    ) -> "SemanticQueryCache":
        """Factory method to create SemanticQueryCache with settings defaults.

        Args:
            store: Durable store (required).
            embedding_provider: Embedding provider (required).
            vector_index: Vector index (required).
            circuit_breaker: Breaker guarding the store (required).
            similarity_threshold: Override the configured threshold.

        Returns:
            Configured SemanticQueryCache instance
        """
        return cls(
            store=store,
            embedding_provider=embedding_provider,
            vector_index=vector_index,
            circuit_breaker=circuit_breaker,
            similarity_threshold=similarity_threshold,
        )

    async def find_cached_response(self, query: str, context: QueryContext) -> CacheMatch | None:
        """Look up a cached answer for a query in a context.

        Business logic:
        1. Normalize the query and hash it
        2. Exact lookup by hash in the durable store
        3. On exact miss: embed (memo first) and search the vector index
        4. Accept the best neighbour at or above the similarity threshold
        5. Refuse any hit with negative feedback against it
        6. Count the hit and return it

        Args:
            query: Raw user query
            context: Zone, development and optional document type

        Returns:
            CacheMatch with similarity 1.0 for exact hits, the vector score
            for semantic hits, or None on a miss
        """
        normalized = normalize_query(query)
        query_hash = generate_query_hash(query)
        preview = normalized[:_PREVIEW_CHARS]

        exact = await self._find_exact(query_hash, context)
        if exact is not None:
            if await self._has_negative_feedback(normalized, context):
                logger.warning("cache_suppressed", kind="exact", query=preview)
                return None

            logger.info("cache_hit", kind="exact", query=preview, entry_id=exact.id)
            return CacheMatch(entry=await self._record_hit(exact), similarity=1.0, exact=True)

        return await self._find_similar(normalized, context)

    async def save_to_cache(
        self,
        query: str,
        context: QueryContext,
        response: str,
        sources: Iterable[str | SourceReference] | None = None,
    ) -> QueryCacheEntry | None:
        """Persist a freshly generated answer.

        Business logic:
        1. Skip entirely if the query has negative feedback
        2. Embed the normalized query and upsert it into the cache namespace
           (failures here only lose the semantic path)
        3. Persist the entry with source filenames and a fixed expiry

        Args:
            query: Raw user query
            context: Zone, development and optional document type
            response: The generated answer
            sources: Ordered sources (filenames or SourceReference)

        Returns:
            The stored entry, or None if nothing was stored
        """
        normalized = normalize_query(query)
        query_hash = generate_query_hash(query)
        preview = normalized[:_PREVIEW_CHARS]

        try:
            flagged = await self._guarded(
                "has_negative_feedback",
                lambda: self._store.has_negative_feedback(normalized, context),
            )
        except Exception as e:
            self._log_store_failure("cache_save_failed", e, query=preview)
            return None

        if flagged:
            logger.warning("cache_save_skipped", reason="negative_feedback", query=preview)
            return None

        embedding_id = await self._store_embedding(normalized, query_hash, context)

        filenames = _source_filenames(sources)
        draft = NewQueryCacheEntry(
            query_text=normalized,
            query_hash=query_hash,
            zone=context.zone,
            development=context.development,
            document_type=context.document_type,
            response=response,
            sources_used=filenames,
            embedding_id=embedding_id,
            expires_at=self._now() + timedelta(days=self._expiry_days),
        )

        try:
            saved = await self._guarded("save", lambda: self._store.save(draft))
        except Exception as e:
            self._log_store_failure("cache_save_failed", e, query=preview)
            return None

        logger.info(
            "cache_saved",
            query_hash=query_hash,
            sources=len(filenames),
            embedding_id=embedding_id,
        )
        return saved

    async def cleanup_cache(self) -> int:
        """Delete expired entries from the durable store.

        Returns:
            Number of entries deleted (0 on failure)
        """
        try:
            deleted = await self._guarded("cleanup_expired", self._store.cleanup_expired)
        except Exception as e:
            self._log_store_failure("cache_cleanup_failed", e)
            return 0

        logger.info("cache_cleaned", deleted=deleted)
        return deleted

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with configuration, embedding memo stats and the
            breaker snapshot
        """
        snapshot = self._breaker.snapshot()
        breaker = asdict(snapshot)
        breaker["state"] = snapshot.state.value
        return {
            "similarity_threshold": self._threshold,
            "top_k": self._top_k,
            "expiry_days": self._expiry_days,
            "namespace": self._namespace,
            "embedding_model": self._embeddings.model_name,
            "embedding_memo": asdict(self._memo.get_stats()),
            "circuit_breaker": breaker,
        }

    async def is_healthy(self) -> bool:
        """Check whether the durable store answers through the breaker."""
        try:
            return bool(await self._guarded("ping", self._store.ping))
        except Exception as e:
            self._log_store_failure("cache_health_check_failed", e)
            return False

    @property
    def threshold(self) -> float:
        """Get current similarity threshold."""
        return self._threshold

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """Get the breaker guarding the store."""
        return self._breaker

    @property
    def embedding_memo(self) -> TTLCache[list[float]]:
        """Get the embedding memo (for testing and stats)."""
        return self._memo

    async def _find_exact(self, query_hash: str, context: QueryContext) -> QueryCacheEntry | None:
        try:
            return await self._guarded(
                "get_by_hash", lambda: self._store.get_by_hash(query_hash, context)
            )
        except Exception as e:
            # the similarity path still gets its chance
            self._log_store_failure("cache_exact_lookup_failed", e, query_hash=query_hash)
            return None

    async def _find_similar(self, normalized: str, context: QueryContext) -> CacheMatch | None:
        preview = normalized[:_PREVIEW_CHARS]

        vector = await self._embed_query(normalized, context)
        if vector is None:
            return None

        try:
            matches = await with_timeout(
                self._index.query(
                    vector=vector,
                    top_k=self._top_k,
                    filter=context.as_filter(),
                    namespace=self._namespace,
                ),
                self._timeouts.vector_query,
                "vector_query",
            )
        except Exception as e:
            logger.error("cache_vector_query_failed", error=str(e), query=preview)
            return None

        candidates = sorted(
            (m for m in matches if m.score >= self._threshold),
            key=lambda m: m.score,
            reverse=True,
        )
        if not candidates:
            logger.info("cache_miss", query=preview)
            return None
        candidate_ids = [m.id for m in candidates]

        try:
            entries = await self._guarded(
                "get_by_ids", lambda: self._store.get_by_ids(candidate_ids, context)
            )
        except Exception as e:
            self._log_store_failure("cache_similar_lookup_failed", e, embedding_ids=candidate_ids)
            return None

        # best-scoring vector whose entry lives in exactly this context
        by_id = {e.embedding_id: e for e in entries}
        best = next((m for m in candidates if m.id in by_id), None)
        if best is None:
            logger.info(
                "cache_miss", query=preview, reason="entry_not_found", embedding_ids=candidate_ids
            )
            return None
        entry = by_id[best.id]

        # feedback may have been left on either phrasing
        flagged = await self._has_negative_feedback(normalized, context)
        if not flagged and entry.query_text != normalized:
            flagged = await self._has_negative_feedback(entry.query_text, context)
        if flagged:
            logger.warning("cache_suppressed", kind="similar", query=preview, entry_id=entry.id)
            return None

        logger.info(
            "cache_hit",
            kind="similar",
            score=round(best.score, 4),
            query=preview,
            entry_id=entry.id,
        )
        return CacheMatch(entry=await self._record_hit(entry), similarity=best.score, exact=False)

    async def _embed_query(self, normalized: str, context: QueryContext) -> list[float] | None:
        key = build_cache_key(
            "embedding",
            {
                "query": normalized,
                "zone": context.zone,
                "development": context.development,
                "document_type": context.document_type,
            },
        )
        cached = self._memo.get(key)
        if cached is not None:
            logger.debug("embedding_memo_hit", query=normalized[:_PREVIEW_CHARS])
            return cached

        try:
            vector = await with_timeout(
                self._embeddings.embed(normalized), self._timeouts.embed, "embed"
            )
        except Exception as e:
            logger.error("embedding_failed", error=str(e), query=normalized[:_PREVIEW_CHARS])
            return None

        if not vector:
            logger.warning("embedding_empty", query=normalized[:_PREVIEW_CHARS])
            return None

        self._memo.set(key, vector)
        return vector

    async def _store_embedding(
        self, normalized: str, query_hash: str, context: QueryContext
    ) -> str | None:
        vector = await self._embed_query(normalized, context)
        if vector is None:
            return None

        embedding_id = embedding_id_for(query_hash, context)
        metadata: dict[str, Any] = {
            "normalized_query": normalized,
            "zone": context.zone,
            "development": context.development,
            "query_hash": query_hash,
        }
        if context.document_type:
            metadata["document_type"] = context.document_type

        try:
            await with_timeout(
                self._index.upsert(
                    id=embedding_id,
                    vector=vector,
                    metadata=metadata,
                    namespace=self._namespace,
                ),
                self._timeouts.vector_upsert,
                "vector_upsert",
            )
        except Exception as e:
            # entry stays reachable by exact hash only
            logger.error("embedding_store_failed", error=str(e), embedding_id=embedding_id)
            return None

        logger.info("embedding_stored", embedding_id=embedding_id)
        return embedding_id

    async def _has_negative_feedback(self, normalized: str, context: QueryContext) -> bool:
        try:
            return bool(
                await self._guarded(
                    "has_negative_feedback",
                    lambda: self._store.has_negative_feedback(normalized, context),
                )
            )
        except Exception as e:
            # unverifiable answers are not served
            self._log_store_failure("cache_feedback_check_failed", e)
            return True

    async def _record_hit(self, entry: QueryCacheEntry) -> QueryCacheEntry:
        try:
            await self._guarded("increment_hit", lambda: self._store.increment_hit(entry.id))
        except Exception as e:
            self._log_store_failure("cache_hit_count_failed", e, entry_id=entry.id)
            return entry
        return replace(entry, hit_count=entry.hit_count + 1, last_used_at=self._now())

    async def _guarded(self, name: str, call: Callable[[], Awaitable[T]]) -> T:
        return await self._breaker.call(
            lambda: with_timeout(call(), self._timeouts.store, name),
            operation_name=f"query_cache.{name}",
        )

    @staticmethod
    def _log_store_failure(event: str, error: Exception, **fields: Any) -> None:
        if isinstance(error, CircuitOpenError):
            logger.warning(event, reason="circuit_open", state=error.state, **fields)
        else:
            logger.error(event, error=str(error), error_type=type(error).__name__, **fields)
