"""Dependency injection configuration for the FastAPI app.

Uses FastAPI's app.state pattern for storing service instances.

Pattern:
    - Components built once in the lifespan (or injected by tests)
    - Dependency functions retrieve handlers from request.app.state
    - One circuit breaker per store, shared by everything using that store
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request

from answer_cache.config import Settings, get_settings
from answer_cache.handlers import CacheHandler, HealthHandler
from answer_cache.memory import TTLCache
from answer_cache.observability import configure_logging, get_logger
from answer_cache.protocols import DurableStore, EmbeddingProvider, VectorIndex
from answer_cache.repositories import InMemoryQueryStore, InMemoryVectorIndex
from answer_cache.resilience import CircuitBreaker
from answer_cache.services import SemanticQueryCache

logger = get_logger(__name__)


@dataclass
class CacheComponents:
    """Everything the API needs, wired together.

    Attributes:
        query_cache: The query cache service
        store: Durable store behind the breaker
        embedding_provider: Embedding provider used by the query cache
        vector_index: Vector index used by the query cache
        circuit_breaker: Breaker guarding ``store``
        memory_caches: Named in-process caches (swept in the background)
    """

    query_cache: SemanticQueryCache
    store: DurableStore
    embedding_provider: EmbeddingProvider
    vector_index: VectorIndex
    circuit_breaker: CircuitBreaker
    memory_caches: dict[str, TTLCache[Any]] = field(default_factory=dict)


def _build_embedding_provider(settings: Settings) -> Any:
    if settings.embedding_backend == "ollama":
        from answer_cache.repositories.ollama_embedding_provider import OllamaEmbeddingProvider

        return OllamaEmbeddingProvider.create(
            model_name=settings.embedding_model,
            base_url=settings.ollama_base_url,
        )

    from answer_cache.repositories.local_embedding_provider import LocalEmbeddingProvider

    return LocalEmbeddingProvider.create(model_name=settings.embedding_model)


async def _build_store(settings: Settings) -> DurableStore:
    if settings.store_backend == "postgres":
        from answer_cache.repositories.postgres_store import PostgresQueryStore

        store = PostgresQueryStore.create(database_url=settings.database_url)
        await store.connect()
        await store.ensure_schema()
        return store

    return InMemoryQueryStore()


def _build_vector_index(settings: Settings, embedding_provider: Any) -> VectorIndex:
    if settings.vector_backend == "redis":
        from answer_cache.repositories.redis_vector_index import RedisVectorIndex

        # vectors outlive their entry by no more than the entry's own expiry
        return RedisVectorIndex.create(
            dimension=embedding_provider.dimension,
            index_name=settings.cache_index_name,
            ttl=settings.cache_expiry_days * 24 * 60 * 60,
        )

    return InMemoryVectorIndex()


async def build_query_cache(settings: Settings | None = None) -> CacheComponents:
    """Composition root: build the configured backends and the query cache.

    Args:
        settings: Settings to build from. Defaults to ``get_settings()``.

    Returns:
        Wired components; the caller owns their lifecycle
    """
    settings = settings or get_settings()

    circuit_breaker = CircuitBreaker(settings.circuit_breaker_config(), name=settings.store_backend)
    embedding_memo: TTLCache[list[float]] = TTLCache(
        default_ttl=settings.embedding_memo_ttl,
        max_entries=settings.embedding_memo_size,
        name="embedding-memo",
    )

    embedding_provider = _build_embedding_provider(settings)
    store = await _build_store(settings)
    vector_index = _build_vector_index(settings, embedding_provider)

    query_cache = SemanticQueryCache(
        store=store,
        embedding_provider=embedding_provider,
        vector_index=vector_index,
        circuit_breaker=circuit_breaker,
        embedding_memo=embedding_memo,
        similarity_threshold=settings.cache_similarity_threshold,
        top_k=settings.cache_top_k,
        expiry_days=settings.cache_expiry_days,
        namespace=settings.cache_namespace,
        timeouts=settings.timeouts,
    )

    return CacheComponents(
        query_cache=query_cache,
        store=store,
        embedding_provider=embedding_provider,
        vector_index=vector_index,
        circuit_breaker=circuit_breaker,
        memory_caches={"embedding": embedding_memo},
    )


async def close_components(components: CacheComponents) -> None:
    """Release network resources held by the components."""
    for resource in (components.store, components.embedding_provider):
        for method in ("disconnect", "close"):
            closer = getattr(resource, method, None)
            if closer is not None:
                await closer()


def get_cache_handler(request: Request) -> CacheHandler:
    """Dependency injection for CacheHandler from app.state.

    Raises:
        RuntimeError: If handler is not initialized
    """
    handler = getattr(request.app.state, "cache_handler", None)
    if handler is None:
        raise RuntimeError("CacheHandler not initialized. Check lifespan setup.")
    return handler


def get_health_handler(request: Request) -> HealthHandler:
    """Dependency injection for HealthHandler from app.state.

    Raises:
        RuntimeError: If handler is not initialized
    """
    handler = getattr(request.app.state, "health_handler", None)
    if handler is None:
        raise RuntimeError("HealthHandler not initialized. Check lifespan setup.")
    return handler


def make_lifespan(components: CacheComponents | None = None):
    """Build the lifespan context manager.

    Args:
        components: Prebuilt components (tests). If None, they are built
            from settings on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings = get_settings()
        configure_logging(settings.log_level, settings.log_format, settings.is_production)

        owned = components is None
        wired = components if components is not None else await build_query_cache(settings)

        for cache in wired.memory_caches.values():
            cache.start_sweeper(settings.memory_sweep_interval)

        app.state.components = wired
        app.state.cache_handler = CacheHandler(query_cache=wired.query_cache)
        app.state.health_handler = HealthHandler(
            query_cache=wired.query_cache,
            store=wired.store,
            circuit_breaker=wired.circuit_breaker,
            memory_caches=wired.memory_caches,
            environment=settings.environment,
            timeouts=settings.timeouts,
        )

        logger.info(
            "answer_cache_started",
            store=settings.store_backend,
            vector=settings.vector_backend,
            embedding_model=wired.embedding_provider.model_name,
            threshold=wired.query_cache.threshold,
        )

        try:
            yield
        finally:
            for cache in wired.memory_caches.values():
                cache.stop_sweeper()
            if owned:
                await close_components(wired)
            del app.state.health_handler
            del app.state.cache_handler
            del app.state.components
            logger.info("answer_cache_stopped")

    return lifespan


# Type aliases for cleaner dependency injection
CacheHandlerDep = Annotated[CacheHandler, Depends(get_cache_handler)]
HealthHandlerDep = Annotated[HealthHandler, Depends(get_health_handler)]
