"""Answer Cache - semantic caching of generated answers with a protected store.

This package provides a layered architecture for caching RAG answers:

Layers:
    - protocols: Interface contracts (DurableStore, VectorIndex, EmbeddingProvider)
    - repositories: Data access implementations
    - services: Business logic (SemanticQueryCache)
    - memory: In-process TTL cache
    - resilience: Circuit breaker, error classification, timeouts
    - handlers: HTTP endpoint handlers
    - dto: Data transfer objects (API contracts)
    - entities: Domain models (internal)

Usage:
    ```python
    from answer_cache import (
        CircuitBreaker,
        InMemoryQueryStore,
        InMemoryVectorIndex,
        QueryContext,
        SemanticQueryCache,
        get_settings,
    )

    cache = SemanticQueryCache.create(
        store=InMemoryQueryStore(),
        embedding_provider=provider,
        vector_index=InMemoryVectorIndex(),
        circuit_breaker=CircuitBreaker(get_settings().circuit_breaker_config()),
    )
    match = await cache.find_cached_response("precio de amura", QueryContext("yucatan", "amura"))
    ```

For HTTP API:
    ```python
    from answer_cache.api.app import app
    ```
"""

from answer_cache.config import CacheTimeouts, CircuitBreakerConfig, Settings, get_settings
from answer_cache.entities import (
    CacheMatch,
    NewQueryCacheEntry,
    QueryCacheEntry,
    QueryContext,
    SourceReference,
    VectorMatch,
)
from answer_cache.exceptions import (
    AnswerCacheError,
    CircuitOpenError,
    ConfigurationError,
    OperationTimeoutError,
    ProviderError,
    ResourceLimitError,
    StoreError,
    TransientConnectionError,
)
from answer_cache.memory import CacheTTL, TTLCache, build_cache_key
from answer_cache.protocols import DurableStore, EmbeddingProvider, VectorIndex
from answer_cache.repositories import InMemoryQueryStore, InMemoryVectorIndex
from answer_cache.resilience import CircuitBreaker, CircuitState, ErrorKind, classify_error
from answer_cache.services import SemanticQueryCache, generate_query_hash, normalize_query

__all__ = [
    # Configuration
    "CacheTimeouts",
    "CircuitBreakerConfig",
    "Settings",
    "get_settings",
    # Protocols (interfaces)
    "DurableStore",
    "EmbeddingProvider",
    "VectorIndex",
    # Services (business logic)
    "SemanticQueryCache",
    "generate_query_hash",
    "normalize_query",
    # In-process cache
    "CacheTTL",
    "TTLCache",
    "build_cache_key",
    # Resilience
    "CircuitBreaker",
    "CircuitState",
    "ErrorKind",
    "classify_error",
    # Repositories (data access)
    "InMemoryQueryStore",
    "InMemoryVectorIndex",
    # Entities (domain models)
    "CacheMatch",
    "NewQueryCacheEntry",
    "QueryCacheEntry",
    "QueryContext",
    "SourceReference",
    "VectorMatch",
    # Errors
    "AnswerCacheError",
    "CircuitOpenError",
    "ConfigurationError",
    "OperationTimeoutError",
    "ProviderError",
    "ResourceLimitError",
    "StoreError",
    "TransientConnectionError",
]
