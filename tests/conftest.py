"""Shared fixtures and fakes for the answer cache tests."""

from datetime import datetime, timedelta, timezone

import pytest

from answer_cache.config import CacheTimeouts, CircuitBreakerConfig
from answer_cache.entities import QueryContext
from answer_cache.memory import TTLCache
from answer_cache.repositories import InMemoryQueryStore, InMemoryVectorIndex
from answer_cache.resilience import CircuitBreaker
from answer_cache.services import SemanticQueryCache

DIMENSION = 64


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """Manually advanced UTC datetime clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeEmbeddingProvider:
    """Deterministic embeddings.

    Texts registered in ``vectors`` get that vector; every other distinct
    text gets its own basis vector, so unrelated texts have similarity 0.
    """

    model_name = "fake-embedder"

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.vectors = dict(vectors or {})
        self.calls: list[str] = []
        self.error: Exception | None = None
        self._assigned: dict[str, list[float]] = {}

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.vectors:
            return list(self.vectors[text])
        if text not in self._assigned:
            vector = [0.0] * DIMENSION
            vector[len(self._assigned) % DIMENSION] = 1.0
            self._assigned[text] = vector
        return list(self._assigned[text])


def unit(*components: float) -> list[float]:
    """Vector of DIMENSION floats starting with ``components``."""
    return list(components) + [0.0] * (DIMENSION - len(components))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def utc_clock():
    return FakeUtcClock()


@pytest.fixture
def context():
    return QueryContext(zone="yucatan", development="amura")


@pytest.fixture
def store(utc_clock):
    return InMemoryQueryStore(now=utc_clock)


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def embeddings():
    return FakeEmbeddingProvider()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(CircuitBreakerConfig.production(), name="test", clock=clock)


@pytest.fixture
def memo(clock):
    return TTLCache(default_ttl=3600, max_entries=100, clock=clock, name="embedding-memo")


@pytest.fixture
def query_cache(store, embeddings, vector_index, breaker, memo, utc_clock):
    return SemanticQueryCache(
        store=store,
        embedding_provider=embeddings,
        vector_index=vector_index,
        circuit_breaker=breaker,
        embedding_memo=memo,
        similarity_threshold=0.85,
        top_k=3,
        expiry_days=30,
        namespace="cache",
        timeouts=CacheTimeouts(embed=1.0, vector_query=1.0, vector_upsert=1.0, store=1.0),
        now=utc_clock,
    )
