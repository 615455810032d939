"""Tests for SemanticQueryCache with in-memory collaborators."""

import asyncio
import math

import pytest
from conftest import FakeEmbeddingProvider, unit

from answer_cache.config import CacheTimeouts, CircuitBreakerConfig
from answer_cache.entities import NewQueryCacheEntry, QueryContext, SourceReference, VectorMatch
from answer_cache.exceptions import ProviderError, StoreError, TransientConnectionError
from answer_cache.memory import TTLCache
from answer_cache.repositories import InMemoryQueryStore, InMemoryVectorIndex
from answer_cache.resilience import CircuitBreaker, CircuitState
from answer_cache.services import (
    SemanticQueryCache,
    embedding_id_for,
    generate_query_hash,
    normalize_query,
)

AMURA_QUERY = "precio de Amura?"
AMURA_ANSWER = "Amura parte desde 2.5 MDP."


def similar(cosine: float) -> list[float]:
    """Unit vector with the given cosine to unit(1.0)."""
    return unit(cosine, math.sqrt(1.0 - cosine * cosine))


class FlakyStore(InMemoryQueryStore):
    """In-memory store whose methods can be made to fail or hang."""

    def __init__(self, now) -> None:
        super().__init__(now=now)
        self.failures: dict[str, Exception] = {}
        self.hang: set[str] = set()
        self.calls: list[str] = []

    async def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if name in self.hang:
            await asyncio.Event().wait()
        if name in self.failures:
            raise self.failures[name]

    async def get_by_hash(self, query_hash, context):
        await self._maybe_fail("get_by_hash")
        return await super().get_by_hash(query_hash, context)

    async def get_by_ids(self, embedding_ids, context):
        await self._maybe_fail("get_by_ids")
        return await super().get_by_ids(embedding_ids, context)

    async def save(self, entry):
        await self._maybe_fail("save")
        return await super().save(entry)

    async def increment_hit(self, entry_id):
        await self._maybe_fail("increment_hit")
        return await super().increment_hit(entry_id)

    async def has_negative_feedback(self, query, context):
        await self._maybe_fail("has_negative_feedback")
        return await super().has_negative_feedback(query, context)

    async def cleanup_expired(self):
        await self._maybe_fail("cleanup_expired")
        return await super().cleanup_expired()


class StaticVectorIndex:
    """Vector index returning canned matches."""

    def __init__(self, matches: list[VectorMatch]) -> None:
        self.matches = matches
        self.queries: list[dict] = []

    async def query(self, vector, top_k, filter, namespace):
        self.queries.append({"top_k": top_k, "filter": filter, "namespace": namespace})
        return list(self.matches)

    async def upsert(self, id, vector, metadata, namespace):
        return None


class FailingVectorIndex(InMemoryVectorIndex):
    async def upsert(self, id, vector, metadata, namespace):
        raise ProviderError("index unavailable")


@pytest.fixture
def flaky_store(utc_clock):
    return FlakyStore(now=utc_clock)


@pytest.fixture
def flaky_cache(flaky_store, embeddings, vector_index, breaker, memo, utc_clock):
    return SemanticQueryCache(
        store=flaky_store,
        embedding_provider=embeddings,
        vector_index=vector_index,
        circuit_breaker=breaker,
        embedding_memo=memo,
        similarity_threshold=0.85,
        top_k=3,
        expiry_days=30,
        namespace="cache",
        timeouts=CacheTimeouts(embed=1.0, vector_query=1.0, vector_upsert=1.0, store=0.05),
        now=utc_clock,
    )


class TestExactPath:
    """Hash lookups in the durable store."""

    async def test_save_then_identical_find_is_exact_hit(self, query_cache, context):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER, ["brochure.pdf"])

        match = await query_cache.find_cached_response(AMURA_QUERY, context)

        assert match is not None
        assert match.exact is True
        assert match.similarity == 1.0
        assert match.entry.response == AMURA_ANSWER
        assert match.entry.sources_used == ("brochure.pdf",)
        assert match.entry.hit_count == 1

    async def test_case_and_whitespace_variants_use_exact_path(
        self, query_cache, context, embeddings
    ):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER, ["brochure.pdf"])
        embed_calls = len(embeddings.calls)

        match = await query_cache.find_cached_response("  PRECIO   de amura? ", context)

        assert match is not None
        assert match.exact is True
        assert match.similarity == 1.0
        assert len(embeddings.calls) == embed_calls

    async def test_negative_feedback_suppresses_exact_hit(self, query_cache, store, context):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER, ["brochure.pdf"])
        await store.record_feedback(AMURA_QUERY, context, rating=1)

        match = await query_cache.find_cached_response(AMURA_QUERY, context)

        assert match is None
        assert len(store) == 1

    async def test_positive_feedback_does_not_suppress(self, query_cache, store, context):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)
        await store.record_feedback(AMURA_QUERY, context, rating=5)
        await store.record_feedback(AMURA_QUERY, context, rating=3)

        assert await query_cache.find_cached_response(AMURA_QUERY, context) is not None

    async def test_hit_count_grows_per_hit(self, query_cache, context):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)

        await query_cache.find_cached_response(AMURA_QUERY, context)
        await query_cache.find_cached_response(AMURA_QUERY, context)
        match = await query_cache.find_cached_response(AMURA_QUERY, context)

        assert match.entry.hit_count == 3

    async def test_other_development_misses(self, query_cache, context):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)

        other = QueryContext(zone="yucatan", development="kanha")
        assert await query_cache.find_cached_response(AMURA_QUERY, other) is None

    async def test_document_type_is_part_of_exact_key(self, query_cache, context):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)

        typed = QueryContext(zone="yucatan", development="amura", document_type="brochure")
        match = await query_cache.find_cached_response(AMURA_QUERY, typed)

        # the vector filter excludes the untyped entry as well
        assert match is None

    async def test_expired_entry_is_not_served(self, query_cache, context, utc_clock):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)

        utc_clock.advance(days=31)

        assert await query_cache.find_cached_response(AMURA_QUERY, context) is None


class TestSimilarityPath:
    """Embedding lookups in the vector index."""

    async def test_similar_query_above_threshold_hits(self, query_cache, embeddings, context):
        embeddings.vectors["cuanto cuesta amura"] = unit(1.0)
        embeddings.vectors["precio de amura"] = similar(0.95)
        await query_cache.save_to_cache("Cuanto cuesta Amura", context, AMURA_ANSWER)

        match = await query_cache.find_cached_response("precio de amura", context)

        assert match is not None
        assert match.exact is False
        assert match.similarity == pytest.approx(0.95, abs=1e-4)
        assert match.entry.query_text == "cuanto cuesta amura"
        assert match.entry.hit_count == 1

    async def test_similar_query_below_threshold_misses(self, query_cache, embeddings, context):
        embeddings.vectors["cuanto cuesta amura"] = unit(1.0)
        embeddings.vectors["donde esta amura"] = similar(0.8)
        await query_cache.save_to_cache("cuanto cuesta amura", context, AMURA_ANSWER)

        assert await query_cache.find_cached_response("donde esta amura", context) is None

    async def test_vector_filter_uses_context(self, query_cache, embeddings, context):
        embeddings.vectors["cuanto cuesta amura"] = unit(1.0)
        embeddings.vectors["precio de amura"] = similar(0.99)
        other = QueryContext(zone="quintana roo", development="amura")
        await query_cache.save_to_cache("cuanto cuesta amura", other, AMURA_ANSWER)

        assert await query_cache.find_cached_response("precio de amura", context) is None

    async def test_each_document_type_gets_its_own_similar_entry(
        self, query_cache, embeddings, vector_index, context
    ):
        embeddings.vectors["cuanto cuesta amura"] = unit(1.0)
        embeddings.vectors["precio de amura"] = similar(0.95)
        typed = QueryContext("yucatan", "amura", document_type="brochure")
        untyped_entry = await query_cache.save_to_cache("cuanto cuesta amura", context, "general")
        typed_entry = await query_cache.save_to_cache("cuanto cuesta amura", typed, "brochure")

        assert untyped_entry.embedding_id != typed_entry.embedding_id
        assert vector_index.count("cache") == 2

        typed_match = await query_cache.find_cached_response("precio de amura", typed)
        untyped_match = await query_cache.find_cached_response("precio de amura", context)

        assert typed_match.exact is False
        assert typed_match.entry.id == typed_entry.id
        assert typed_match.entry.response == "brochure"
        assert untyped_match.exact is False
        assert untyped_match.entry.id == untyped_entry.id
        assert untyped_match.entry.response == "general"

    async def test_best_match_wins_and_threshold_is_inclusive(
        self, store, embeddings, breaker, context, utc_clock
    ):
        for suffix in ("a", "b", "c"):
            await store.save(
                NewQueryCacheEntry(
                    query_text=f"query {suffix}",
                    query_hash=generate_query_hash(f"query {suffix}"),
                    zone=context.zone,
                    development=context.development,
                    response=f"answer {suffix}",
                    expires_at=utc_clock.now.replace(year=2030),
                    embedding_id=f"cache-{suffix}",
                )
            )
        index = StaticVectorIndex(
            [
                VectorMatch(id="cache-a", score=0.85),
                VectorMatch(id="cache-b", score=0.93),
                VectorMatch(id="cache-c", score=0.9),
            ]
        )
        cache = SemanticQueryCache(
            store=store,
            embedding_provider=embeddings,
            vector_index=index,
            circuit_breaker=breaker,
            similarity_threshold=0.85,
            top_k=3,
            namespace="cache",
            now=utc_clock,
        )

        match = await cache.find_cached_response("something new", context)

        assert match.entry.response == "answer b"
        assert match.similarity == 0.93
        assert index.queries == [
            {"top_k": 3, "filter": {"zone": "yucatan", "development": "amura"}, "namespace": "cache"}
        ]

        index.matches = [VectorMatch(id="cache-a", score=0.85)]
        match = await cache.find_cached_response("something else", context)
        assert match.entry.response == "answer a"

    async def test_negative_feedback_on_stored_phrasing_suppresses_similar_hit(
        self, query_cache, store, embeddings, context
    ):
        embeddings.vectors["cuanto cuesta amura"] = unit(1.0)
        embeddings.vectors["precio de amura"] = similar(0.95)
        await query_cache.save_to_cache("cuanto cuesta amura", context, AMURA_ANSWER)
        await store.record_feedback("Cuanto cuesta Amura", context, rating=2)

        assert await query_cache.find_cached_response("precio de amura", context) is None

    async def test_negative_feedback_on_incoming_phrasing_suppresses_similar_hit(
        self, query_cache, store, embeddings, context
    ):
        embeddings.vectors["cuanto cuesta amura"] = unit(1.0)
        embeddings.vectors["precio de amura"] = similar(0.95)
        await query_cache.save_to_cache("cuanto cuesta amura", context, AMURA_ANSWER)
        await store.record_feedback("precio de amura", context, rating=1)

        assert await query_cache.find_cached_response("precio de amura", context) is None

    async def test_embedding_is_memoized(self, query_cache, embeddings, context):
        await query_cache.find_cached_response("hola amura", context)
        await query_cache.find_cached_response("Hola  Amura", context)

        assert embeddings.calls == ["hola amura"]

    async def test_memo_key_includes_context(self, query_cache, embeddings, context):
        await query_cache.find_cached_response("hola amura", context)
        await query_cache.find_cached_response("hola amura", QueryContext("yucatan", "kanha"))

        assert embeddings.calls == ["hola amura", "hola amura"]

    async def test_memo_never_exceeds_capacity(self, query_cache, context):
        for i in range(105):
            await query_cache.find_cached_response(f"pregunta numero {i}", context)

        assert len(query_cache.embedding_memo) == 100

    async def test_empty_embedding_is_a_miss(self, query_cache, embeddings, context):
        embeddings.vectors["vacio"] = []

        assert await query_cache.find_cached_response("vacio", context) is None
        assert len(query_cache.embedding_memo) == 0


class TestSave:
    """Persisting answers."""

    async def test_save_persists_normalized_entry(
        self, query_cache, vector_index, context, utc_clock
    ):
        entry = await query_cache.save_to_cache(
            AMURA_QUERY,
            context,
            AMURA_ANSWER,
            [SourceReference("brochure.pdf", page=2), "precios.pdf"],
        )

        query_hash = generate_query_hash(AMURA_QUERY)
        assert entry.query_text == normalize_query(AMURA_QUERY)
        assert entry.query_hash == query_hash
        assert entry.sources_used == ("brochure.pdf", "precios.pdf")
        assert entry.embedding_id == embedding_id_for(query_hash, context)
        assert entry.hit_count == 0
        assert (entry.expires_at - utc_clock.now).days == 30
        assert vector_index.count("cache") == 1

    async def test_vector_metadata_describes_entry(self, query_cache, vector_index, embeddings):
        typed = QueryContext("yucatan", "amura", document_type="brochure")
        await query_cache.save_to_cache(AMURA_QUERY, typed, AMURA_ANSWER)

        vector = await embeddings.embed(normalize_query(AMURA_QUERY))
        [match] = await vector_index.query(vector, 1, typed.as_filter(), "cache")

        assert match.metadata == {
            "normalized_query": "precio de amura?",
            "zone": "yucatan",
            "development": "amura",
            "document_type": "brochure",
            "query_hash": generate_query_hash(AMURA_QUERY),
        }

    async def test_second_save_keeps_first_answer(self, query_cache, store, context):
        first = await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)
        second = await query_cache.save_to_cache(AMURA_QUERY.upper(), context, "otra respuesta")

        assert second.id == first.id
        assert second.response == AMURA_ANSWER
        assert len(store) == 1

    async def test_save_over_expired_entry_stores_new_answer(
        self, query_cache, store, context, utc_clock
    ):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)
        utc_clock.advance(days=31)

        saved = await query_cache.save_to_cache(AMURA_QUERY, context, "Amura parte desde 3 MDP.")

        assert saved.response == "Amura parte desde 3 MDP."
        assert saved.hit_count == 0
        assert (saved.expires_at - utc_clock.now).days == 30
        assert len(store) == 1
        match = await query_cache.find_cached_response(AMURA_QUERY, context)
        assert match.exact is True
        assert match.entry.response == "Amura parte desde 3 MDP."

    async def test_negative_feedback_blocks_save(self, query_cache, store, embeddings, context):
        await store.record_feedback(AMURA_QUERY, context, rating=1)

        assert await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER) is None
        assert len(store) == 0
        assert embeddings.calls == []

    async def test_embedding_failure_keeps_exact_path(self, query_cache, embeddings, vector_index, context):
        embeddings.error = ProviderError("embedding service down")

        entry = await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)

        assert entry is not None
        assert entry.embedding_id is None
        assert vector_index.count("cache") == 0
        match = await query_cache.find_cached_response(AMURA_QUERY, context)
        assert match.exact is True

    async def test_upsert_failure_leaves_embedding_id_empty(
        self, store, embeddings, breaker, context, utc_clock
    ):
        cache = SemanticQueryCache(
            store=store,
            embedding_provider=embeddings,
            vector_index=FailingVectorIndex(),
            circuit_breaker=breaker,
            now=utc_clock,
        )

        entry = await cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)

        assert entry.embedding_id is None

    async def test_store_failure_returns_none(self, flaky_cache, flaky_store, context):
        flaky_store.failures["save"] = StoreError("disk full")

        assert await flaky_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER) is None

    async def test_feedback_check_failure_blocks_save(self, flaky_cache, flaky_store, context):
        flaky_store.failures["has_negative_feedback"] = TransientConnectionError("reset")

        assert await flaky_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER) is None
        assert len(flaky_store) == 0


class TestDegradation:
    """Collaborator failures turn into misses, never exceptions."""

    async def test_exact_lookup_failure_still_tries_similarity(
        self, flaky_cache, flaky_store, embeddings, context
    ):
        embeddings.vectors["cuanto cuesta amura"] = unit(1.0)
        await flaky_cache.save_to_cache("cuanto cuesta amura", context, AMURA_ANSWER)
        flaky_store.failures["get_by_hash"] = TransientConnectionError("connection reset")

        match = await flaky_cache.find_cached_response("cuanto cuesta amura", context)

        assert match is not None
        assert match.exact is False
        assert match.similarity == pytest.approx(1.0, abs=1e-4)

    async def test_feedback_check_failure_is_a_miss(self, flaky_cache, flaky_store, context):
        await flaky_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)
        flaky_store.failures["has_negative_feedback"] = TransientConnectionError("reset")

        assert await flaky_cache.find_cached_response(AMURA_QUERY, context) is None

    async def test_hit_count_failure_keeps_the_hit(self, flaky_cache, flaky_store, context):
        await flaky_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)
        flaky_store.failures["increment_hit"] = StoreError("deadlock")

        match = await flaky_cache.find_cached_response(AMURA_QUERY, context)

        assert match is not None
        assert match.entry.hit_count == 0

    async def test_embedding_failure_on_lookup_is_a_miss(self, query_cache, embeddings, context):
        embeddings.error = ProviderError("boom")

        assert await query_cache.find_cached_response("anything", context) is None

    async def test_store_timeout_counts_toward_breaker(
        self, flaky_cache, flaky_store, breaker, context
    ):
        flaky_store.hang.add("get_by_hash")

        assert await flaky_cache.find_cached_response(AMURA_QUERY, context) is None
        assert breaker.snapshot().failure_count == 1

    async def test_open_circuit_skips_store(
        self, flaky_cache, flaky_store, breaker, embeddings, context
    ):
        for _ in range(breaker.config.failure_threshold):
            breaker.record_failure(TransientConnectionError("connection terminated"))
        assert breaker.state is CircuitState.OPEN

        assert await flaky_cache.find_cached_response(AMURA_QUERY, context) is None
        assert await flaky_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER) is None
        assert flaky_store.calls == []

    async def test_configuration_errors_do_not_open_circuit(
        self, flaky_cache, flaky_store, breaker, context
    ):
        from answer_cache.exceptions import ConfigurationError

        flaky_store.failures["get_by_hash"] = ConfigurationError("password authentication failed")
        for _ in range(10):
            await flaky_cache.find_cached_response(AMURA_QUERY, context)

        assert breaker.state is CircuitState.CLOSED
        assert breaker.snapshot().failure_count == 0

    async def test_cancellation_propagates(self, flaky_cache, flaky_store, breaker, context):
        flaky_store.hang.add("get_by_hash")
        flaky_cache._timeouts = CacheTimeouts(store=30.0)

        task = asyncio.create_task(flaky_cache.find_cached_response(AMURA_QUERY, context))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert breaker.snapshot().failure_count == 0


class TestMaintenance:
    """Cleanup, stats and health."""

    async def test_cleanup_removes_expired_entries(self, query_cache, store, context, utc_clock):
        await query_cache.save_to_cache(AMURA_QUERY, context, AMURA_ANSWER)
        utc_clock.advance(days=31)
        await query_cache.save_to_cache("otra pregunta", context, "otra respuesta")

        assert await query_cache.cleanup_cache() == 1
        assert len(store) == 1

    async def test_cleanup_failure_returns_zero(self, flaky_cache, flaky_store):
        flaky_store.failures["cleanup_expired"] = StoreError("boom")

        assert await flaky_cache.cleanup_cache() == 0

    async def test_stats(self, query_cache, context):
        await query_cache.find_cached_response("hola", context)

        stats = query_cache.get_stats()

        assert stats["similarity_threshold"] == 0.85
        assert stats["namespace"] == "cache"
        assert stats["embedding_model"] == "fake-embedder"
        assert stats["embedding_memo"]["total"] == 1
        assert stats["circuit_breaker"]["state"] == "CLOSED"

    def test_falsy_overrides_are_kept(self, store, embeddings, vector_index, breaker):
        cache = SemanticQueryCache(
            store=store,
            embedding_provider=embeddings,
            vector_index=vector_index,
            circuit_breaker=breaker,
            similarity_threshold=0.0,
            top_k=0,
            expiry_days=0,
            namespace="",
        )

        stats = cache.get_stats()

        assert cache.threshold == 0.0
        assert stats["similarity_threshold"] == 0.0
        assert stats["top_k"] == 0
        assert stats["expiry_days"] == 0
        assert stats["namespace"] == ""

    async def test_is_healthy(self, query_cache):
        assert await query_cache.is_healthy() is True

    async def test_default_memo_is_built_from_settings(self, store, embeddings, vector_index):
        cache = SemanticQueryCache(
            store=store,
            embedding_provider=embeddings,
            vector_index=vector_index,
            circuit_breaker=CircuitBreaker(CircuitBreakerConfig.production()),
        )

        assert isinstance(cache.embedding_memo, TTLCache)
        assert cache.embedding_memo.max_entries == 100
        assert cache.threshold == 0.85


def test_fake_provider_gives_unrelated_texts_orthogonal_vectors():
    provider = FakeEmbeddingProvider()
    a = asyncio.run(provider.embed("uno"))
    b = asyncio.run(provider.embed("dos"))

    assert sum(x * y for x, y in zip(a, b)) == 0.0
