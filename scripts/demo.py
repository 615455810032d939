#!/usr/bin/env python3
"""
Demo script for the answer cache.

Stores a few real-estate answers, then looks up exact, rephrased and
unrelated questions, flags one answer with negative feedback and shows the
circuit breaker state. Backends come from the environment (STORE_BACKEND,
VECTOR_BACKEND, EMBEDDING_BACKEND); the defaults run fully in memory with a
local sentence-transformers model.
"""

import asyncio
import time

from answer_cache.api.dependencies import build_query_cache, close_components
from answer_cache.entities import QueryContext, SourceReference
from answer_cache.observability import configure_logging

AMURA = QueryContext(zone="yucatan", development="amura")


def print_section(title: str) -> None:
    """Print a section header."""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


async def demo_lookups(components) -> None:
    """Store answers and look them up by hash and by similarity."""
    print_section("Exact and Semantic Lookups")

    cache = components.query_cache
    qa_pairs = [
        (
            "¿Cuál es el precio de Amura?",
            "Los departamentos en Amura van desde 2.5 MDP.",
            [SourceReference("lista_precios.pdf", page=2)],
        ),
        (
            "¿Qué amenidades tiene Amura?",
            "Amura cuenta con alberca, gimnasio y casa club.",
            [SourceReference("brochure_amura.pdf", page=5)],
        ),
    ]

    print("\n📝 Storing answers...")
    for query, response, sources in qa_pairs:
        entry = await cache.save_to_cache(query, AMURA, response, sources)
        status = "✓ Stored" if entry else "✗ Not stored"
        print(f"  {status}: {query}")

    queries = [
        "¿cuál es el PRECIO de amura?",  # exact after normalization
        "¿Cuánto cuesta un departamento en Amura?",  # rephrased
        "¿Cuándo es la entrega de Kanha?",  # unrelated
    ]

    print("\n🔍 Looking up:")
    for query in queries:
        start = time.time()
        match = await cache.find_cached_response(query, AMURA)
        duration = (time.time() - start) * 1000
        print(f"\n  Query: {query}")
        if match is None:
            print(f"  ✗ MISS ({duration:.1f}ms)")
            continue
        kind = "exact" if match.exact else "semantic"
        print(f"  ✓ HIT ({kind}) - Similarity: {match.similarity:.2%} ({duration:.1f}ms)")
        print(f"  Response: {match.entry.response}")
        print(f"  Hits: {match.entry.hit_count}")


async def demo_feedback(components) -> None:
    """Show that negatively rated answers are no longer served."""
    print_section("Negative Feedback")

    record_feedback = getattr(components.store, "record_feedback", None)
    if record_feedback is None:
        print("\n  Feedback is recorded by the chat application for this store; skipped.")
        return

    query = "¿Qué amenidades tiene Amura?"
    await record_feedback(query, AMURA, 1)
    match = await components.query_cache.find_cached_response(query, AMURA)
    print(f"\n  Query: {query}")
    print("  ✓ Suppressed after a 1-star rating" if match is None else "  ✗ Still served")


def demo_stats(components) -> None:
    """Print cache configuration and breaker state."""
    print_section("Stats")

    stats = components.query_cache.get_stats()
    breaker = stats["circuit_breaker"]
    print(f"\n  Threshold: {stats['similarity_threshold']}")
    print(f"  Embedding model: {stats['embedding_model']}")
    print(f"  Embedding memo: {stats['embedding_memo']}")
    print(f"  Circuit breaker: {breaker['state']} (failures: {breaker['failure_count']})")


async def main() -> None:
    """Run all demos."""
    configure_logging("WARNING")
    print("\n🚀 Answer Cache Demo")
    print("=" * 70)

    components = await build_query_cache()
    try:
        await demo_lookups(components)
        await demo_feedback(components)
        demo_stats(components)

        print("\n" + "=" * 70)
        print("✅ Demo completed successfully!")
        print("=" * 70)
    finally:
        await close_components(components)


if __name__ == "__main__":
    asyncio.run(main())
