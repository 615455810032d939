"""Durable store protocol.

Defines the relational store that owns query cache entries and the user
feedback the cache consults before serving an answer.
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from answer_cache.entities import NewQueryCacheEntry, QueryCacheEntry, QueryContext


@runtime_checkable
class DurableStore(Protocol):
    """Protocol for query cache persistence.

    Implementations should raise the package's tagged errors
    (``ConfigurationError``, ``TransientConnectionError``,
    ``ResourceLimitError``, ``StoreError``) so the circuit breaker can
    classify failures without parsing messages.
    """

    async def get_by_hash(self, query_hash: str, context: QueryContext) -> QueryCacheEntry | None:
        """Return the live entry with this hash in exactly this context."""
        ...

    async def get_by_ids(
        self, embedding_ids: Sequence[str], context: QueryContext
    ) -> list[QueryCacheEntry]:
        """Return live entries in exactly this context with one of ``embedding_ids``."""
        ...

    async def save(self, entry: NewQueryCacheEntry) -> QueryCacheEntry:
        """Persist an entry, assigning its id and ``created_at``.

        If a live entry already exists for the same hash and context, that
        entry is returned unchanged. An expired one is replaced.
        """
        ...

    async def increment_hit(self, entry_id: int) -> None:
        """Bump ``hit_count`` and ``last_used_at``."""
        ...

    async def has_negative_feedback(self, query: str, context: QueryContext) -> bool:
        """Check whether negative feedback exists for a normalized query."""
        ...

    async def cleanup_expired(self) -> int:
        """Delete entries past ``expires_at``; return how many were removed."""
        ...

    async def ping(self) -> bool:
        """Run a trivial round trip; raise on failure."""
        ...
