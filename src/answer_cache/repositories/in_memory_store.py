"""In-memory implementation of DurableStore.

Used by the test suite and for local runs without Postgres. Semantics match
the Postgres store: one entry per (hash, zone, development, document_type),
expired entries are invisible to reads, and feedback ratings of 1-2 count
as negative.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from answer_cache.entities import NewQueryCacheEntry, QueryCacheEntry, QueryContext
from answer_cache.services.normalization import normalize_query

NEGATIVE_RATING_MAX = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _Feedback:
    query: str
    zone: str
    development: str
    rating: int


class InMemoryQueryStore:
    """Dict-backed store satisfying the DurableStore protocol.

    This class satisfies the DurableStore protocol through structural
    typing - no explicit inheritance needed.
    """

    def __init__(self, now: Callable[[], datetime] = _utcnow) -> None:
        self._now = now
        self._lock = asyncio.Lock()
        self._entries: dict[int, QueryCacheEntry] = {}
        self._feedback: list[_Feedback] = []
        self._next_id = 1

    async def get_by_hash(self, query_hash: str, context: QueryContext) -> QueryCacheEntry | None:
        now = self._now()
        async with self._lock:
            for entry in self._entries.values():
                if (
                    entry.query_hash == query_hash
                    and entry.context == context
                    and not entry.is_expired(now)
                ):
                    return entry
        return None

    async def get_by_ids(
        self, embedding_ids: Sequence[str], context: QueryContext
    ) -> list[QueryCacheEntry]:
        if not embedding_ids:
            return []

        wanted = set(embedding_ids)
        now = self._now()
        async with self._lock:
            found = [
                entry
                for entry in self._entries.values()
                if entry.embedding_id in wanted
                and entry.zone == context.zone
                and entry.development == context.development
                and entry.document_type == context.document_type
                and not entry.is_expired(now)
            ]
        return sorted(found, key=lambda e: e.hit_count, reverse=True)

    async def save(self, entry: NewQueryCacheEntry) -> QueryCacheEntry:
        context = QueryContext(entry.zone, entry.development, entry.document_type)
        async with self._lock:
            now = self._now()
            entry_id = self._next_id
            for existing in self._entries.values():
                if existing.query_hash == entry.query_hash and existing.context == context:
                    if not existing.is_expired(now):
                        return existing
                    # expired but not yet cleaned up: the new answer takes the row
                    entry_id = existing.id
                    break

            stored = QueryCacheEntry(
                id=entry_id,
                query_text=entry.query_text,
                query_hash=entry.query_hash,
                zone=entry.zone,
                development=entry.development,
                document_type=entry.document_type,
                response=entry.response,
                sources_used=tuple(entry.sources_used),
                embedding_id=entry.embedding_id,
                hit_count=0,
                created_at=now,
                expires_at=entry.expires_at,
                last_used_at=now,
            )
            self._entries[stored.id] = stored
            if entry_id == self._next_id:
                self._next_id += 1
            return stored

    async def increment_hit(self, entry_id: int) -> None:
        async with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                return
            self._entries[entry_id] = replace(
                entry, hit_count=entry.hit_count + 1, last_used_at=self._now()
            )

    async def has_negative_feedback(self, query: str, context: QueryContext) -> bool:
        normalized = normalize_query(query)
        async with self._lock:
            return any(
                f.query == normalized
                and f.zone == context.zone
                and f.development == context.development
                and f.rating <= NEGATIVE_RATING_MAX
                for f in self._feedback
            )

    async def record_feedback(self, query: str, context: QueryContext, rating: int) -> None:
        """Record a 1-5 user rating for an answered query."""
        if not 1 <= rating <= 5:
            raise ValueError(f"rating must be between 1 and 5, got {rating}")
        async with self._lock:
            self._feedback.append(
                _Feedback(normalize_query(query), context.zone, context.development, rating)
            )

    async def cleanup_expired(self) -> int:
        now = self._now()
        async with self._lock:
            expired = [
                entry_id
                for entry_id, entry in self._entries.items()
                if entry.expires_at is not None and entry.expires_at < now
            ]
            for entry_id in expired:
                del self._entries[entry_id]
        return len(expired)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._entries)
