"""Query cache entry domain entities."""

from dataclasses import dataclass, field
from datetime import datetime

from .query_context import QueryContext


@dataclass(frozen=True)
class SourceReference:
    """A document an answer was built from."""

    filename: str
    page: int | None = None
    relevance_score: float | None = None


@dataclass(frozen=True)
class NewQueryCacheEntry:
    """Answer about to be persisted; the store assigns id and timestamps."""

    query_text: str
    query_hash: str
    zone: str
    development: str
    response: str
    expires_at: datetime
    document_type: str | None = None
    sources_used: tuple[str, ...] = ()
    embedding_id: str | None = None


@dataclass(frozen=True)
class QueryCacheEntry:
    """Persisted answer for a normalized query within a context.

    Attributes:
        id: Store-assigned identifier
        query_text: The normalized query
        query_hash: Hash of the normalized query
        zone: Context zone
        development: Context development
        document_type: Optional context document type
        response: The cached answer (never changes for a given entry)
        sources_used: Ordered filenames of the sources behind the answer
        embedding_id: Id of the query vector in the cache namespace, if any
        hit_count: Times this answer has been served
        created_at: When the entry was stored
        expires_at: When the entry stops being served
        last_used_at: When the entry was last served
    """

    id: int
    query_text: str
    query_hash: str
    zone: str
    development: str
    response: str
    created_at: datetime
    expires_at: datetime | None
    document_type: str | None = None
    sources_used: tuple[str, ...] = field(default_factory=tuple)
    embedding_id: str | None = None
    hit_count: int = 0
    last_used_at: datetime | None = None

    @property
    def context(self) -> QueryContext:
        return QueryContext(self.zone, self.development, self.document_type)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now
