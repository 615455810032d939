"""Query normalization and hashing.

Two queries that differ only by case or whitespace runs normalize to the
same text and therefore the same hash.
"""

import hashlib
import re

from answer_cache.entities import QueryContext

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Lowercase, trim and collapse whitespace runs to a single space."""
    return _WHITESPACE_RE.sub(" ", query.lower().strip())


def generate_query_hash(query: str) -> str:
    """MD5 hex digest of the normalized query (exact-match key)."""
    return hashlib.md5(normalize_query(query).encode("utf-8")).hexdigest()


def embedding_id_for(query_hash: str, context: QueryContext) -> str:
    """Stable vector id for a cached query within one context.

    The same query saved for two contexts (for example with and without a
    document type) gets two vectors, each carrying its own metadata.
    """
    scope = "\x1f".join((context.zone, context.development, context.document_type or ""))
    scope_digest = hashlib.md5(scope.encode("utf-8")).hexdigest()[:12]
    return f"cache-{query_hash}-{scope_digest}"
