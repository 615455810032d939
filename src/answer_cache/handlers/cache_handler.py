"""HTTP handlers for cache operations.

Handlers convert between DTOs (API contracts) and service calls.
They handle HTTP concerns like status codes and error responses.
"""

import time

from fastapi import HTTPException, status

from answer_cache.dto import CachedAnswer, LookupRequest, LookupResponse, SaveRequest, SaveResponse
from answer_cache.entities import QueryCacheEntry
from answer_cache.observability import bind_context, clear_context
from answer_cache.services import SemanticQueryCache


def to_cached_answer(entry: QueryCacheEntry) -> CachedAnswer:
    return CachedAnswer(
        id=entry.id,
        query_text=entry.query_text,
        response=entry.response,
        sources_used=list(entry.sources_used),
        hit_count=entry.hit_count,
        created_at=entry.created_at,
        expires_at=entry.expires_at,
    )


class CacheHandler:
    """HTTP handlers for cache lookups and saves.

    This handler delegates business logic to SemanticQueryCache. The service
    already degrades collaborator failures into misses, so a 500 here means
    a defect, not an unavailable backend.
    """

    def __init__(self, query_cache: SemanticQueryCache) -> None:
        self._cache = query_cache

    async def lookup(self, request: LookupRequest) -> LookupResponse:
        """Handle POST /cache/lookup requests."""
        bind_context(zone=request.zone, development=request.development)
        try:
            start_time = time.time()
            match = await self._cache.find_cached_response(request.query, request.to_context())
            lookup_time_ms = (time.time() - start_time) * 1000
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to look up cache: {e}",
            ) from e
        finally:
            clear_context()

        if match is None:
            return LookupResponse(is_hit=False, lookup_time_ms=lookup_time_ms)

        return LookupResponse(
            is_hit=True,
            exact=match.exact,
            similarity=match.similarity,
            answer=to_cached_answer(match.entry),
            lookup_time_ms=lookup_time_ms,
        )

    async def save(self, request: SaveRequest) -> SaveResponse:
        """Handle POST /cache/save requests."""
        bind_context(zone=request.zone, development=request.development)
        try:
            entry = await self._cache.save_to_cache(
                request.query,
                request.to_context(),
                request.response,
                [source.to_reference() for source in request.sources],
            )
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to save to cache: {e}",
            ) from e
        finally:
            clear_context()

        if entry is None:
            return SaveResponse(
                stored=False,
                message="Answer not cached (negative feedback or store unavailable)",
            )
        return SaveResponse(stored=True, answer=to_cached_answer(entry), message="Answer cached")
