"""Response DTOs for API endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class CachedAnswer(BaseModel):
    """A cached answer as served to clients."""

    id: int
    query_text: str = Field(..., description="The normalized query the answer was stored for")
    response: str
    sources_used: list[str] = Field(default_factory=list)
    hit_count: int = Field(..., ge=0)
    created_at: datetime
    expires_at: datetime | None = None


class LookupResponse(BaseModel):
    """Response DTO for a cache lookup."""

    is_hit: bool = Field(..., description="Whether a cached answer was found")
    exact: bool | None = Field(None, description="True for hash hits, False for semantic hits")
    similarity: float | None = Field(
        None,
        description="Cosine similarity (1 = identical); 1.0 for exact hits",
        le=1.0,
    )
    answer: CachedAnswer | None = None
    lookup_time_ms: float = Field(..., description="Time taken for the lookup in milliseconds")


class SaveResponse(BaseModel):
    """Response DTO for storing an answer."""

    stored: bool = Field(..., description="Whether the answer is in the cache")
    answer: CachedAnswer | None = None
    message: str


class CircuitBreakerInfo(BaseModel):
    """Circuit breaker snapshot."""

    state: str = Field(..., description="CLOSED, OPEN or HALF_OPEN")
    failure_count: int = Field(..., ge=0)
    success_count: int = Field(..., ge=0)
    is_open: bool
    last_failure_time: float | None = None
    time_since_last_failure: float | None = Field(
        None, description="Seconds since the last counted failure"
    )


class DatabaseStatus(BaseModel):
    """Result of a trivial store round trip."""

    status: str = Field(..., description="'connected' or 'error'")
    error: str | None = None


class MemoryCacheStats(BaseModel):
    """Entry counts of one in-process cache."""

    total: int = Field(..., ge=0)
    active: int = Field(..., ge=0)
    expired: int = Field(..., ge=0)


class HealthCheckResponse(BaseModel):
    """Response DTO for health check."""

    status: str = Field(..., description="'healthy' or 'degraded'")
    timestamp: datetime
    environment: str
    circuit_breaker: CircuitBreakerInfo
    database: DatabaseStatus
    memory_caches: dict[str, MemoryCacheStats] = Field(default_factory=dict)


class ResetCircuitBreakerResponse(BaseModel):
    """Response DTO for a manual breaker reset."""

    message: str
    previous_state: str
    current_state: str
    timestamp: datetime


class CleanupResponse(BaseModel):
    """Response DTO for expired-entry cleanup."""

    deleted: int = Field(..., ge=0)
    timestamp: datetime


class MemoryInvalidateResponse(BaseModel):
    """Response DTO for wildcard invalidation of the in-process caches."""

    pattern: str
    removed: dict[str, int] = Field(..., description="Removed entries per cache")
