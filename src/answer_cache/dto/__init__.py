"""Data Transfer Objects for API contracts.

These Pydantic models define the external API contract.
Internal domain logic should use entities from the entities package.
"""

from .requests import ContextFields, LookupRequest, SaveRequest, SourceItem
from .responses import (
    CachedAnswer,
    CircuitBreakerInfo,
    CleanupResponse,
    DatabaseStatus,
    HealthCheckResponse,
    LookupResponse,
    MemoryCacheStats,
    MemoryInvalidateResponse,
    ResetCircuitBreakerResponse,
    SaveResponse,
)

__all__ = [
    "ContextFields",
    "LookupRequest",
    "SaveRequest",
    "SourceItem",
    "CachedAnswer",
    "CircuitBreakerInfo",
    "CleanupResponse",
    "DatabaseStatus",
    "HealthCheckResponse",
    "LookupResponse",
    "MemoryCacheStats",
    "MemoryInvalidateResponse",
    "ResetCircuitBreakerResponse",
    "SaveResponse",
]
