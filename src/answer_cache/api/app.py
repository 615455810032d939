"""FastAPI application for the answer cache.

Exposes cache lookups and saves plus the operational surface: health,
manual circuit breaker reset, expired-entry cleanup and in-process cache
inspection.
"""

from typing import Any

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from answer_cache.api.dependencies import (
    CacheComponents,
    CacheHandlerDep,
    HealthHandlerDep,
    make_lifespan,
)
from answer_cache.config import get_settings
from answer_cache.dto import (
    CleanupResponse,
    HealthCheckResponse,
    LookupRequest,
    LookupResponse,
    MemoryCacheStats,
    MemoryInvalidateResponse,
    ResetCircuitBreakerResponse,
    SaveRequest,
    SaveResponse,
)

API_NAME = "Answer Cache API"
API_VERSION = "0.1.0"


def create_app(components: CacheComponents | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        components: Prebuilt components to serve. If None, the lifespan
            builds them from settings.
    """
    app = FastAPI(
        title=API_NAME,
        description="Semantic answer cache with a circuit-breaker-protected store",
        version=API_VERSION,
        lifespan=make_lifespan(components),
    )

    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": API_NAME,
            "version": API_VERSION,
            "endpoints": {
                "lookup": "/cache/lookup",
                "save": "/cache/save",
                "health": "/health",
                "docs": "/docs",
            },
        }

    @app.post("/cache/lookup", response_model=LookupResponse)
    async def lookup(request: LookupRequest, handler: CacheHandlerDep) -> LookupResponse:
        """Look up a cached answer by exact hash, then by similarity."""
        return await handler.lookup(request)

    @app.post("/cache/save", response_model=SaveResponse)
    async def save(request: SaveRequest, handler: CacheHandlerDep) -> SaveResponse:
        """Store a freshly generated answer."""
        return await handler.save(request)

    @app.get("/health", response_model=HealthCheckResponse)
    async def health(handler: HealthHandlerDep) -> HealthCheckResponse:
        """Breaker snapshot, database check and in-process cache stats."""
        return await handler.health()

    @app.post("/health/reset-circuit-breaker", response_model=ResetCircuitBreakerResponse)
    async def reset_circuit_breaker(handler: HealthHandlerDep) -> ResetCircuitBreakerResponse:
        """Force the circuit breaker CLOSED."""
        return handler.reset_circuit_breaker()

    @app.post("/cache/cleanup", response_model=CleanupResponse)
    async def cleanup(handler: HealthHandlerDep) -> CleanupResponse:
        """Delete expired cache entries from the store."""
        return await handler.cleanup()

    @app.get("/cache/memory/stats", response_model=dict[str, MemoryCacheStats])
    async def memory_stats(handler: HealthHandlerDep) -> dict[str, MemoryCacheStats]:
        """Entry counts of the in-process caches."""
        return handler.memory_stats()

    @app.delete("/cache/memory", response_model=MemoryInvalidateResponse)
    async def invalidate_memory(
        handler: HealthHandlerDep,
        pattern: str = Query("*", min_length=1, description="Key pattern; '*' is a wildcard"),
    ) -> MemoryInvalidateResponse:
        """Invalidate in-process cache entries matching a pattern."""
        return handler.invalidate_memory(pattern)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "answer_cache.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
    )
