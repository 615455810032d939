"""HTTP handlers for operational endpoints.

Health reporting, manual circuit breaker reset, expired-entry cleanup and
inspection/invalidation of the in-process caches.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from answer_cache.config import CacheTimeouts
from answer_cache.dto import (
    CircuitBreakerInfo,
    CleanupResponse,
    DatabaseStatus,
    HealthCheckResponse,
    MemoryCacheStats,
    MemoryInvalidateResponse,
    ResetCircuitBreakerResponse,
)
from answer_cache.memory import TTLCache
from answer_cache.observability import get_logger
from answer_cache.protocols import DurableStore
from answer_cache.resilience import CircuitBreaker, with_timeout
from answer_cache.services import SemanticQueryCache

logger = get_logger(__name__)


class HealthHandler:
    """Operational handler over the cache components.

    Args:
        query_cache: The query cache service
        store: Durable store, checked directly (outside the breaker)
        circuit_breaker: The breaker guarding ``store``
        memory_caches: Named in-process caches to report on and invalidate
        environment: Deployment environment name
        timeouts: Timeout for the store check
    """

    def __init__(
        self,
        query_cache: SemanticQueryCache,
        store: DurableStore,
        circuit_breaker: CircuitBreaker,
        memory_caches: Mapping[str, TTLCache[Any]],
        environment: str,
        timeouts: CacheTimeouts | None = None,
    ) -> None:
        self._cache = query_cache
        self._store = store
        self._breaker = circuit_breaker
        self._memory_caches = dict(memory_caches)
        self._environment = environment
        self._timeouts = timeouts or CacheTimeouts()

    async def health(self) -> HealthCheckResponse:
        """Handle GET /health requests.

        The check bypasses the breaker so it reports the database even while
        the circuit is open, and never counts toward it.
        """
        database = await self._check_database()
        snapshot = self._breaker.snapshot()
        healthy = database.status == "connected" and not snapshot.is_open

        return HealthCheckResponse(
            status="healthy" if healthy else "degraded",
            timestamp=datetime.now(timezone.utc),
            environment=self._environment,
            circuit_breaker=CircuitBreakerInfo(
                state=snapshot.state.value,
                failure_count=snapshot.failure_count,
                success_count=snapshot.success_count,
                is_open=snapshot.is_open,
                last_failure_time=snapshot.last_failure_time,
                time_since_last_failure=snapshot.time_since_last_failure,
            ),
            database=database,
            memory_caches=self.memory_stats(),
        )

    def reset_circuit_breaker(self) -> ResetCircuitBreakerResponse:
        """Handle POST /health/reset-circuit-breaker requests."""
        previous = self._breaker.reset()
        return ResetCircuitBreakerResponse(
            message="Circuit breaker reset",
            previous_state=previous.value,
            current_state=self._breaker.state.value,
            timestamp=datetime.now(timezone.utc),
        )

    async def cleanup(self) -> CleanupResponse:
        """Handle POST /cache/cleanup requests."""
        deleted = await self._cache.cleanup_cache()
        return CleanupResponse(deleted=deleted, timestamp=datetime.now(timezone.utc))

    def memory_stats(self) -> dict[str, MemoryCacheStats]:
        """Handle GET /cache/memory/stats requests."""
        result = {}
        for name, cache in self._memory_caches.items():
            stats = cache.get_stats()
            result[name] = MemoryCacheStats(
                total=stats.total, active=stats.active, expired=stats.expired
            )
        return result

    def invalidate_memory(self, pattern: str) -> MemoryInvalidateResponse:
        """Handle DELETE /cache/memory requests."""
        removed = {name: cache.invalidate(pattern) for name, cache in self._memory_caches.items()}
        logger.info("memory_cache_invalidated", pattern=pattern, removed=removed)
        return MemoryInvalidateResponse(pattern=pattern, removed=removed)

    async def _check_database(self) -> DatabaseStatus:
        try:
            await with_timeout(self._store.ping(), self._timeouts.store, "health_check")
        except Exception as e:
            logger.warning("health_database_unreachable", error=str(e))
            return DatabaseStatus(status="error", error=str(e))
        return DatabaseStatus(status="connected")
