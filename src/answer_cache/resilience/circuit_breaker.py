"""Circuit breaker guarding the durable store.

States:
    CLOSED: Normal operation, calls allowed
    OPEN: Circuit tripped, calls rejected without touching the store
    HALF_OPEN: Probing recovery, calls allowed

Pattern:
    CLOSED -> (qualifying failures >= threshold) -> OPEN
    OPEN -> (timeout since last failure) -> HALF_OPEN
    HALF_OPEN -> (2 successes) -> CLOSED
    HALF_OPEN -> (any counted failure) -> OPEN

One instance guards one connection pool. It is built at startup and passed
to whoever needs it; all state changes happen under a lock so concurrent
callers see linearizable transitions.
"""

import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from answer_cache.config import CircuitBreakerConfig
from answer_cache.exceptions import CircuitOpenError
from answer_cache.observability import get_logger
from answer_cache.resilience.classification import ErrorKind, classify_error

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    """Read-only view of the breaker for health checks."""

    state: CircuitState
    failure_count: int
    last_failure_time: float | None
    success_count: int
    is_open: bool
    time_since_last_failure: float | None


class CircuitBreaker:
    """Three-state guard with failure classification.

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerConfig.production(), name="postgres")
        >>> rows = await breaker.call(lambda: store.get_by_hash(h, ctx), "get_by_hash")
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        name: str = "postgres",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            config: Thresholds and timeouts. Defaults to the production profile.
            name: Guarded resource, used in log lines
            clock: Monotonic time source in seconds
        """
        self.config = config or CircuitBreakerConfig.production()
        self.name = name
        self._clock = clock
        self._lock = threading.RLock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._success_count = 0
        self._resource_limit_errors = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def is_circuit_open(self, allow_retry: bool = False) -> bool:
        """Check whether calls must be rejected right now.

        While OPEN, this performs the OPEN -> HALF_OPEN transition once the
        timeout has elapsed. With ``allow_retry`` (critical, latency-sensitive
        callers) an OPEN circuit lets a call through once ``retry_grace`` has
        passed since the last failure, without changing state.

        Args:
            allow_retry: Grant critical operations an extra attempt

        Returns:
            True if the call should be rejected
        """
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return False

            if self._state is CircuitState.HALF_OPEN:
                return False

            elapsed = self._elapsed_since_failure()
            if elapsed is not None and elapsed >= self.config.timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                logger.info("circuit_half_open", breaker=self.name, since_failure=round(elapsed, 3))
                return False

            if allow_retry and elapsed is not None and elapsed >= self.config.retry_grace:
                logger.info(
                    "circuit_retry_allowed",
                    breaker=self.name,
                    since_failure=round(elapsed, 3),
                )
                return False

            return True

    def record_success(self) -> None:
        """Record a successful guarded call."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.half_open_successes:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._last_failure_time = None
                    self._success_count = 0
                    logger.info("circuit_closed", breaker=self.name)
            elif self._state is CircuitState.CLOSED and self._failure_count:
                self._failure_count = 0

    def record_failure(self, error: BaseException) -> ErrorKind:
        """Classify a failed call and count it if it signals unavailability.

        Returns:
            The classification the failure received
        """
        kind = classify_error(error)
        message = str(error)[:150]

        with self._lock:
            if kind is ErrorKind.CONFIGURATION:
                logger.warning(
                    "circuit_configuration_error_ignored",
                    breaker=self.name,
                    state=self._state.value,
                    error=message,
                )
                return kind

            if kind is ErrorKind.UNCLASSIFIED:
                return kind

            if kind is ErrorKind.RESOURCE_LIMIT and self.config.resource_limit_sample_rate > 1:
                seen = self._resource_limit_errors
                self._resource_limit_errors += 1
                if seen % self.config.resource_limit_sample_rate != 0:
                    logger.debug(
                        "circuit_resource_limit_sampled_out",
                        breaker=self.name,
                        resource_limit_errors=self._resource_limit_errors,
                        failure_count=self._failure_count,
                    )
                    return kind

            self._failure_count += 1
            self._last_failure_time = self._clock()

            logger.warning(
                "circuit_failure_recorded",
                breaker=self.name,
                kind=kind.value,
                failure_count=self._failure_count,
                state=self._state.value,
                error=message[:100],
            )

            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._success_count = 0
                logger.warning("circuit_reopened", breaker=self.name)
            elif (
                self._state is CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.error(
                    "circuit_opened",
                    breaker=self.name,
                    failure_count=self._failure_count,
                    threshold=self.config.failure_threshold,
                )

        return kind

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "database operation",
        allow_retry: bool = False,
    ) -> T:
        """Run ``operation`` under the breaker.

        Args:
            operation: Zero-argument callable returning an awaitable
            operation_name: Used in the rejection message and logs
            allow_retry: See ``is_circuit_open``

        Returns:
            Whatever the operation returns

        Raises:
            CircuitOpenError: If the circuit rejects the call (operation not invoked)
            Exception: Whatever the operation raised, unchanged
        """
        if self.is_circuit_open(allow_retry):
            snapshot = self.snapshot()
            logger.error(
                "circuit_rejected",
                breaker=self.name,
                operation=operation_name,
                state=snapshot.state.value,
                allow_retry=allow_retry,
                since_failure=snapshot.time_since_last_failure,
            )
            raise CircuitOpenError(
                operation_name=operation_name,
                state=snapshot.state.value,
                time_since_last_failure=snapshot.time_since_last_failure,
            )

        try:
            result = await operation()
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result

    def snapshot(self) -> CircuitBreakerSnapshot:
        """Current state and counters. Does not trigger transitions."""
        with self._lock:
            elapsed = self._elapsed_since_failure()
            # an OPEN circuit past its timeout admits the next call
            is_open = self._state is CircuitState.OPEN and not (
                elapsed is not None and elapsed >= self.config.timeout
            )
            return CircuitBreakerSnapshot(
                state=self._state,
                failure_count=self._failure_count,
                last_failure_time=self._last_failure_time,
                success_count=self._success_count,
                is_open=is_open,
                time_since_last_failure=elapsed,
            )

    def reset(self) -> CircuitState:
        """Force the circuit CLOSED (operational recovery).

        Returns:
            The state before the reset
        """
        with self._lock:
            previous = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._success_count = 0
            self._resource_limit_errors = 0
        logger.info("circuit_reset", breaker=self.name, previous_state=previous.value)
        return previous

    def _elapsed_since_failure(self) -> float | None:
        if self._last_failure_time is None:
            return None
        return self._clock() - self._last_failure_time
