"""Failure isolation: circuit breaker, error classification, timeouts."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerSnapshot, CircuitState
from .classification import ErrorKind, classify_error
from .timeouts import with_timeout

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerSnapshot",
    "CircuitState",
    "ErrorKind",
    "classify_error",
    "with_timeout",
]
