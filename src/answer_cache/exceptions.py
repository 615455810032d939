"""Exception hierarchy for the answer cache.

Errors are tagged where they originate (store adapters, embedding providers,
vector indexes) so the circuit breaker can switch on the type instead of
parsing messages.
"""

from typing import Any


class AnswerCacheError(Exception):
    """Base exception for all answer cache errors."""

    code: str = "ANSWER_CACHE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(AnswerCacheError):
    """Setup defect: bad credentials, missing role or tenant, auth failure.

    Never counted by the circuit breaker.
    """

    code: str = "CONFIGURATION_ERROR"


class TransientConnectionError(AnswerCacheError):
    """Connection timed out, was reset, refused or terminated."""

    code: str = "TRANSIENT_CONNECTION_ERROR"


class OperationTimeoutError(TransientConnectionError):
    """A network call exceeded its time limit."""

    code: str = "OPERATION_TIMEOUT"

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} exceeded its time limit (timeout: {timeout}s)",
            details={"operation": operation, "timeout": timeout},
        )
        self.operation = operation
        self.timeout = timeout


class ResourceLimitError(AnswerCacheError):
    """The resource refused work because of a capacity limit (too many clients)."""

    code: str = "RESOURCE_LIMIT_EXCEEDED"


class ProviderError(AnswerCacheError):
    """Embedding provider or vector index failure."""

    code: str = "PROVIDER_ERROR"


class StoreError(AnswerCacheError):
    """Durable store failure that is neither configuration nor availability."""

    code: str = "STORE_ERROR"


class CircuitOpenError(AnswerCacheError):
    """Guarded operation rejected because the circuit is open."""

    code: str = "CIRCUIT_BREAKER_OPEN"

    def __init__(
        self,
        operation_name: str,
        state: str,
        time_since_last_failure: float | None,
    ):
        super().__init__(
            f"Circuit breaker is {state}. {operation_name} rejected. "
            "The database may be unavailable.",
            details={
                "operation_name": operation_name,
                "state": state,
                "time_since_last_failure": time_since_last_failure,
            },
        )
        self.operation_name = operation_name
        self.state = state
        self.time_since_last_failure = time_since_last_failure
