import os
from dataclasses import dataclass, field
from functools import lru_cache

import redis
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Tuning for the circuit breaker guarding the durable store.

    Attributes:
        failure_threshold: Qualifying failures before the circuit opens
        timeout: Seconds the circuit stays OPEN before probing (HALF_OPEN)
        retry_grace: Seconds since the last failure before ``allow_retry``
            callers get an extra attempt while OPEN
        half_open_successes: Successes in HALF_OPEN needed to close again
        resource_limit_sample_rate: Count one in N resource-limit errors
    """

    failure_threshold: int = 5
    timeout: float = 15.0
    retry_grace: float = 5.0
    half_open_successes: int = 2
    resource_limit_sample_rate: int = 1

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.half_open_successes < 1:
            raise ValueError("half_open_successes must be at least 1")
        if self.resource_limit_sample_rate < 1:
            raise ValueError("resource_limit_sample_rate must be at least 1")
        if self.timeout <= 0 or self.retry_grace < 0:
            raise ValueError("circuit breaker timeouts must be positive")

    @classmethod
    def production(cls) -> "CircuitBreakerConfig":
        """Strict profile: trip quickly, count every resource-limit error."""
        return cls(failure_threshold=5, resource_limit_sample_rate=1)

    @classmethod
    def local(cls) -> "CircuitBreakerConfig":
        """Tolerant profile for interactive use.

        Local databases see ordinary connection-limit churn while browsing,
        so the threshold is higher and only 1 in 3 resource-limit errors count.
        """
        return cls(failure_threshold=15, resource_limit_sample_rate=3)

    @classmethod
    def for_environment(cls, is_production: bool) -> "CircuitBreakerConfig":
        return cls.production() if is_production else cls.local()


@dataclass(frozen=True)
class CacheTimeouts:
    """Per-call timeouts (seconds) for network I/O issued by the query cache."""

    embed: float = 30.0
    vector_query: float = 15.0
    vector_upsert: float = 30.0
    store: float = 10.0


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str | None = os.getenv("LOG_FORMAT")

    # Durable store
    store_backend: str = os.getenv("STORE_BACKEND", "memory")
    database_url: str | None = os.getenv("DATABASE_URL")

    # Vector index
    vector_backend: str = os.getenv("VECTOR_BACKEND", "memory")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    redis_password: str | None = os.getenv("REDIS_PASSWORD")
    cache_index_name: str = os.getenv("CACHE_INDEX_NAME", "answer_cache")

    # Query cache
    cache_similarity_threshold: float = float(os.getenv("CACHE_SIMILARITY_THRESHOLD", "0.85"))
    cache_expiry_days: int = int(os.getenv("CACHE_EXPIRY_DAYS", "30"))
    cache_namespace: str = os.getenv("CACHE_NAMESPACE", "cache")
    cache_top_k: int = int(os.getenv("CACHE_TOP_K", "3"))

    # Embedding memo (in-process)
    embedding_memo_ttl: float = float(os.getenv("EMBEDDING_MEMO_TTL", "3600"))
    embedding_memo_size: int = int(os.getenv("EMBEDDING_MEMO_SIZE", "100"))

    # Embedding
    embedding_backend: str = os.getenv("EMBEDDING_BACKEND", "local")
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "paraphrase-multilingual-MiniLM-L12-v2")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")

    # Memory cache sweep
    memory_sweep_interval: float = float(os.getenv("MEMORY_SWEEP_INTERVAL", "900"))

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    timeouts: CacheTimeouts = field(default_factory=CacheTimeouts)

    @property
    def is_production(self) -> bool:
        """Check whether the process runs with production tuning."""
        return self.environment.lower() == "production"

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        """Pick the breaker profile matching the environment."""
        return CircuitBreakerConfig.for_environment(self.is_production)

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if not 0 < self.cache_similarity_threshold <= 1:
            raise ValueError("CACHE_SIMILARITY_THRESHOLD must be in (0, 1] for cosine similarity")

        if self.cache_expiry_days < 1:
            raise ValueError("CACHE_EXPIRY_DAYS must be at least 1")

        if self.cache_top_k < 1:
            raise ValueError("CACHE_TOP_K must be at least 1")

        if self.embedding_memo_size < 1 or self.embedding_memo_ttl <= 0:
            raise ValueError("EMBEDDING_MEMO_SIZE and EMBEDDING_MEMO_TTL must be positive")

        if self.store_backend not in ("memory", "postgres"):
            raise ValueError(f"STORE_BACKEND must be 'memory' or 'postgres', got {self.store_backend!r}")

        if self.embedding_backend not in ("local", "ollama"):
            raise ValueError(f"EMBEDDING_BACKEND must be 'local' or 'ollama', got {self.embedding_backend!r}")

        if self.vector_backend not in ("memory", "redis"):
            raise ValueError(f"VECTOR_BACKEND must be 'memory' or 'redis', got {self.vector_backend!r}")

        if self.store_backend == "postgres" and not self.database_url:
            raise ValueError("DATABASE_URL is required when STORE_BACKEND=postgres")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_redis_client() -> redis.Redis:
    """Create a Redis client instance."""
    settings = get_settings()
    return redis.from_url(
        settings.redis_url,
        password=settings.redis_password,
        decode_responses=False,
    )
