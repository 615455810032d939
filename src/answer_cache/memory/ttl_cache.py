"""In-process TTL cache with wildcard invalidation.

Used for embedding memoization by the query cache and for read-heavy
lookups (documents, developments, stats, config) elsewhere in the system.
Expired entries are evicted lazily on ``get`` and in bulk by ``cleanup``,
which a background sweeper can run on a fixed interval.
"""

import re
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from answer_cache.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CacheTTL:
    """Expiry presets in seconds for common lookups."""

    DOCUMENTS = 5 * 60  # documents change occasionally
    DEVELOPMENTS = 10 * 60
    STATS = 2 * 60
    CONFIG = 30 * 60
    DEFAULT = 5 * 60


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Single cache entry. ``expires_at > timestamp`` always holds."""

    data: T
    timestamp: float
    expires_at: float


@dataclass(frozen=True)
class CacheStats:
    """Observability snapshot of a TTLCache."""

    total: int
    active: int
    expired: int


def build_cache_key(prefix: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a deterministic cache key from a prefix and parameters.

    ``None`` and empty-string values are dropped and the remaining keys are
    sorted, so logically identical parameter sets always produce the same key
    regardless of call-site ordering.

    Example:
        >>> build_cache_key("documents", {"zone": "yucatan", "page": 2, "q": None})
        'documents:page=2&zone=yucatan'
    """
    if not params:
        return prefix

    pairs = "&".join(
        f"{name}={params[name]}"
        for name in sorted(params)
        if params[name] is not None and params[name] != ""
    )
    return f"{prefix}:{pairs}" if pairs else prefix


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    # '*' matches any run of characters; everything else is literal
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


class TTLCache(Generic[T]):
    """Thread-safe keyed cache with per-entry expiry.

    Attributes:
        name: Scope used in log lines
        default_ttl: TTL in seconds applied when ``set`` gets none
        max_entries: Optional capacity; the oldest write is evicted first

    Example:
        >>> cache: TTLCache[list[float]] = TTLCache(default_ttl=3600, max_entries=100)
        >>> cache.set("embedding:query=hola", [0.1, 0.2])
        >>> cache.get("embedding:query=hola")
        [0.1, 0.2]
    """

    def __init__(
        self,
        default_ttl: float = CacheTTL.DEFAULT,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.time,
        name: str = "memory-cache",
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.name = name
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        # dict order is write order: set() re-inserts overwritten keys at the end
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.RLock()
        self._sweeper: threading.Thread | None = None
        self._stop_sweeper = threading.Event()

    def get(self, key: str) -> T | None:
        """Return the value if present and not expired, else None.

        An expired entry is deleted as a side effect.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None

            return entry.data

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        """Store a value, overwriting any existing entry.

        Args:
            key: Cache key
            value: Value to store
            ttl: Seconds to live. ``None`` or non-positive uses the default.
        """
        ttl = ttl if ttl is not None and ttl > 0 else self.default_ttl

        with self._lock:
            now = self._clock()
            if self._entries.pop(key, None) is None and self.max_entries is not None:
                while len(self._entries) >= self.max_entries:
                    oldest_key = next(iter(self._entries))
                    del self._entries[oldest_key]
                    logger.debug("cache_evicted", cache=self.name, key=oldest_key)

            self._entries[key] = CacheEntry(data=value, timestamp=now, expires_at=now + ttl)

    def time_left(self, key: str) -> float | None:
        """Seconds until ``key`` expires, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            remaining = entry.expires_at - self._clock()
            return remaining if remaining >= 0 else None

    def invalidate(self, pattern: str) -> int:
        """Remove every key matching ``pattern``.

        ``*`` is a multi-character wildcard. Without a wildcard this is a
        single exact-key delete.

        Returns:
            Number of entries removed
        """
        with self._lock:
            if "*" not in pattern:
                return 1 if self._entries.pop(pattern, None) is not None else 0

            regex = _compile_pattern(pattern)
            matching = [key for key in self._entries if regex.match(key)]
            for key in matching:
                del self._entries[key]

        if matching:
            logger.debug("cache_invalidated", cache=self.name, pattern=pattern, removed=len(matching))
        return len(matching)

    def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at < now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> CacheStats:
        """Count total, active and expired-but-not-yet-swept entries."""
        with self._lock:
            now = self._clock()
            expired = sum(1 for entry in self._entries.values() if now > entry.expires_at)
            total = len(self._entries)
        return CacheStats(total=total, active=total - expired, expired=expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get_or_fetch(
        self,
        prefix: str,
        params: Mapping[str, Any] | None,
        fetcher: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Read-through lookup.

        Returns the cached value for ``build_cache_key(prefix, params)`` or
        awaits ``fetcher``, stores its result and returns it. Fetcher errors
        propagate and nothing is cached.
        """
        key = build_cache_key(prefix, params)

        cached = self.get(key)
        if cached is not None:
            time_left = self.time_left(key) or 0.0
            logger.info("cache_hit", cache=self.name, key=key, seconds_left=round(time_left))
            return cached

        logger.info("cache_miss", cache=self.name, key=key)
        started = time.perf_counter()
        data = await fetcher()
        fetch_ms = (time.perf_counter() - started) * 1000

        self.set(key, data, ttl)
        logger.info("cache_filled", cache=self.name, key=key, fetch_ms=round(fetch_ms, 1))
        return data

    def start_sweeper(self, interval: float = 15 * 60) -> None:
        """Run ``cleanup`` every ``interval`` seconds on a daemon thread.

        Calling it again while a sweeper runs is a no-op.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        with self._lock:
            if self._sweeper is not None and self._sweeper.is_alive():
                return
            self._stop_sweeper.clear()
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(interval,),
                name=f"{self.name}-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    def stop_sweeper(self, timeout: float | None = 5.0) -> None:
        """Stop the background sweeper if one is running."""
        with self._lock:
            sweeper = self._sweeper
            self._sweeper = None
        if sweeper is None:
            return
        self._stop_sweeper.set()
        sweeper.join(timeout)

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop_sweeper.wait(interval):
            removed = self.cleanup()
            if removed:
                logger.info("cache_swept", cache=self.name, removed=removed)
