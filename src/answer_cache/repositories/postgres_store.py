"""PostgreSQL implementation of DurableStore.

Uses an asyncpg connection pool. Every driver error is translated into the
package's error taxonomy right here, so the circuit breaker sees
``ConfigurationError`` / ``TransientConnectionError`` / ``ResourceLimitError``
instead of raw asyncpg exceptions.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from importlib import resources
from typing import Any

import asyncpg

from answer_cache.config import get_settings
from answer_cache.entities import NewQueryCacheEntry, QueryCacheEntry, QueryContext
from answer_cache.exceptions import (
    AnswerCacheError,
    ConfigurationError,
    ResourceLimitError,
    StoreError,
    TransientConnectionError,
)
from answer_cache.observability import get_logger
from answer_cache.resilience import ErrorKind, classify_error
from answer_cache.services.normalization import normalize_query

logger = get_logger(__name__)

_COLUMNS = (
    "id, query_text, query_hash, zone, development, document_type, response, "
    "sources_used, embedding_id, hit_count, last_used_at, created_at, expires_at"
)

_LIVE = "(expires_at IS NULL OR expires_at > NOW())"

_NEGATIVE_RATING_MAX = 2


def translate_error(error: Exception, operation: str) -> AnswerCacheError:
    """Map a driver or socket error onto the error taxonomy."""
    if isinstance(error, AnswerCacheError):
        return error

    details: dict[str, Any] = {"operation": operation}
    sqlstate = getattr(error, "sqlstate", None)
    if sqlstate:
        details["sqlstate"] = sqlstate

    message = f"{operation} failed: {error}"
    kind = classify_error(error)
    if kind is ErrorKind.CONFIGURATION:
        return ConfigurationError(message, details)
    if kind is ErrorKind.CONNECTION:
        return TransientConnectionError(message, details)
    if kind is ErrorKind.RESOURCE_LIMIT:
        return ResourceLimitError(message, details)
    return StoreError(message, details)


def _row_to_entry(row: asyncpg.Record) -> QueryCacheEntry:
    return QueryCacheEntry(
        id=row["id"],
        query_text=row["query_text"],
        query_hash=row["query_hash"],
        zone=row["zone"],
        development=row["development"],
        document_type=row["document_type"],
        response=row["response"],
        sources_used=tuple(row["sources_used"] or ()),
        embedding_id=row["embedding_id"],
        hit_count=row["hit_count"] or 0,
        last_used_at=row["last_used_at"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


class PostgresQueryStore:
    """asyncpg-backed store satisfying the DurableStore protocol.

    Reads only return live rows (``expires_at`` unset or in the future).
    A save that collides with a live (hash, zone, development,
    document_type) row returns that row unchanged. An expired colliding row
    is overwritten with the new answer.

    Example:
        ```python
        store = PostgresQueryStore.create()
        await store.connect()
        await store.ensure_schema()
        entry = await store.get_by_hash(query_hash, QueryContext("yucatan", "amura"))
        ```
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int = 1,
        max_size: int = 10,
        pool: asyncpg.Pool | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            database_url: PostgreSQL connection string. Defaults to DATABASE_URL.
            min_size: Minimum connections in the pool
            max_size: Maximum connections in the pool
            pool: An existing pool (skips ``connect``)

        Raises:
            ConfigurationError: If no database URL is available
        """
        self._database_url = database_url or get_settings().database_url
        if pool is None and not self._database_url:
            raise ConfigurationError(
                "Database URL must be provided or set in environment (DATABASE_URL)"
            )
        self._min_size = min_size
        self._max_size = max_size
        self._pool = pool

    @classmethod
    def create(cls, database_url: str | None = None) -> "PostgresQueryStore":
        """Factory method to create PostgresQueryStore with defaults."""
        return cls(database_url=database_url)

    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=60,
                statement_cache_size=0,  # pgBouncer transaction mode
            )
        except Exception as e:
            logger.error("postgres_pool_failed", error=str(e))
            raise translate_error(e, "connect") from e
        logger.info("postgres_pool_created", min_size=self._min_size, max_size=self._max_size)

    async def disconnect(self) -> None:
        """Close the pool, terminating it if a graceful close hangs."""
        if self._pool is None:
            return
        try:
            await asyncio.wait_for(self._pool.close(), timeout=10.0)
            logger.info("postgres_pool_closed")
        except asyncio.TimeoutError:
            logger.warning("postgres_pool_close_timeout")
            self._pool.terminate()
        finally:
            self._pool = None

    async def ensure_schema(self) -> None:
        """Create the cache tables and indexes if they are missing."""
        sql = resources.files("answer_cache.repositories").joinpath("schema.sql").read_text()
        async with self._connection("ensure_schema") as conn:
            await conn.execute(sql)

    async def get_by_hash(self, query_hash: str, context: QueryContext) -> QueryCacheEntry | None:
        async with self._connection("get_by_hash") as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS} FROM query_cache
                WHERE query_hash = $1 AND zone = $2 AND development = $3
                AND document_type IS NOT DISTINCT FROM $4
                AND {_LIVE}
                ORDER BY hit_count DESC, last_used_at DESC
                LIMIT 1
                """,
                query_hash,
                context.zone,
                context.development,
                context.document_type,
            )
        return _row_to_entry(row) if row else None

    async def get_by_ids(
        self, embedding_ids: Sequence[str], context: QueryContext, limit: int | None = None
    ) -> list[QueryCacheEntry]:
        if not embedding_ids:
            return []
        async with self._connection("get_by_ids") as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM query_cache
                WHERE embedding_id = ANY($1::text[])
                AND zone = $2 AND development = $3
                AND document_type IS NOT DISTINCT FROM $4
                AND {_LIVE}
                ORDER BY hit_count DESC, last_used_at DESC
                LIMIT $5
                """,
                list(embedding_ids),
                context.zone,
                context.development,
                context.document_type,
                len(embedding_ids) if limit is None else limit,
            )
        return [_row_to_entry(row) for row in rows]

    async def save(self, entry: NewQueryCacheEntry) -> QueryCacheEntry:
        async with self._connection("save") as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO query_cache
                    (query_text, query_hash, zone, development, document_type,
                     response, sources_used, embedding_id, expires_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (query_hash, zone, development, (COALESCE(document_type, '')))
                DO UPDATE SET
                    query_text = EXCLUDED.query_text,
                    response = EXCLUDED.response,
                    sources_used = EXCLUDED.sources_used,
                    embedding_id = EXCLUDED.embedding_id,
                    expires_at = EXCLUDED.expires_at,
                    hit_count = 0,
                    created_at = NOW(),
                    last_used_at = NOW()
                WHERE query_cache.expires_at IS NOT NULL AND query_cache.expires_at <= NOW()
                RETURNING {_COLUMNS}
                """,
                entry.query_text,
                entry.query_hash,
                entry.zone,
                entry.development,
                entry.document_type,
                entry.response,
                list(entry.sources_used) or None,
                entry.embedding_id,
                entry.expires_at,
            )
            if row is None:
                row = await conn.fetchrow(
                    f"""
                    SELECT {_COLUMNS} FROM query_cache
                    WHERE query_hash = $1 AND zone = $2 AND development = $3
                    AND document_type IS NOT DISTINCT FROM $4
                    """,
                    entry.query_hash,
                    entry.zone,
                    entry.development,
                    entry.document_type,
                )
                logger.debug("query_cache_save_conflict", query_hash=entry.query_hash)
        if row is None:
            raise StoreError("save failed: conflicting row disappeared", {"operation": "save"})
        return _row_to_entry(row)

    async def increment_hit(self, entry_id: int) -> None:
        async with self._connection("increment_hit") as conn:
            await conn.execute(
                """
                UPDATE query_cache
                SET hit_count = hit_count + 1, last_used_at = NOW()
                WHERE id = $1
                """,
                entry_id,
            )

    async def has_negative_feedback(self, query: str, context: QueryContext) -> bool:
        async with self._connection("has_negative_feedback") as conn:
            flagged = await conn.fetchval(
                r"""
                SELECT EXISTS (
                    SELECT 1 FROM query_logs
                    WHERE regexp_replace(lower(trim(query)), '\s+', ' ', 'g') = $1
                    AND zone = $2 AND development = $3
                    AND feedback_rating IS NOT NULL AND feedback_rating <= $4
                )
                """,
                normalize_query(query),
                context.zone,
                context.development,
                _NEGATIVE_RATING_MAX,
            )
        return bool(flagged)

    async def cleanup_expired(self) -> int:
        try:
            async with self._connection("cleanup_expired") as conn:
                status = await conn.execute(
                    "DELETE FROM query_cache WHERE expires_at IS NOT NULL AND expires_at < NOW()"
                )
        except StoreError as e:
            if e.details.get("sqlstate") == "42P01":  # undefined_table
                logger.warning("query_cache_table_missing", hint="run ensure_schema()")
                return 0
            raise
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(status.split()[-1])

    async def ping(self) -> bool:
        async with self._connection("ping") as conn:
            await conn.fetchval("SELECT 1")
        return True

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        if self._pool is None:
            raise StoreError("Database not connected", {"operation": operation})
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except AnswerCacheError:
            raise
        except Exception as e:
            raise translate_error(e, operation) from e
