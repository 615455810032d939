"""Failure classification for the circuit breaker.

Only availability problems may trip the breaker. Setup defects (bad
credentials, missing role) must not, and anything unrecognised is ignored.
Tagged errors are trusted first; message matching is the last resort for
errors nobody classified at their origin.
"""

import asyncio
import errno
from enum import Enum

from answer_cache.exceptions import (
    ConfigurationError,
    ResourceLimitError,
    TransientConnectionError,
)


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    CONNECTION = "connection"
    RESOURCE_LIMIT = "resource_limit"
    UNCLASSIFIED = "unclassified"


# Postgres SQLSTATE codes (asyncpg exposes them as ``sqlstate``)
_CONFIGURATION_SQLSTATES = frozenset({"28000", "28P01", "3D000", "42704"})
_RESOURCE_LIMIT_SQLSTATES = frozenset({"53300"})
_CONNECTION_SQLSTATES = frozenset({"57P01", "57P02", "57P03", "XX000"})

_CONNECTION_ERRNOS = frozenset(
    {errno.ECONNRESET, errno.ECONNREFUSED, errno.ETIMEDOUT, errno.ECONNABORTED, errno.EPIPE}
)
_CONNECTION_CODES = frozenset({"ECONNRESET", "ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND"})

_CONFIGURATION_MARKERS = (
    "tenant or user not found",
    "invalid oauth token",
    "authentication failed",
    "password authentication failed",
)
_CONNECTION_MARKERS = (
    "shutdown",
    "db_termination",
    "terminating connection",
    "connection terminated",
    "server closed the connection",
    "econnrefused",
    "etimedout",
    "enotfound",
    "econnreset",
)
_RESOURCE_LIMIT_MARKERS = (
    "maxclientsinsessionmode",
    "max clients reached",
    "max client connections",
    "too many clients",
)


def _classify_sqlstate(sqlstate: str) -> ErrorKind | None:
    if sqlstate in _CONFIGURATION_SQLSTATES:
        return ErrorKind.CONFIGURATION
    if sqlstate in _RESOURCE_LIMIT_SQLSTATES:
        return ErrorKind.RESOURCE_LIMIT
    if sqlstate in _CONNECTION_SQLSTATES or sqlstate.startswith("08"):
        return ErrorKind.CONNECTION
    return None


def _classify_message(message: str) -> ErrorKind:
    text = message.lower()

    if any(marker in text for marker in _CONFIGURATION_MARKERS):
        return ErrorKind.CONFIGURATION
    if "role" in text and "does not exist" in text:
        return ErrorKind.CONFIGURATION
    if any(marker in text for marker in _CONNECTION_MARKERS):
        return ErrorKind.CONNECTION
    if any(marker in text for marker in _RESOURCE_LIMIT_MARKERS):
        return ErrorKind.RESOURCE_LIMIT
    return ErrorKind.UNCLASSIFIED


def classify_error(error: BaseException) -> ErrorKind:
    """Decide how a failure should affect the circuit breaker.

    Order: package error tags, Postgres SQLSTATE, builtin connection and
    timeout errors, then message heuristics.
    """
    if isinstance(error, ConfigurationError):
        return ErrorKind.CONFIGURATION
    if isinstance(error, ResourceLimitError):
        return ErrorKind.RESOURCE_LIMIT
    if isinstance(error, TransientConnectionError):
        return ErrorKind.CONNECTION

    sqlstate = getattr(error, "sqlstate", None)
    if isinstance(sqlstate, str):
        kind = _classify_sqlstate(sqlstate)
        if kind is not None:
            return kind

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.CONNECTION
    if isinstance(error, OSError) and error.errno in _CONNECTION_ERRNOS:
        return ErrorKind.CONNECTION

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in _CONNECTION_CODES:
        return ErrorKind.CONNECTION

    return _classify_message(str(error))
