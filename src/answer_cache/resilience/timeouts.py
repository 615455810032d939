"""Time limits for network calls.

Every embedding, vector and store call goes through ``with_timeout`` so a
slow collaborator is cancelled instead of piling up in-flight requests.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from answer_cache.exceptions import OperationTimeoutError

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str = "operation") -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    The awaited call is cancelled when the limit is hit, and cancelling the
    caller cancels it too.

    Raises:
        OperationTimeoutError: If the limit is exceeded
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(operation, timeout) from e
