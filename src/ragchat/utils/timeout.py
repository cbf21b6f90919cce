"""
Bounded waits for network calls.
"""

import asyncio
from typing import Awaitable, TypeVar

from ragchat.core.exceptions import OperationTimeoutError

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    Args:
        awaitable: The call to wait on
        timeout: Seconds to wait; None or <= 0 waits indefinitely
        operation: Name used in the error message

    Raises:
        OperationTimeoutError: If the call did not finish in time
    """
    if not timeout or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(operation, timeout) from e
