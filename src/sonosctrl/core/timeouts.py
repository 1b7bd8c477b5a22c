"""Deadlines and all-settled joins for calls into the device service."""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, TypeVar

from sonosctrl.api.protocol import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    message: str = "Operation timed out",
) -> T:
    """Await ``awaitable`` with a deadline.

    The timer is released whether the operation succeeds, fails or times
    out. On timeout the operation is cancelled.

    Args:
        awaitable: The external call.
        timeout: Deadline in seconds.
        message: Error message used on timeout.

    Returns:
        The operation's result.

    Raises:
        OperationTimeoutError: If the deadline passed first.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as e:
        raise OperationTimeoutError(message) from e


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """Result of one operation in an all-settled join.

    Attributes:
        value: Result if the operation succeeded.
        error: Exception if it failed.
    """

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """Return True if the operation succeeded."""
        return self.error is None

    def get(self) -> T | None:
        """Return the value, or None if the operation failed."""
        return self.value if self.error is None else None


async def gather_settled(*awaitables: Awaitable[T]) -> list[Outcome[T]]:
    """Run awaitables concurrently and collect every outcome.

    A failing or slow operation never cancels or hides the others. The
    returned list has the same order as the arguments.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    outcomes: list[Outcome[T]] = []
    for result in results:
        if isinstance(result, BaseException):
            outcomes.append(Outcome(error=result))
        else:
            outcomes.append(Outcome(value=result))
    return outcomes


def describe_error(error: BaseException | None) -> str:
    """Return a short, non-empty description of an error for logs."""
    if error is None:
        return ""
    return str(error) or type(error).__name__
