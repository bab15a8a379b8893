"""
Reliability Utilities.

Includes an explicit retry policy for calls to unreliable external services.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger("shipments.reliability")

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


def _is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


class RetryPolicy:
    """
    Bounded retry with a fixed delay between attempts.

    'max_attempts' counts the initial call. Exceptions for which 'retryable'
    returns False propagate immediately. 'sleep' is injectable so tests can
    run the loop on a fake clock.
    """
    def __init__(
        self,
        max_attempts: int = 3,
        delay_seconds: float = 2.0,
        retryable: Callable[[BaseException], bool] = _is_retryable,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.retryable = retryable
        self.sleep = sleep

    async def run(
        self,
        func: Callable[[int], Awaitable[T]],
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """
        Call 'func(attempt)' until it returns or a non-retryable error is raised.

        Raises:
            RetryExhaustedError: after 'max_attempts' retryable failures.
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(attempt)
            except Exception as e:
                if not self.retryable(e):
                    raise
                last_error = e
                logger.warning(
                    "Attempt failed",
                    extra={"attempt": attempt, "max_attempts": self.max_attempts, "error": str(e)}
                )
                if on_retry:
                    on_retry(attempt, e)
                if attempt < self.max_attempts:
                    await self.sleep(self.delay_seconds)

        raise RetryExhaustedError(self.max_attempts, last_error)
