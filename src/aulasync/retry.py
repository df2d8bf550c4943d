"""Bounded exponential backoff for async operations, built on tenacity."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from aulasync.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _retry_everything(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


class RetryPolicy:
    """Retries a failing coroutine function with exponential backoff.

    ``max_attempts`` is the total number of tries. The wait after failed
    attempt k is ``base_delay * 2 ** (k - 1)`` seconds. When every attempt
    fails the last exception is re-raised as is.

    Example:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        item = await policy.call(lambda: fetch(key), description="fetch")
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        retry_on: Optional[Callable[[BaseException], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retry_on = retry_on or _retry_everything
        self._sleep = sleep

    async def call(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.3fs",
                description,
                retry_state.attempt_number,
                self.max_attempts,
                retry_state.next_action.sleep,
                extra={"context": {"error": str(error), "errorType": type(error).__name__}},
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2),
            retry=retry_if_exception(self.retry_on),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            return await retrying(operation)
        except Exception as e:
            if self.retry_on(e):
                logger.error(
                    "%s failed after %d attempts",
                    description,
                    self.max_attempts,
                    extra={"context": {"error": str(e), "errorType": type(e).__name__}},
                )
            raise


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    description: str = "operation",
) -> T:
    """Run ``operation`` under a one-off RetryPolicy."""
    return await RetryPolicy(max_attempts, base_delay).call(operation, description)
