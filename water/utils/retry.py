"""Retry policy for external reads."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-attempt, fixed-delay retry applied at the call site.

    Cancellation is never retried: ``asyncio.CancelledError`` is not an
    ``Exception`` subclass, so it escapes the retry loop and the sleep
    between attempts immediately.
    """

    max_attempts: int = 3
    delay: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = field(default=(Exception,))

    def _log_retry(self, operation: str) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                f"{operation} failed (attempt {state.attempt_number}/{self.max_attempts}): {error}; "
                f"retrying in {self.delay}s"
            )

        return before_sleep

    async def call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func`` until it succeeds or attempts are exhausted.

        The last exception is re-raised unchanged when every attempt fails.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=self._log_retry(operation),
            sleep=asyncio.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await func()
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"{operation} succeeded after {attempt.retry_state.attempt_number} attempts")
        return result
