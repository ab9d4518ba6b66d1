"""
Bounded retries with exponential backoff for async operations.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from errors import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt an operation up to max_attempts times.

    After a retryable failure on attempt n the policy sleeps
    base_delay * multiplier ** (n - 1) seconds. A non-retryable failure, or the
    failure of the last attempt, propagates unchanged.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * self.multiplier ** (attempt - 1)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[Callable[[int, BaseException], None]] = None
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.retryable(e):
                    logger.error(f"[Retry] Non-retryable error on attempt {attempt}: {e}")
                    raise

                if attempt >= self.max_attempts:
                    logger.error(f"[Retry] Max retries ({self.max_attempts}) exceeded: {e}")
                    raise

                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"[Retry] Request failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                if on_retry:
                    on_retry(attempt, e)

                await self.sleep(delay)
                attempt += 1
