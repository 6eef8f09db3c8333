"""Transport-level retry policy with exponential backoff, and a millisecond clock."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class RetryPolicy(BaseModel):
    """Retries of the *same* backend call.

    Distinct from escalation across backends, which the orchestrator decides
    and which never waits.
    """

    max_retries: int = Field(default=2, ge=0)
    base_delay: float = Field(default=1.0, ge=0.0, description="Seconds before the first retry")
    max_delay: float = Field(default=30.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (0-based): base * 2**attempt."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        retry_on: Tuple[Type[BaseException], ...],
        should_retry: Callable[[BaseException], bool] = lambda e: True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Call *fn*, retrying matching failures with exponential backoff."""
        attempt = 0
        while True:
            try:
                return await fn()
            except retry_on as e:
                if attempt >= self.max_retries or not should_retry(e):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Retrying after error (attempt %d/%d, delay=%.2fs): %s",
                    attempt + 1,
                    self.max_retries,
                    delay,
                    e,
                )
                attempt += 1
                await sleep(delay)
