"""Exponential backoff for external service calls."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry an awaitable operation with exponential backoff.

    Wait times follow ``base_delay * 2 ** (attempt - 1)`` capped at
    ``max_delay``: 0.5s, 1.0s, 2.0s, ... with the defaults.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    retry_on: tuple[type[BaseException], ...] = (RuntimeError, TimeoutError)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        Raises:
            The last exception raised by ``operation``
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "%s failed after %d attempts: %s: %s",
                        description,
                        attempt,
                        type(e).__name__,
                        e,
                    )
                    raise

                wait_time = self.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s: %s), retrying in %.1fs",
                    description,
                    attempt,
                    self.max_attempts,
                    type(e).__name__,
                    e,
                    wait_time,
                )
                await asyncio.sleep(wait_time)


NO_RETRY = RetryPolicy(max_attempts=1)
