"""Bounded retry with a fixed delay."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from core.errors import REQUEST_FATAL_ERRORS
from core.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryScheduler:
    """Calls an async operation until its result is accepted.

    A raised exception counts as a failed attempt, except authentication
    and configuration failures, which propagate at once. After `max_attempts`
    the scheduler gives up and returns None; it never raises on exhaustion.
    """
    max_attempts: int = 5
    delay_seconds: float = 40.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        is_done: Callable[[T], bool],
    ) -> Optional[T]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await operation()
                if is_done(result):
                    return result
                logger.debug(f"Attempt {attempt}/{self.max_attempts}: not done yet")
            except REQUEST_FATAL_ERRORS:
                raise
            except Exception as e:
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {type(e).__name__}: {e}"
                )

            if attempt < self.max_attempts:
                await self.sleep(self.delay_seconds)

        return None
