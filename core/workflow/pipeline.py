"""Rate-limited sequential pipeline.

Batch operations against the ERP drain their input strictly in order, one
item at a time, with a fixed pause between consecutive items to stay under
the ERP's request rate limit.
"""

import asyncio
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

from core.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ThrottledPipeline(Generic[T, R]):
    """Single worker draining a list with a fixed inter-item delay.

    Usage:
        pipeline = ThrottledPipeline(delay_seconds=1.0)
        results = await pipeline.run(order_ids, process_order, on_error=to_error_result)

    Exceptions raised by `handler` for one item are passed to `on_error`,
    whose return value becomes that item's result; the remaining items are
    still processed. Without `on_error` the exception propagates.
    """

    def __init__(
        self,
        delay_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def run(
        self,
        items: Iterable[T],
        handler: Callable[[T], Awaitable[R]],
        on_error: Optional[Callable[[T, Exception], R]] = None,
    ) -> List[R]:
        results: List[R] = []
        for index, item in enumerate(items):
            if index > 0 and self.delay_seconds:
                await self._sleep(self.delay_seconds)

            try:
                result = await handler(item)
            except Exception as e:
                if on_error is None:
                    raise
                logger.warning(
                    f"Item {item!r} failed: {type(e).__name__}: {e}",
                    extra_fields={"error_type": type(e).__name__},
                )
                result = on_error(item, e)
            results.append(result)

        return results
