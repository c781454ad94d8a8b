"""
Fixed-size batch execution with a pause between batches.

Items inside a batch run concurrently; batches run strictly in order.  The
runner does not swallow errors: *process_item* is expected to be total.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_batches(
    items: Sequence[Any],
    batch_size: int,
    process_item: Callable[[Any], Awaitable[T]],
    pause: float = 1.0,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> List[T]:
    """
    Run *process_item* over *items* in contiguous batches of *batch_size*.

    Every member of a batch is started together and the whole batch is
    allowed to settle before moving on.  ``pause`` seconds are slept between
    consecutive batches (never after the last one).  If any item raised, the
    first error is re-raised once its batch has settled.

    Returns one result per item, grouped in batch order.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    sleep = sleep or asyncio.sleep
    results: List[T] = []
    total_batches = math.ceil(len(items) / batch_size) if items else 0

    for batch_num, batch_start in enumerate(range(0, len(items), batch_size), start=1):
        batch = items[batch_start : batch_start + batch_size]
        logger.info(
            "run_batches: batch %d/%d (%d items)",
            batch_num,
            total_batches,
            len(batch),
        )

        gathered = await asyncio.gather(
            *[process_item(item) for item in batch],
            return_exceptions=True,
        )

        for res in gathered:
            if isinstance(res, BaseException):
                logger.error(
                    "run_batches: item in batch %d raised: %s", batch_num, res
                )
                raise res
        results.extend(gathered)

        if batch_num < total_batches:
            await sleep(pause)

    return results
