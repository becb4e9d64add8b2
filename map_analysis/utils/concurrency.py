"""
Bounded Concurrency

Runs per-item coroutines with a concurrency cap while preserving input order.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

T = TypeVar('T')
R = TypeVar('R')


async def map_bounded(func: Callable[[int, T], Awaitable[R]],
                      items: Sequence[T],
                      limit: int = 1,
                      yield_every: int = 5,
                      checkpoint: Optional[Callable[[], None]] = None) -> List[R]:
    """
    Apply ``func(index, item)`` to every item, at most ``limit`` at a time.

    Args:
        func: Coroutine function receiving the item index and the item
        items: Items to process
        limit: Maximum number of items in flight
        yield_every: Yield to the event loop after this many finished items
        checkpoint: Called before each item; may raise to abort the batch

    Returns:
        Results in input order

    Raises:
        Whatever ``func`` or ``checkpoint`` raises; remaining items are cancelled
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    if not items:
        return []

    semaphore = asyncio.Semaphore(limit)
    yield_every = max(1, yield_every)

    async def worker(index: int, item: T) -> R:
        async with semaphore:
            if checkpoint is not None:
                checkpoint()
            result = await func(index, item)
            if (index + 1) % yield_every == 0:
                await asyncio.sleep(0)
            return result

    tasks = [asyncio.ensure_future(worker(index, item)) for index, item in enumerate(items)]

    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
