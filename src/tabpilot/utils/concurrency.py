"""
Bounded-concurrency helpers for per-node protocol batches.
"""
import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")


async def gather_limited(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> List[T]:
    """
    Run coroutine factories with at most ``limit`` in flight at once.
    
    Results keep the order of ``factories``. The first exception propagates
    and cancels the remaining work; callers that want per-item tolerance
    handle errors inside the factory.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)
    
    async def _run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()
    
    tasks = [asyncio.ensure_future(_run(factory)) for factory in factories]
    if not tasks:
        return []
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
