"""Helpers for driving blocking collaborators from the async engine.

Local storage and most remote clients are synchronous.  ``run_sync``
moves a call onto a worker thread; ``gather_limited`` fans out
independent remote fetches under a shared request limit.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Shared by every engine on the running loop; set by ``init_semaphore``.
_semaphore: asyncio.Semaphore | None = None
_limit: int | None = None


def init_semaphore(max_parallel: int = 4) -> None:
    """Bound concurrent remote sub-requests to ``max_parallel``."""
    global _semaphore, _limit
    if max_parallel < 1:
        raise ValueError("max_parallel must be at least 1")
    _semaphore = asyncio.Semaphore(max_parallel)
    _limit = max_parallel
    logger.debug("Remote request limit set to %d", max_parallel)


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await ``func(*args, **kwargs)`` on a worker thread.

    Not bounded by the request limit: document I/O is always sequential.
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(coros: Iterable[Awaitable[T]]) -> list[T]:
    """Await independent sub-requests, at most the limit at a time.

    Results come back in input order.  The first exception propagates;
    without a limit everything runs at once.
    """
    sem = _semaphore
    if sem is None:
        return list(await asyncio.gather(*coros))

    async def _bounded(aw: Awaitable[T]) -> T:
        async with sem:
            return await aw

    return list(await asyncio.gather(*(_bounded(c) for c in coros)))
