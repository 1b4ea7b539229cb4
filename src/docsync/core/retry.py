"""Retry with exponential backoff and jitter for transient remote failures.

``retry_async`` wraps one remote call.  Between attempts it sleeps for
``initial_delay * multiplier ** (attempt - 1)`` seconds (capped at
``max_delay``), spread by +/- ``jitter``.  A ``RateLimitError`` carrying
``retry_after`` never waits less than the server asked for.

The sleep is an ``asyncio`` suspension point, so a pass cancelled from
outside stops between attempts rather than mid-request.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from ..config_schema import RetryConfig
from ..errors import RateLimitError, is_transient

T = TypeVar("T")
logger = logging.getLogger(__name__)


def compute_delay(
    attempt: int,
    config: RetryConfig,
    exc: BaseException | None = None,
    rng: random.Random | None = None,
) -> float:
    """Return the delay in seconds before retry number *attempt* (1-based)."""
    base = config.initial_delay * (config.multiplier ** (attempt - 1))
    base = min(base, config.max_delay)
    if config.jitter:
        spread = base * config.jitter
        base += (rng or random).uniform(-spread, spread)
    delay = max(0.0, base)
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        delay = max(delay, exc.retry_after)
    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    operation: str = "remote call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying transient failures.

    Non-transient errors (authentication, not-found, validation) propagate
    immediately.  When attempts are exhausted the last error propagates.
    """
    cfg = config or RetryConfig()
    attempt = 1
    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            if not is_transient(exc) or attempt >= cfg.max_attempts:
                if attempt > 1:
                    logger.error(
                        "%s failed after %d attempt(s): %s",
                        operation,
                        attempt,
                        exc,
                    )
                raise
            delay = compute_delay(attempt, cfg, exc)
            logger.warning(
                "%s failed (attempt %d/%d): %s -- retrying in %.2fs",
                operation,
                attempt,
                cfg.max_attempts,
                exc,
                delay,
            )
            await sleep(delay)
            attempt += 1
