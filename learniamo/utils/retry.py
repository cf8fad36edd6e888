"""
RETRY UTILITY
=============

Awaits a coroutine factory and, if it raises a transient error, retries a few
times with exponential backoff. Used for Google Speech-to-Text and
Text-to-Speech calls so a brief 503 or deadline blip doesn't fail the turn.
Non-transient errors (auth, quota, bad audio) are re-raised immediately.

Example:
  response = await with_retry(lambda: client.recognize(...), is_transient=is_transient_upstream_error)
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar


logger = logging.getLogger("LEARNIAMO")

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    is_transient: Callable[[BaseException], bool],
    max_retries: int = 2,
    initial_delay: float = 0.5,
) -> T:
    """
    Await fn(). If it raises and is_transient(exc) is true, wait initial_delay seconds
    and try again; delay doubles each retry. After max_retries attempts (including the
    first), re-raise the last exception.
    """
    delay = initial_delay
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as e:
            if attempt == attempts - 1 or not is_transient(e):
                raise
            logger.warning(
                "Attempt %s/%s failed (%s). Retrying in %.1fs: %s",
                attempt + 1,
                attempts,
                getattr(fn, "__name__", "call"),
                delay,
                e,
            )
            await asyncio.sleep(delay)
            delay *= 2

    raise RuntimeError("with_retry exhausted without a result")
