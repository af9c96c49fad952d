"""
Bounded polling for long-running upstream operations.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from app.runners.errors import PollTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def poll_until_done(
    check: Callable[[int], Awaitable[T | None]],
    *,
    max_attempts: int,
    interval_seconds: float,
    description: str = "Operation",
) -> T:
    """
    Call ``check(attempt)`` every ``interval_seconds`` until it returns a value.

    ``check`` returns None while the operation is still running and raises to
    abort. The wait happens before each attempt. After ``max_attempts``
    unfinished checks a PollTimeoutError is raised.
    """
    for attempt in range(max_attempts):
        await asyncio.sleep(interval_seconds)

        result = await check(attempt)
        if result is not None:
            return result

        logger.info("%s in progress (attempt %d/%d)", description, attempt + 1, max_attempts)

    raise PollTimeoutError(f"{description} timed out")
