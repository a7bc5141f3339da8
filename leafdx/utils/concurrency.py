"""
Structured concurrency helpers.

join_all() is asyncio.gather() with all-or-nothing semantics: the first
failure propagates and every sibling still running is cancelled, so no
half-finished step keeps running in the background.
"""

import asyncio
from collections.abc import Awaitable
from typing import Any


async def join_all(*aws: Awaitable[Any]) -> list[Any]:
    """
    Run awaitables concurrently; return results in order or raise the first error.

    Args:
        *aws: Coroutines or futures

    Returns:
        Results in argument order
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        # Let cancelled siblings unwind before propagating
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
