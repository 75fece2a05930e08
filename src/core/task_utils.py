"""
Helpers for fire-and-forget asyncio work
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


async def run_logged(coro: Coroutine, context: str = "") -> Any:
    """
    Await a coroutine, logging (not raising) any failure.

    Cancellation is not a failure and propagates unchanged.
    """
    try:
        return await coro
    except asyncio.CancelledError:
        raise
    except Exception as e:
        prefix = f"[{context}] " if context else ""
        logger.error(f"{prefix}Task failed: {e}", exc_info=True)
        return None


def schedule(coro: Coroutine, context: str = "") -> asyncio.Task | None:
    """
    Schedule a coroutine on the running loop as a logged background task.

    Returns:
        The task, or None when called outside a running event loop
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        logger.debug(f"[{context}] No running event loop, skipping")
        return None
    return loop.create_task(run_logged(coro, context))
