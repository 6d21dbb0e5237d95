"""Detached background tasks whose outcome the caller never awaits."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

# The event loop keeps only weak references to tasks
_background: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            "Background task '%s' failed: %s", task.get_name(), exc,
            exc_info=exc,
        )


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str = "background") -> asyncio.Task:
    """Schedule ``coro`` on the running loop and return immediately."""
    task = asyncio.create_task(coro, name=name)
    _background.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: float = 5.0) -> None:
    """Wait for outstanding background tasks (used at shutdown and in tests)."""
    if not _background:
        return
    await asyncio.wait(list(_background), timeout=timeout)
