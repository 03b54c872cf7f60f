"""Supervision for fire-and-forget asyncio tasks.

Spawned tasks are kept referenced until they finish and any exception that
escapes them is logged.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)

_background_tasks: Set[asyncio.Task[Any]] = set()


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _background_tasks.add(task)

    def _finished(t: asyncio.Task[Any]) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.debug("Background task %s cancelled", t.get_name())
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task %s failed", t.get_name(), exc_info=exc)

    task.add_done_callback(_finished)
    return task


async def cancel_all() -> None:
    tasks = list(_background_tasks)
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
