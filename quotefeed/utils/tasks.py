"""Helpers for cancelling background asyncio tasks."""

from __future__ import annotations

import asyncio
from typing import Any, Optional


async def cancel_task(task: Optional[asyncio.Task[Any]]) -> None:
    """
    Cancel `task` and wait for it to finish.

    A task never cancels itself here: when called from inside `task` the call
    is a no-op, so teardown triggered from a timer callback can complete.
    """
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


def cancel_task_nowait(task: Optional[asyncio.Task[Any]]) -> None:
    """Request cancellation without waiting (for synchronous callbacks)."""
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
