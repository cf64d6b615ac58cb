"""
Fire-and-forget alert dispatch.

Wraps an AlertSink so that every notification runs as a tracked background
task. Callers on the resilience path (heartbeat, reconnect, transport errors)
return immediately instead of waiting on a slow webhook. Failures of the
underlying sink are logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional

from quotefeed.ports.alerting import AlertSink

logger = logging.getLogger(__name__)


class BackgroundAlerts:
    """AlertSink that schedules each call on the running loop and returns."""

    def __init__(self, sink: AlertSink, name: str = "alerts") -> None:
        self._sink = sink
        self._name = name
        self._tasks: set[asyncio.Task[None]] = set()
        self._failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def failed(self) -> int:
        """Alerts whose sink raised."""
        return self._failed

    async def connection_error(self, error: BaseException, attempt: Optional[int] = None) -> None:
        self._dispatch("connection_error", self._sink.connection_error(error, attempt))

    async def reconnect_failed(self, error: BaseException, attempt: int) -> None:
        self._dispatch("reconnect_failed", self._sink.reconnect_failed(error, attempt))

    async def reconnect_succeeded(self, attempt: int) -> None:
        self._dispatch("reconnect_succeeded", self._sink.reconnect_succeeded(attempt))

    async def heartbeat_timeout(self, timeout_s: float) -> None:
        self._dispatch("heartbeat_timeout", self._sink.heartbeat_timeout(timeout_s))

    def _dispatch(self, kind: str, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro, name=f"{self._name}_{kind}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._failed += 1
            logger.error(f"[{self._name}] Alert {task.get_name()} failed: {error}")

    async def flush(self, timeout_s: float = 5.0) -> None:
        """Wait for in-flight alerts; cancel whatever is left after `timeout_s`."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout_s)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"[{self._name}] Dropped {len(still_running)} undelivered alert(s)")
            await asyncio.gather(*still_running, return_exceptions=True)
