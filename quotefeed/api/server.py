"""
Embedded uvicorn server for the HTTP API.

Runs on the service's event loop; process signals stay with the CLI, which
stops the server explicitly during shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Iterator, Optional

import uvicorn
from fastapi import FastAPI

from quotefeed.utils.tasks import cancel_task

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class ApiServer:
    """Start/stop handle around a uvicorn server task."""

    def __init__(
        self,
        app: FastAPI,
        host: str = "0.0.0.0",
        port: int = 3000,
        shutdown_timeout_s: float = 5.0,
    ) -> None:
        self._host = host
        self._port = port
        self._shutdown_timeout_s = shutdown_timeout_s
        self._server = _EmbeddedServer(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                loop="asyncio",
                lifespan="off",
                log_config=None,
            )
        )
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._server.should_exit = False
        self._task = asyncio.create_task(self._server.serve(), name="api_server")
        logger.info(f"HTTP API listening on http://{self._host}:{self._port}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._shutdown_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("HTTP API did not stop in time, cancelling")
            await cancel_task(task)
        logger.info("HTTP API stopped")
