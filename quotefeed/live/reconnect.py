"""
Reconnection policy for the streaming session.

Decides whether, when, and with what delay the session is re-opened after an
unintended disconnect. One asyncio task drives the whole retry sequence for an
outage:

    attempt += 1 -> sleep(delay(attempt)) -> intentional? stop : open()
        open ok   -> alert success, emit Reconnected
        open fail -> alert failure, loop while attempts remain,
                     else emit MaxReconnectAttemptsReached

The delay is a pure function of the attempt about to be made:
min(base * 2**(attempt - 1), max).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from quotefeed.live.config import ReconnectConfig
from quotefeed.live.events import EventEmitter, MaxReconnectAttemptsReached, Reconnected
from quotefeed.live.types import ReconnectContext
from quotefeed.ports.alerting import AlertSink
from quotefeed.utils.tasks import cancel_task

logger = logging.getLogger(__name__)

ConnectFn = Callable[[], Awaitable[None]]


def compute_delay_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """Exponential backoff for a 1-based attempt number, capped at `max_delay_ms`."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    # Cap the exponent so huge attempt numbers don't build huge ints
    exponent = min(attempt - 1, 32)
    return int(min(base_delay_ms * (2**exponent), max_delay_ms))


class ReconnectPolicy:
    """
    Owns the ReconnectContext and the single pending retry task.

    Usage:
        policy = ReconnectPolicy(ReconnectConfig(), emitter, alerts)
        ...
        # from the transport close path
        await policy.on_disconnect(session.open)
        ...
        # on caller-initiated stop
        await policy.cancel()
    """

    def __init__(
        self,
        config: ReconnectConfig,
        emitter: EventEmitter,
        alerts: AlertSink,
        name: str = "reconnect",
    ) -> None:
        self._config = config
        self._emitter = emitter
        self._alerts = alerts
        self._name = name

        self._context = ReconnectContext()
        self._task: Optional[asyncio.Task[None]] = None
        self._pending = False

    @property
    def context(self) -> ReconnectContext:
        return self._context

    @property
    def attempt(self) -> int:
        return self._context.attempt

    @property
    def is_pending(self) -> bool:
        """True while a retry sequence is sleeping or re-opening."""
        return self._pending

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def compute_delay_ms(self, attempt: int) -> int:
        return compute_delay_ms(attempt, self._config.base_delay_ms, self._config.max_delay_ms)

    def new_context(self) -> None:
        """Discard the current context and start a fresh one (new service run)."""
        self._context = ReconnectContext()

    def reset_attempts(self) -> None:
        """Called once the feed has authenticated a connection."""
        if self._context.attempt:
            logger.debug(f"[{self._name}] Attempt counter reset (was {self._context.attempt})")
        self._context.attempt = 0
        self._context.current_delay_ms = 0

    def mark_intentional(self) -> None:
        """Flag the upcoming disconnect as caller-initiated."""
        self._context.intentional_disconnect = True

    async def on_disconnect(self, connect: ConnectFn) -> bool:
        """
        React to a closed session.

        Returns True when a retry sequence was scheduled.
        """
        ctx = self._context
        if ctx.intentional_disconnect:
            logger.info(f"[{self._name}] Intentional disconnect, not reconnecting")
            return False

        if self._pending:
            logger.debug(f"[{self._name}] Reconnect already pending, ignoring disconnect")
            return False

        if ctx.attempt >= self._config.max_attempts:
            logger.error(
                f"[{self._name}] Reconnect attempts exhausted "
                f"({ctx.attempt}/{self._config.max_attempts})"
            )
            await self._emitter.emit(MaxReconnectAttemptsReached(attempts=ctx.attempt))
            return False

        self._schedule(connect)
        return True

    def _schedule(self, connect: ConnectFn) -> None:
        self._pending = True
        self._task = asyncio.create_task(
            self._run(connect, self._context), name=f"{self._name}_loop"
        )

    async def _run(self, connect: ConnectFn, ctx: ReconnectContext) -> None:
        """Retry loop for one outage."""
        try:
            while True:
                ctx.attempt += 1
                attempt = ctx.attempt
                delay_ms = self.compute_delay_ms(attempt)
                ctx.current_delay_ms = delay_ms

                logger.info(
                    f"[{self._name}] Reconnecting in {delay_ms}ms "
                    f"(attempt {attempt}/{self._config.max_attempts})"
                )
                await asyncio.sleep(delay_ms / 1000)

                # The flag may have been set after this task was armed
                if ctx.intentional_disconnect or ctx is not self._context:
                    logger.info(f"[{self._name}] Reconnect cancelled by intentional disconnect")
                    return

                try:
                    await connect()
                except Exception as e:
                    logger.error(f"[{self._name}] Reconnect attempt {attempt} failed: {e}")
                    await self._alerts.reconnect_failed(e, attempt)
                    if attempt >= self._config.max_attempts:
                        logger.error(f"[{self._name}] Max reconnect attempts reached, giving up")
                        self._pending = False
                        await self._emitter.emit(MaxReconnectAttemptsReached(attempts=attempt))
                        return
                    continue

                # Clear before any await so a fresh drop can schedule again
                self._pending = False
                logger.info(f"[{self._name}] Reconnected on attempt {attempt}")
                await self._alerts.reconnect_succeeded(attempt)
                await self._emitter.emit(Reconnected(attempt=attempt))
                return
        finally:
            if self._task is asyncio.current_task():
                self._pending = False

    async def cancel(self) -> None:
        """Mark the disconnect intentional and cancel any pending retry."""
        self.mark_intentional()
        task, self._task = self._task, None
        self._pending = False
        await cancel_task(task)
