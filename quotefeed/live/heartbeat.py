"""
Heartbeat monitor for the streaming session.

While the session is SUBSCRIBED, sends an application-level ping every
`interval_s` and expects a pong within `pong_timeout_s`. A missed pong alerts
and force-closes the transport (not intentional), which hands over to the
reconnection policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from quotefeed.live.config import HeartbeatConfig
from quotefeed.live.errors import HeartbeatTimeout
from quotefeed.live.types import HeartbeatContext, OutboundRequest, PingRequest, SessionState
from quotefeed.ports.alerting import AlertSink
from quotefeed.utils.tasks import cancel_task_nowait

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """
    Ping/pong liveness check, armed only while SUBSCRIBED.

    Register `on_state_change` with the SessionStateMachine so the monitor is
    armed on entering SUBSCRIBED and torn down on leaving it for any reason.
    """

    def __init__(
        self,
        config: HeartbeatConfig,
        send: Callable[[OutboundRequest], Awaitable[bool]],
        force_close: Callable[[str], Awaitable[None]],
        alerts: AlertSink,
        name: str = "heartbeat",
    ) -> None:
        """
        Args:
            config: Heartbeat configuration
            send: Writes a request to the transport, returns False if not sent
            force_close: Non-intentional close of the transport
            alerts: Alerting collaborator
            name: Name for logging purposes
        """
        self._config = config
        self._send = send
        self._force_close = force_close
        self._alerts = alerts
        self._name = name

        self._context: Optional[HeartbeatContext] = None
        self._interval_task: Optional[asyncio.Task[None]] = None
        self._timeouts = 0

    @property
    def is_armed(self) -> bool:
        return self._context is not None

    @property
    def context(self) -> Optional[HeartbeatContext]:
        return self._context

    @property
    def timeouts(self) -> int:
        """Number of missed pongs since construction."""
        return self._timeouts

    @property
    def awaiting_pong(self) -> bool:
        return (
            self._context is not None
            and self._context.deadline_task is not None
            and not self._context.deadline_task.done()
        )

    def on_state_change(self, old_state: SessionState, new_state: SessionState) -> None:
        """State listener: arm on SUBSCRIBED, disarm on leaving it."""
        if new_state == SessionState.SUBSCRIBED:
            self.arm()
        elif old_state == SessionState.SUBSCRIBED:
            self.disarm()

    def arm(self) -> None:
        """Start the ping interval (restarting it if already armed)."""
        self.disarm()
        self._context = HeartbeatContext()
        self._interval_task = asyncio.create_task(self._interval_loop(), name=f"{self._name}_ping")
        logger.info(f"[{self._name}] Heartbeat started (interval={self._config.interval_s}s)")

    def disarm(self) -> None:
        """Cancel the interval and any pending pong deadline."""
        if self._context is None:
            return
        cancel_task_nowait(self._interval_task)
        cancel_task_nowait(self._context.deadline_task)
        self._interval_task = None
        self._context = None
        logger.info(f"[{self._name}] Heartbeat stopped")

    async def _interval_loop(self) -> None:
        try:
            while self._context is not None:
                await asyncio.sleep(self._config.interval_s)
                await self.send_ping()
        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] Ping loop cancelled")
            raise

    async def send_ping(self) -> bool:
        """
        Send one ping and start its pong deadline.

        When an earlier ping is still unanswered its deadline is kept, so a
        `pong_timeout_s` longer than `interval_s` still detects a dead session.
        """
        ctx = self._context
        if ctx is None:
            return False

        ts_ms = int(time.time() * 1000)
        if not await self._send(PingRequest(timestamp_ms=ts_ms)):
            logger.warning(f"[{self._name}] Ping not sent")
            return False

        # The session may have been torn down while sending
        if ctx is not self._context:
            return False

        ctx.last_ping_sent_ms = ts_ms
        ctx.pings_sent += 1
        if self.awaiting_pong:
            # An unanswered ping keeps its own (earlier) deadline
            logger.debug(f"[{self._name}] Ping sent: {ts_ms} (previous ping still unanswered)")
            return True

        ctx.deadline_task = asyncio.create_task(
            self._deadline(ctx), name=f"{self._name}_deadline"
        )
        logger.debug(f"[{self._name}] Ping sent: {ts_ms}")
        return True

    def on_pong(self, params: Optional[str] = None) -> None:
        """Pong received: cancel the pending deadline, if any."""
        ctx = self._context
        if ctx is None:
            logger.debug(f"[{self._name}] Pong received while not armed")
            return
        ctx.pongs_received += 1
        if ctx.deadline_task is not None:
            cancel_task_nowait(ctx.deadline_task)
            ctx.deadline_task = None
        logger.debug(f"[{self._name}] Pong received: {params}")

    async def _deadline(self, ctx: HeartbeatContext) -> None:
        await asyncio.sleep(self._config.pong_timeout_s)
        if ctx is not self._context:
            return

        # Detach so teardown during force_close does not cancel this task
        ctx.deadline_task = None
        self._timeouts += 1
        error = HeartbeatTimeout(
            "No pong received before deadline",
            timeout_s=self._config.pong_timeout_s,
            component="HeartbeatMonitor",
        )
        logger.error(f"[{self._name}] {error}")

        await self._alerts.heartbeat_timeout(self._config.pong_timeout_s)
        await self._force_close("heartbeat timeout")
