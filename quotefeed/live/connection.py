"""
Transport session for the iTick websocket.

Owns exactly one physical websocket at a time:
- Opening with the feed token in the handshake headers
- Delivering raw frames, in order, to the router callback
- Serializing outbound requests (fire-and-forget)
- Caller-initiated (intentional) and forced (unintended) shutdown
- Handing unintended disconnects to the reconnection policy
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

import aiohttp
import orjson

from quotefeed.live.config import ConnectionConfig
from quotefeed.live.errors import NotConnectedError, TransportError
from quotefeed.live.events import Disconnected, EventEmitter
from quotefeed.live.reconnect import ReconnectPolicy
from quotefeed.live.state import SessionStateMachine
from quotefeed.live.types import (
    ConnectionHealth,
    ConnectionMetrics,
    OutboundRequest,
    SessionState,
)
from quotefeed.ports.alerting import AlertSink
from quotefeed.utils.tasks import cancel_task

logger = logging.getLogger(__name__)

FrameCallback = Callable[[Union[str, bytes], int], Awaitable[None]]
WsFactory = Callable[[], Awaitable[Any]]

CLIENT_CLOSE_CODE = 1000
FORCED_CLOSE_CODE = 4000


class TransportSession:
    """
    Manages the streaming websocket for one service.

    The TransportSession does NOT parse messages - it delivers raw text
    frames to the registered callback. Classification is handled by
    MessageRouter.

    Usage:
        session = TransportSession(
            url="wss://api.itick.org/forex",
            token="...",
            config=ConnectionConfig(),
            state=state,
            reconnect=policy,
            emitter=emitter,
            alerts=alerts,
            on_frame=router.route_frame,
        )
        await session.open()
        await session.send(SubscribeRequest(("EURUSD$GB",)))
        # ... later ...
        await session.close()
    """

    def __init__(
        self,
        url: str,
        token: str,
        config: ConnectionConfig,
        state: SessionStateMachine,
        reconnect: ReconnectPolicy,
        emitter: EventEmitter,
        alerts: AlertSink,
        on_frame: FrameCallback,
        ws_factory: Optional[WsFactory] = None,
        name: str = "transport",
    ) -> None:
        """
        Args:
            url: Websocket URL to connect to
            token: Feed credential, sent as the `token` handshake header
            config: Connection configuration
            state: Session state machine (this session is one of its writers)
            reconnect: Policy consulted on unintended disconnects
            emitter: Event channel for `Disconnected`
            alerts: Alerting collaborator for connection errors
            on_frame: Async callback for received frames (raw, recv_ts_ms)
            ws_factory: Optional coroutine returning an open websocket; replaces
                the aiohttp handshake (tests, alternative transports)
            name: Name for logging purposes
        """
        self._url = url
        self._token = token
        self._config = config
        self._state = state
        self._reconnect = reconnect
        self._emitter = emitter
        self._alerts = alerts
        self._on_frame = on_frame
        self._ws_factory = ws_factory
        self._name = name

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[Any] = None
        self._receive_task: Optional[asyncio.Task[None]] = None
        # Close path runs once per physical connection
        self._close_handled = True

        self._metrics = ConnectionMetrics()
        self._connected_at: Optional[datetime] = None
        self._last_message_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_error_at: Optional[datetime] = None

    @property
    def state(self) -> SessionState:
        return self._state.state

    @property
    def is_open(self) -> bool:
        """True while the underlying socket is open."""
        return self._ws is not None and not self._ws.closed

    @property
    def url(self) -> str:
        return self._url

    @property
    def metrics(self) -> ConnectionMetrics:
        return self._metrics

    async def open(self) -> None:
        """
        Open the websocket.

        Raises:
            TransportError: If the transport cannot be opened
        """
        if self.is_open:
            logger.warning(f"[{self._name}] Already open")
            return

        self._state.transition(SessionState.CONNECTING)
        logger.info(f"[{self._name}] Connecting to {self._url}")

        try:
            ws = await self._establish_connection()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_error(e)
            raise TransportError(
                f"Failed to open websocket: {e}",
                url=self._url,
                reconnect_attempt=self._reconnect.attempt,
                component="TransportSession",
            ) from e

        self._ws = ws
        self._close_handled = False
        self._connected_at = datetime.now(timezone.utc)
        self._metrics.connected_at = time.monotonic()
        self._metrics.connections_opened += 1

        self._state.transition(SessionState.CONNECTED)
        logger.info(f"[{self._name}] Connected")

        self._receive_task = asyncio.create_task(
            self._receive_loop(ws), name=f"{self._name}_receive"
        )

    async def _establish_connection(self) -> Any:
        if self._ws_factory is not None:
            return await self._ws_factory()

        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.connect_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

        return await self._session.ws_connect(
            self._url,
            headers={"token": self._token},
            autoping=True,
        )

    async def _receive_loop(self, ws: Any) -> None:
        """Deliver frames until the socket closes."""
        reason = "connection closed by server"
        try:
            async for msg in ws:
                recv_ts = int(time.time() * 1000)
                self._last_message_at = datetime.now(timezone.utc)
                self._metrics.last_message_at = time.monotonic()
                self._metrics.messages_received += 1

                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._metrics.bytes_received += len(msg.data)
                    try:
                        await self._on_frame(msg.data, recv_ts)
                    except Exception as e:
                        logger.error(f"[{self._name}] Frame handling error: {e}", exc_info=True)
                        self._metrics.errors += 1

                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.debug(f"[{self._name}] Received binary message (ignored)")

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception() or TransportError(
                        "Websocket error", url=self._url, component="TransportSession"
                    )
                    await self._handle_error(error)
                    reason = f"websocket error: {error}"
                    break

        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] Receive loop cancelled")
            raise
        except Exception as e:
            await self._handle_error(e)
            reason = f"receive error: {e}"

        await self._close_socket(ws, FORCED_CLOSE_CODE, reason)
        await self._handle_closed(ws.close_code, reason)

    async def send(self, request: OutboundRequest) -> bool:
        """
        Serialize and write `request` if the socket is open.

        Never raises into the caller: a closed socket is reported as a
        NotConnectedError in the log and the call returns False.
        """
        payload = request.to_wire()
        ws = self._ws
        if ws is None or ws.closed:
            error = NotConnectedError(
                "Websocket not open, request dropped",
                url=self._url,
                reconnect_attempt=self._reconnect.attempt,
                component="TransportSession",
                details={"ac": payload.get("ac")},
            )
            self._metrics.send_failures += 1
            logger.error(f"[{self._name}] {error}")
            return False

        try:
            await ws.send_str(orjson.dumps(payload).decode("utf-8"))
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            self._metrics.send_failures += 1
            logger.error(f"[{self._name}] Send failed: {e}")
            return False

        self._metrics.messages_sent += 1
        return True

    async def close(self) -> None:
        """Caller-initiated shutdown; never triggers a reconnect."""
        logger.info(f"[{self._name}] Closing connection")
        # Must be set before the socket closes so the close path sees it
        self._reconnect.mark_intentional()

        await self._shutdown(CLIENT_CLOSE_CODE, "closed by client")

        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.info(f"[{self._name}] Connection closed")

    async def force_close(self, reason: str) -> None:
        """Unintended shutdown (e.g. heartbeat timeout); the close path may reconnect."""
        logger.warning(f"[{self._name}] Forcing connection closed: {reason}")
        await self._shutdown(FORCED_CLOSE_CODE, reason)

    async def _shutdown(self, code: int, reason: str) -> None:
        ws = self._ws
        task, self._receive_task = self._receive_task, None
        await cancel_task(task)

        if ws is None:
            self._state.transition(SessionState.DISCONNECTED)
            return

        await self._close_socket(ws, code, reason)
        await self._handle_closed(ws.close_code if ws.close_code is not None else code, reason)

    async def _close_socket(self, ws: Any, code: int, reason: str) -> None:
        if ws.closed:
            return
        try:
            await asyncio.wait_for(
                ws.close(code=code, message=reason.encode("utf-8")),
                timeout=self._config.close_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{self._name}] Timed out waiting for close handshake")
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            logger.warning(f"[{self._name}] Error closing websocket: {e}")

    async def _handle_error(self, error: BaseException) -> None:
        """Transport-level error: enter ERROR and alert."""
        self._metrics.errors += 1
        self._last_error = str(error)
        self._last_error_at = datetime.now(timezone.utc)
        logger.error(f"[{self._name}] Websocket error: {error}")

        self._state.transition(SessionState.ERROR)
        await self._alerts.connection_error(error, self._reconnect.attempt or None)

    async def _handle_closed(self, code: Optional[int], reason: str) -> None:
        """Close path for one physical connection."""
        if self._close_handled:
            return
        self._close_handled = True
        self._ws = None
        self._connected_at = None

        logger.warning(f"[{self._name}] Connection closed (code={code}, reason={reason})")
        # Leaving SUBSCRIBED tears the heartbeat down through the state listener
        self._state.transition(SessionState.DISCONNECTED)
        await self._emitter.emit(Disconnected(code=code, reason=reason))

        await self._reconnect.on_disconnect(self.open)

    def get_health(self) -> ConnectionHealth:
        """Get current connection health snapshot."""
        return ConnectionHealth(
            state=self._state.state,
            url=self._url,
            connected_since=self._connected_at,
            last_message_at=self._last_message_at,
            reconnect_attempt=self._reconnect.attempt,
            message_count=self._metrics.messages_received,
            error_count=self._metrics.errors,
            last_error=self._last_error,
            last_error_at=self._last_error_at,
        )
