"""
Quote Feed Service - top-level orchestration.

Wires the live feed components together and owns the service lifecycle:
- TransportSession for the websocket
- MessageRouter + handlers for classification and parsing
- SessionStateMachine for the connection lifecycle
- HeartbeatMonitor for liveness while subscribed
- ReconnectPolicy for unintended disconnects
- HistoryBuffer for downstream queries
- EventEmitter for external collaborators
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from quotefeed.live.alerts import BackgroundAlerts
from quotefeed.live.buffer import HistoryBuffer
from quotefeed.live.config import FeedConfig
from quotefeed.live.connection import TransportSession, WsFactory
from quotefeed.live.detector import PriceChangeDetector
from quotefeed.live.errors import (
    AlreadyRunningError,
    AuthenticationFailure,
    AuthenticationTimeout,
    LiveFeedError,
    ReconnectExhausted,
    SubscriptionError,
)
from quotefeed.live.events import (
    Authenticated,
    AuthFailed,
    EventEmitter,
    FeedEvent,
    KlineReceived,
    MaxReconnectAttemptsReached,
    QuoteReceived,
    Started,
    Stopped,
)
from quotefeed.live.handlers import AuthHandler, KlineHandler, QuoteHandler, SubscribeHandler
from quotefeed.live.heartbeat import HeartbeatMonitor
from quotefeed.live.reconnect import ReconnectPolicy
from quotefeed.live.router import MessageRouter
from quotefeed.live.state import SessionStateMachine
from quotefeed.live.types import (
    ConnectionHealth,
    EventKind,
    KlineEvent,
    MessageType,
    NormalizedEvent,
    QuoteEvent,
    RoutedMessage,
    SessionState,
    SubscribeRequest,
)
from quotefeed.ports.alerting import AlertSink

logger = logging.getLogger(__name__)


class FeedService:
    """
    Maintains one authenticated, subscribed feed session.

    Lifecycle:
        start(symbols) --open--> wait for auth --subscribe--> [running]
        [running] --stop()--> cancel reconnect, close, clear buffers --> [stopped]

    After a reconnect the feed re-authenticates on its own; the service then
    re-sends the current subscription. Authentication failure after start and
    reconnect exhaustion are fatal: the service stops and records `fatal_error`.

    Usage:
        service = FeedService(FeedConfig(token="..."), alerts=notifier)
        service.emitter.subscribe(listener)

        await service.start(["EURUSD$GB"])
        # ... running ...
        await service.stop()
    """

    def __init__(
        self,
        config: FeedConfig,
        alerts: AlertSink,
        emitter: Optional[EventEmitter] = None,
        ws_factory: Optional[WsFactory] = None,
    ) -> None:
        """
        Args:
            config: Feed configuration
            alerts: Alerting collaborator
            emitter: Event channel (a new one is created if omitted)
            ws_factory: Optional transport factory passed to TransportSession
        """
        self._config = config
        # Alerts never hold up the heartbeat, reconnect or transport paths
        self._alerts = BackgroundAlerts(alerts, name=f"{config.name}_alerts")
        self._name = config.name

        self._running = False
        self._starting = False
        self._symbols: tuple[str, ...] = config.symbols
        self._started_at: Optional[datetime] = None
        self._fatal_error: Optional[LiveFeedError] = None

        self._emitter = emitter or EventEmitter(name=f"{self._name}_events")
        self._state = SessionStateMachine(name=f"{self._name}_state")
        self._buffer = HistoryBuffer(capacity=config.buffer.capacity)
        self._detector = PriceChangeDetector(config.buffer.significant_change_pct)
        self._reconnect = ReconnectPolicy(
            config.reconnect, self._emitter, self._alerts, name=f"{self._name}_reconnect"
        )
        self._router = MessageRouter()
        self._session = TransportSession(
            url=config.connection.url,
            token=config.token,
            config=config.connection,
            state=self._state,
            reconnect=self._reconnect,
            emitter=self._emitter,
            alerts=self._alerts,
            on_frame=self._router.route_frame,
            ws_factory=ws_factory,
            name=f"{self._name}_ws",
        )
        self._heartbeat = HeartbeatMonitor(
            config.heartbeat,
            send=self._session.send,
            force_close=self._session.force_close,
            alerts=self._alerts,
            name=f"{self._name}_heartbeat",
        )
        self._state.add_listener(self._heartbeat.on_state_change)

        self._setup_handlers()
        self._emitter.subscribe(self._on_lifecycle_event)

    def _setup_handlers(self) -> None:
        self._kline_handler = KlineHandler(on_event=self._on_kline)
        self._quote_handler = QuoteHandler(on_event=self._on_quote)
        auth_handler = AuthHandler(self._state, self._reconnect, self._emitter)
        subscribe_handler = SubscribeHandler(self._state, self._emitter)

        self._router.register_handler(MessageType.AUTH, auth_handler.handle)
        self._router.register_handler(MessageType.SUBSCRIBE, subscribe_handler.handle)
        self._router.register_handler(MessageType.PONG, self._on_pong)
        self._router.register_handler(MessageType.KLINE, self._kline_handler.handle)
        self._router.register_handler(MessageType.QUOTE, self._quote_handler.handle)

        logger.debug(f"[{self._name}] Handlers registered")

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    @property
    def config(self) -> FeedConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        return self._state.state

    @property
    def buffer(self) -> HistoryBuffer:
        return self._buffer

    @property
    def fatal_error(self) -> Optional[LiveFeedError]:
        """Error that stopped the service on its own, if any."""
        return self._fatal_error

    # --- Lifecycle ---

    async def start(self, symbols: Optional[Iterable[str]] = None) -> None:
        """
        Open, authenticate and subscribe.

        Raises:
            AlreadyRunningError: If the service is running or starting
            SubscriptionError: If the symbol list is empty
            TransportError: If the websocket cannot be opened
            AuthenticationTimeout: If no auth result arrives in time
            AuthenticationFailure: If the feed rejects the token
        """
        if self._running or self._starting:
            raise AlreadyRunningError("Service is already running", component="FeedService")

        requested = tuple(symbols) if symbols is not None else self._config.symbols
        if not requested:
            raise SubscriptionError("No symbols to subscribe", component="FeedService")

        logger.info(f"[{self._name}] Starting feed for {list(requested)}")
        self._symbols = requested
        self._fatal_error = None
        self._starting = True
        self._reconnect.new_context()
        self._detector.reset()

        # Registered before open() so the result cannot be missed
        auth_result = self._emitter.expect(Authenticated, AuthFailed)
        timeout_s = self._config.connection.auth_timeout_s
        try:
            await self._session.open()
            try:
                event = await asyncio.wait_for(auth_result, timeout=timeout_s)
            except asyncio.TimeoutError:
                logger.error(f"[{self._name}] No authentication result within {timeout_s}s")
                raise AuthenticationTimeout(
                    "Timed out waiting for authentication",
                    timeout_s=timeout_s,
                    component="FeedService",
                ) from None

            if isinstance(event, AuthFailed):
                raise AuthenticationFailure(
                    "Feed rejected the token",
                    response=event.raw,
                    component="FeedService",
                )
        except BaseException:
            if not auth_result.done():
                auth_result.cancel()
            await self._teardown()
            raise
        finally:
            self._starting = False

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        await self._send_subscribe()
        await self._emitter.emit(Started(symbols=self._symbols))
        logger.info(f"[{self._name}] Feed started")

    async def stop(self) -> None:
        """Stop the feed. Safe to call repeatedly."""
        if not self._running:
            logger.warning(f"[{self._name}] Stop requested but service is not running")
            return

        logger.info(f"[{self._name}] Stopping feed...")
        self._running = False
        await self._teardown()
        self._buffer.clear()
        self._detector.reset()
        self._started_at = None

        await self._emitter.emit(Stopped())
        logger.info(f"[{self._name}] Feed stopped")

    async def resubscribe(self, symbols: Iterable[str]) -> None:
        """Replace the subscription set and re-send subscribe on the open session."""
        if not self._running:
            logger.warning(f"[{self._name}] Resubscribe requested but service is not running")
            return

        requested = tuple(symbols)
        if not requested:
            raise SubscriptionError("No symbols to subscribe", component="FeedService")

        self._symbols = requested
        if not self._state.can_subscribe:
            # Picked up by the next Authenticated after reconnect
            logger.warning(
                f"[{self._name}] Session is {self._state.state.value}, "
                f"subscription will be sent after re-authentication"
            )
            return

        await self._send_subscribe()

    async def _teardown(self) -> None:
        await self._reconnect.cancel()
        self._heartbeat.disarm()
        await self._session.close()

    async def _send_subscribe(self) -> bool:
        request = SubscribeRequest(symbols=self._symbols)
        if await self._session.send(request):
            logger.info(f"[{self._name}] Subscribe sent: {request.to_wire()['params']}")
            return True

        error = SubscriptionError(
            "Subscribe request not sent",
            symbols=list(self._symbols),
            component="FeedService",
        )
        logger.warning(f"[{self._name}] {error}")
        return False

    async def _fail(self, error: LiveFeedError) -> None:
        logger.error(f"[{self._name}] Fatal: {error}")
        self._fatal_error = error
        await self.stop()

    # --- Callbacks ---

    async def _on_lifecycle_event(self, event: FeedEvent) -> None:
        if self._starting or not self._running:
            return

        if isinstance(event, Authenticated):
            await self._send_subscribe()
        elif isinstance(event, AuthFailed):
            await self._fail(
                AuthenticationFailure(
                    "Feed rejected the token after reconnect",
                    response=event.raw,
                    component="FeedService",
                )
            )
        elif isinstance(event, MaxReconnectAttemptsReached):
            await self._fail(
                ReconnectExhausted(
                    "Reconnect attempts exhausted",
                    attempts=event.attempts,
                    component="FeedService",
                )
            )

    async def _on_pong(self, msg: RoutedMessage) -> None:
        self._heartbeat.on_pong(msg.payload.get("params"))

    async def _on_kline(self, event: KlineEvent) -> None:
        self._buffer.append(event)
        await self._emitter.emit(KlineReceived(event=event))
        await self._detect(event)

    async def _on_quote(self, event: QuoteEvent) -> None:
        self._buffer.append(event)
        await self._emitter.emit(QuoteReceived(event=event))
        await self._detect(event)

    async def _detect(self, event: NormalizedEvent) -> None:
        change = self._detector.check(event)
        if change is not None:
            await self._emitter.emit(change)

    # --- Queries ---

    def is_running(self) -> bool:
        return self._running

    def get_subscribed_symbols(self) -> list[str]:
        return list(self._symbols)

    def get_connection_status(self) -> SessionState:
        return self._state.state

    def get_health(self) -> ConnectionHealth:
        return self._session.get_health()

    def get_recent_klines(self, symbol: Optional[str] = None, limit: int = 100) -> list[KlineEvent]:
        return self._buffer.query(EventKind.KLINE, symbol, limit)  # type: ignore[return-value]

    def get_recent_quotes(self, symbol: Optional[str] = None, limit: int = 100) -> list[QuoteEvent]:
        return self._buffer.query(EventKind.QUOTE, symbol, limit)  # type: ignore[return-value]

    def get_klines_in_range(self, symbol: str, start_ms: int, end_ms: int) -> list[KlineEvent]:
        return self._buffer.query_range(symbol, start_ms, end_ms)

    async def flush_alerts(self, timeout_s: float = 5.0) -> None:
        """Wait for in-flight alerts (e.g. before process exit)."""
        await self._alerts.flush(timeout_s)

    def get_stats(self) -> dict[str, Any]:
        """Get statistics summary."""
        metrics = self._session.metrics
        router_stats = self._router.stats
        return {
            "running": self._running,
            "state": self._state.state.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "symbols": list(self._symbols),
            "reconnect_attempt": self._reconnect.attempt,
            "connection": {
                "messages_received": metrics.messages_received,
                "bytes_received": metrics.bytes_received,
                "messages_sent": metrics.messages_sent,
                "send_failures": metrics.send_failures,
                "errors": metrics.errors,
                "connections_opened": metrics.connections_opened,
            },
            "router": {
                "total_messages": router_stats.total_messages,
                "routed_messages": router_stats.routed_messages,
                "dropped_messages": router_stats.dropped_messages,
                "parse_errors": router_stats.parse_errors,
                "by_type": dict(router_stats.by_type),
            },
            "kline_handler": {
                "processed": self._kline_handler.stats.messages_processed,
                "errors": self._kline_handler.stats.parse_errors,
            },
            "quote_handler": {
                "processed": self._quote_handler.stats.messages_processed,
                "errors": self._quote_handler.stats.parse_errors,
            },
            "heartbeat": {
                "armed": self._heartbeat.is_armed,
                "timeouts": self._heartbeat.timeouts,
            },
            "alerts": {
                "pending": self._alerts.pending,
                "failed": self._alerts.failed,
            },
            "buffer": {
                "capacity": self._buffer.capacity,
                "klines": self._buffer.size(EventKind.KLINE),
                "quotes": self._buffer.size(EventKind.QUOTE),
            },
        }
