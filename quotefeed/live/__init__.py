"""
Live Quote Feed Module.

This module keeps one authenticated, subscribed websocket session to the iTick
market-data feed and republishes normalized kline/quote events to local
consumers.

Components:
- FeedService: Top-level orchestration and lifecycle management
- TransportSession: Websocket lifecycle, frame delivery, outbound requests
- SessionStateMachine: Authoritative connection lifecycle state
- MessageRouter: Message classification and routing to handlers
- Handlers: AuthHandler, SubscribeHandler, KlineHandler, QuoteHandler
- HeartbeatMonitor: Ping/pong liveness while subscribed
- ReconnectPolicy: Exponential backoff after unintended disconnects
- HistoryBuffer: Bounded recent history for queries

Usage:
    from quotefeed.live import FeedConfig, FeedService

    config = FeedConfig(token="...", symbols=("EURUSD$GB", "USDJPY$GB"))
    service = FeedService(config, alerts=notifier)
    await service.start()
"""

from quotefeed.live.buffer import HistoryBuffer
from quotefeed.live.config import (
    BufferConfig,
    ConnectionConfig,
    FeedConfig,
    HeartbeatConfig,
    ReconnectConfig,
)
from quotefeed.live.errors import (
    AlreadyRunningError,
    AuthenticationFailure,
    AuthenticationTimeout,
    ConfigurationError,
    HandlerError,
    HeartbeatTimeout,
    LiveFeedError,
    MessageParseError,
    NotConnectedError,
    ProtocolError,
    ReconnectExhausted,
    SubscriptionError,
    TransportError,
)
from quotefeed.live.events import EventEmitter, FeedEvent
from quotefeed.live.service import FeedService
from quotefeed.live.types import (
    ConnectionHealth,
    EventKind,
    KlineEvent,
    MessageType,
    QuoteEvent,
    SessionState,
)

__all__ = [
    # Main entry point
    "FeedService",
    "FeedConfig",
    "ConnectionConfig",
    "ReconnectConfig",
    "HeartbeatConfig",
    "BufferConfig",
    # Events
    "EventEmitter",
    "FeedEvent",
    # Types
    "SessionState",
    "MessageType",
    "EventKind",
    "KlineEvent",
    "QuoteEvent",
    "ConnectionHealth",
    "HistoryBuffer",
    # Errors
    "LiveFeedError",
    "TransportError",
    "NotConnectedError",
    "ProtocolError",
    "MessageParseError",
    "HandlerError",
    "AuthenticationFailure",
    "AuthenticationTimeout",
    "SubscriptionError",
    "HeartbeatTimeout",
    "ReconnectExhausted",
    "AlreadyRunningError",
    "ConfigurationError",
]
