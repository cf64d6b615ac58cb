"""
Shared types, enums, and data structures for the live quote feed.

This module contains types that are used across multiple components
of the live feed system, including the outbound wire requests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class SessionState(str, Enum):
    """Lifecycle state of the streaming session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    SUBSCRIBED = "subscribed"
    ERROR = "error"


class MessageType(str, Enum):
    """Types of inbound frames received from the feed."""

    AUTH = "auth"
    SUBSCRIBE = "subscribe"
    PONG = "pong"
    KLINE = "kline"
    QUOTE = "quote"
    CONNECTED_ACK = "connected_ack"
    ERROR_RESPONSE = "error_response"
    UNKNOWN = "unknown"


class EventKind(str, Enum):
    """Kind of normalized event held by the history buffer."""

    KLINE = "kline"
    QUOTE = "quote"


@dataclass(frozen=True, slots=True)
class RoutedMessage:
    """Parsed message envelope from the websocket."""

    message_type: MessageType
    data: dict[str, Any]  # Full parsed JSON object
    recv_ts: int  # Local receive timestamp (Unix ms)

    @property
    def payload(self) -> dict[str, Any]:
        """The nested `data` object, or an empty dict."""
        inner = self.data.get("data")
        return inner if isinstance(inner, dict) else {}

    @property
    def symbol(self) -> Optional[str]:
        symbol = self.payload.get("s")
        return symbol if isinstance(symbol, str) else None


@dataclass(frozen=True, slots=True)
class KlineEvent:
    """Normalized bar (kline) update."""

    symbol: str
    period: int  # iTick bar period code (1=1m, 2=5m, ... 8=1d)
    open: float
    high: float
    low: float
    close: float
    volume: float
    turnover: float
    timestamp: int  # Bar timestamp (UTC ms)
    ts_recv: int  # Local receive timestamp (Unix ms)

    @property
    def price(self) -> float:
        return self.close


@dataclass(frozen=True, slots=True)
class QuoteEvent:
    """Normalized last-price quote update."""

    symbol: str
    last_price: float
    open: float
    high: float
    low: float
    volume: float
    turnover: float
    timestamp: int  # Quote timestamp (UTC ms)
    ts_recv: int  # Local receive timestamp (Unix ms)

    @property
    def price(self) -> float:
        return self.last_price


NormalizedEvent = Union[KlineEvent, QuoteEvent]


@dataclass
class ReconnectContext:
    """Mutable reconnect bookkeeping for one service run."""

    attempt: int = 0
    current_delay_ms: int = 0
    intentional_disconnect: bool = False


@dataclass
class HeartbeatContext:
    """Liveness bookkeeping; exists only while the session is subscribed."""

    last_ping_sent_ms: Optional[int] = None
    deadline_task: Optional[asyncio.Task[None]] = None
    pings_sent: int = 0
    pongs_received: int = 0


@dataclass(frozen=True)
class SubscribeRequest:
    """Outbound subscribe request; symbols are joined with '$'."""

    symbols: tuple[str, ...]
    types: str = "quote"

    def to_wire(self) -> dict[str, Any]:
        return {"ac": "subscribe", "params": "$".join(self.symbols), "types": self.types}


@dataclass(frozen=True)
class PingRequest:
    """Outbound heartbeat ping carrying the send time in Unix ms."""

    timestamp_ms: int

    def to_wire(self) -> dict[str, Any]:
        return {"ac": "ping", "params": str(self.timestamp_ms)}


OutboundRequest = Union[SubscribeRequest, PingRequest]


@dataclass
class ConnectionHealth:
    """Health snapshot for the streaming connection."""

    state: SessionState
    url: str
    connected_since: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    reconnect_attempt: int = 0
    message_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def is_healthy(self) -> bool:
        """Healthy means fully subscribed."""
        return self.state == SessionState.SUBSCRIBED


@dataclass
class ConnectionMetrics:
    """Counters for the streaming connection."""

    messages_received: int = 0
    bytes_received: int = 0
    messages_sent: int = 0
    send_failures: int = 0
    errors: int = 0
    connections_opened: int = 0

    connected_at: Optional[float] = None  # monotonic time
    last_message_at: Optional[float] = None  # monotonic time
