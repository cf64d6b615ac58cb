"""
Message handlers for the live quote feed.

Lifecycle handlers drive the session state machine:
- AuthHandler: authentication result
- SubscribeHandler: subscription result

Data handlers parse iTick JSON into normalized, immutable events:
- KlineHandler: bar/kline payloads
- QuoteHandler: last-price quote payloads
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from quotefeed.live.errors import HandlerError, MessageParseError
from quotefeed.live.events import (
    Authenticated,
    AuthFailed,
    EventEmitter,
    SubscribeFailed,
    Subscribed,
)
from quotefeed.live.reconnect import ReconnectPolicy
from quotefeed.live.state import SessionStateMachine
from quotefeed.live.types import KlineEvent, QuoteEvent, RoutedMessage, SessionState

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_SUCCESS_MSG = "authenticated"
SUBSCRIBE_SUCCESS_MSG = "subscribe Successfully"


@dataclass
class HandlerStats:
    """Statistics for a message handler."""

    messages_received: int = 0
    messages_processed: int = 0
    messages_skipped: int = 0
    parse_errors: int = 0
    by_symbol: dict[str, int] = field(default_factory=dict)


class BaseHandler(ABC, Generic[T]):
    """
    Abstract base class for data handlers.

    Each handler:
    1. Receives RoutedMessage from the router
    2. Parses iTick JSON into an internal dataclass
    3. Calls the registered callback with the normalized event
    """

    def __init__(
        self,
        on_event: Callable[[T], Awaitable[None]],
        name: str = "handler",
    ) -> None:
        self._on_event = on_event
        self._name = name
        self._stats = HandlerStats()

    @property
    def stats(self) -> HandlerStats:
        """Get handler statistics."""
        return self._stats

    async def handle(self, msg: RoutedMessage) -> None:
        """Handle an incoming message."""
        self._stats.messages_received += 1

        try:
            event = self._parse(msg)
            if event is None:
                self._stats.messages_skipped += 1
                return

            self._stats.messages_processed += 1

            symbol = self._get_symbol(event)
            if symbol:
                self._stats.by_symbol[symbol] = self._stats.by_symbol.get(symbol, 0) + 1

            await self._on_event(event)

        except (MessageParseError, HandlerError) as e:
            self._stats.parse_errors += 1
            logger.warning(f"[{self._name}] Parse error: {e}")
        except Exception as e:
            self._stats.parse_errors += 1
            logger.error(f"[{self._name}] Unexpected error: {e}", exc_info=True)

    @abstractmethod
    def _parse(self, msg: RoutedMessage) -> Optional[T]:
        """Parse the message into an event. Return None to skip."""
        ...

    @abstractmethod
    def _get_symbol(self, event: T) -> Optional[str]:
        """Extract symbol from event for statistics."""
        ...

    def reset_stats(self) -> None:
        """Reset handler statistics."""
        self._stats = HandlerStats()


def _safe_float(value: Any, field_name: str) -> float:
    """Safely convert a value to float."""
    if isinstance(value, bool):
        raise MessageParseError(
            f"Invalid float value for {field_name}: {value}",
            expected_type="float",
        )
    try:
        if isinstance(value, float):
            return value
        return float(value)
    except (ValueError, TypeError) as e:
        raise MessageParseError(
            f"Invalid float value for {field_name}: {value}",
            expected_type="float",
        ) from e


def _safe_int(value: Any, field_name: str) -> int:
    """Safely convert a value to int."""
    try:
        return int(value)
    except (ValueError, TypeError) as e:
        raise MessageParseError(
            f"Invalid integer value for {field_name}: {value}",
            expected_type="int",
        ) from e


def _require_symbol(data: dict[str, Any], expected_type: str) -> str:
    symbol = data.get("s")
    if not isinstance(symbol, str) or not symbol:
        raise MessageParseError(
            f"Missing symbol in {expected_type} payload",
            expected_type=expected_type,
        )
    return symbol


class KlineHandler(BaseHandler[KlineEvent]):
    """
    Handler for kline/bar messages.

    iTick kline format:
    {
        "code": 1,
        "data": {
            "s": "EURUSD$GB",   // Symbol
            "t": 1,             // Bar period (1=1m, 2=5m, 3=10m, 4=30m, 5=1h, 8=1d, 9=1w, 10=1M)
            "k": {
                "o": 1.1000,    // Open
                "h": 1.1010,    // High
                "l": 1.0990,    // Low
                "c": 1.1005,    // Close
                "v": 1200,      // Volume
                "tu": 1320.6,   // Turnover
                "t": 1700000000000  // Bar timestamp (ms)
            }
        }
    }
    """

    def __init__(self, on_event: Callable[[KlineEvent], Awaitable[None]]) -> None:
        super().__init__(on_event, name="KlineHandler")

    def _parse(self, msg: RoutedMessage) -> Optional[KlineEvent]:
        data = msg.payload
        k = data.get("k")
        if not isinstance(k, dict):
            raise MessageParseError("Kline payload has no 'k' object", expected_type="kline")

        return KlineEvent(
            symbol=_require_symbol(data, "kline"),
            period=_safe_int(data.get("t", 0), "period"),
            open=_safe_float(k.get("o"), "open"),
            high=_safe_float(k.get("h"), "high"),
            low=_safe_float(k.get("l"), "low"),
            close=_safe_float(k.get("c"), "close"),
            volume=_safe_float(k.get("v", 0), "volume"),
            turnover=_safe_float(k.get("tu", 0), "turnover"),
            timestamp=_safe_int(k.get("t"), "timestamp"),
            ts_recv=msg.recv_ts,
        )

    def _get_symbol(self, event: KlineEvent) -> Optional[str]:
        return event.symbol


class QuoteHandler(BaseHandler[QuoteEvent]):
    """
    Handler for quote messages.

    iTick quote format:
    {
        "code": 1,
        "data": {
            "s": "EURUSD$GB",   // Symbol
            "ld": 1.1003,       // Last price
            "o": 1.1000,        // Open
            "h": 1.1010,        // High
            "l": 1.0990,        // Low
            "v": 1200,          // Volume
            "tu": 1320.6,       // Turnover
            "t": 1700000000000, // Timestamp (ms)
            "ts": 1700000000,   // Timestamp (s)
            "type": "quote"
        }
    }
    """

    def __init__(self, on_event: Callable[[QuoteEvent], Awaitable[None]]) -> None:
        super().__init__(on_event, name="QuoteHandler")

    def _parse(self, msg: RoutedMessage) -> Optional[QuoteEvent]:
        data = msg.payload

        return QuoteEvent(
            symbol=_require_symbol(data, "quote"),
            last_price=_safe_float(data.get("ld"), "last_price"),
            open=_safe_float(data.get("o", 0), "open"),
            high=_safe_float(data.get("h", 0), "high"),
            low=_safe_float(data.get("l", 0), "low"),
            volume=_safe_float(data.get("v", 0), "volume"),
            turnover=_safe_float(data.get("tu", 0), "turnover"),
            timestamp=_safe_int(data.get("t", msg.recv_ts), "timestamp"),
            ts_recv=msg.recv_ts,
        )

    def _get_symbol(self, event: QuoteEvent) -> Optional[str]:
        return event.symbol


class AuthHandler:
    """Applies the feed's authentication result to the session."""

    def __init__(
        self,
        state: SessionStateMachine,
        reconnect: ReconnectPolicy,
        emitter: EventEmitter,
    ) -> None:
        self._state = state
        self._reconnect = reconnect
        self._emitter = emitter

    async def handle(self, msg: RoutedMessage) -> None:
        if msg.data.get("msg") == AUTH_SUCCESS_MSG:
            if not self._state.transition(SessionState.AUTHENTICATED):
                return
            logger.info("Authentication succeeded")
            self._reconnect.reset_attempts()
            await self._emitter.emit(Authenticated())
        else:
            logger.error(f"Authentication failed: {msg.data.get('msg')!r}")
            self._state.transition(SessionState.ERROR)
            await self._emitter.emit(AuthFailed(raw=dict(msg.data)))


class SubscribeHandler:
    """Applies the feed's subscription result to the session."""

    def __init__(self, state: SessionStateMachine, emitter: EventEmitter) -> None:
        self._state = state
        self._emitter = emitter

    async def handle(self, msg: RoutedMessage) -> None:
        if msg.data.get("msg") == SUBSCRIBE_SUCCESS_MSG:
            # Entering SUBSCRIBED arms the heartbeat through the state listener
            if not self._state.transition(SessionState.SUBSCRIBED):
                return
            logger.info("Subscription confirmed")
            await self._emitter.emit(Subscribed())
        else:
            logger.error(f"Subscription failed: {msg.data.get('msg')!r}")
            await self._emitter.emit(SubscribeFailed(raw=dict(msg.data)))
