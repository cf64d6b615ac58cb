"""
Message Router for the live quote feed.

Parses raw websocket frames and routes them to handlers by message type
(auth, subscribe, pong, kline, quote, ...).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import orjson

from quotefeed.live.errors import MessageParseError
from quotefeed.live.types import MessageType, RoutedMessage

logger = logging.getLogger(__name__)

Handler = Callable[[RoutedMessage], Awaitable[None]]

# Message types that are only logged
LOG_ONLY_TYPES = frozenset(
    {MessageType.CONNECTED_ACK, MessageType.ERROR_RESPONSE, MessageType.UNKNOWN}
)


@dataclass
class RouterStats:
    """Statistics for message routing."""

    total_messages: int = 0
    routed_messages: int = 0
    dropped_messages: int = 0
    parse_errors: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


class MessageRouter:
    """
    Routes incoming iTick frames to appropriate handlers.

    Classification, in priority order:
    1. Numeric "code":
       - code 1 + "resAc": auth / subscribe / pong
       - code 1 + "data": kline when data has "k", quote when data.type == "quote"
       - code 1 with neither: connection acknowledgement
       - any other code: error response
    2. No code but resAc == "pong": pong
    3. Everything else: unknown

    Malformed frames are counted and logged; they never raise out of `route`.
    """

    RES_AC_TYPE_MAP: dict[str, MessageType] = {
        "auth": MessageType.AUTH,
        "subscribe": MessageType.SUBSCRIBE,
        "pong": MessageType.PONG,
    }

    def __init__(self) -> None:
        """Initialize the message router."""
        self._handlers: dict[MessageType, list[Handler]] = {}
        self._stats = RouterStats()

    @property
    def stats(self) -> RouterStats:
        """Get routing statistics."""
        return self._stats

    def register_handler(self, message_type: MessageType, handler: Handler) -> None:
        """
        Register a handler for a specific message type.

        Multiple handlers can be registered for the same type.
        They will be called in registration order.
        """
        self._handlers.setdefault(message_type, []).append(handler)
        logger.debug(f"Registered handler for {message_type.value}")

    async def route_frame(self, raw: Union[str, bytes], recv_ts: Optional[int] = None) -> None:
        """Parse a raw text frame and route it."""
        if recv_ts is None:
            recv_ts = int(time.time() * 1000)

        try:
            data = self._parse_frame(raw)
        except MessageParseError as e:
            self._stats.total_messages += 1
            self._stats.parse_errors += 1
            logger.warning(f"Failed to parse frame: {e}")
            return

        await self.route(data, recv_ts)

    async def route(self, data: dict[str, Any], recv_ts: int) -> None:
        """
        Route a parsed message to appropriate handlers.

        Args:
            data: Parsed JSON object from the websocket
            recv_ts: Receive timestamp in milliseconds
        """
        self._stats.total_messages += 1

        routed_msg = self.classify(data, recv_ts)

        type_key = routed_msg.message_type.value
        self._stats.by_type[type_key] = self._stats.by_type.get(type_key, 0) + 1

        if routed_msg.message_type in LOG_ONLY_TYPES:
            self._log_only(routed_msg)

        handlers = self._handlers.get(routed_msg.message_type, [])
        if not handlers:
            self._stats.dropped_messages += 1
            return

        self._stats.routed_messages += 1
        for handler in handlers:
            try:
                await handler(routed_msg)
            except Exception as e:
                logger.error(
                    f"Handler error for {routed_msg.message_type.value}: {e}",
                    exc_info=True,
                )

    @staticmethod
    def _parse_frame(raw: Union[str, bytes]) -> dict[str, Any]:
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise MessageParseError(
                f"Invalid JSON: {e}",
                raw_data=raw if isinstance(raw, str) else raw.decode("utf-8", "replace"),
                expected_type="json",
            ) from e

        if not isinstance(data, dict):
            raise MessageParseError(
                f"Expected JSON object, got {type(data).__name__}",
                expected_type="object",
            )
        return data

    def classify(self, data: dict[str, Any], recv_ts: int) -> RoutedMessage:
        """Classify a parsed frame and wrap it in a RoutedMessage."""
        return RoutedMessage(
            message_type=self._detect_type(data),
            data=data,
            recv_ts=recv_ts,
        )

    def _detect_type(self, data: dict[str, Any]) -> MessageType:
        code = data.get("code")
        res_ac = data.get("resAc")

        if _is_number(code):
            if code != 1:
                return MessageType.ERROR_RESPONSE

            if res_ac is not None:
                if not isinstance(res_ac, str):
                    return MessageType.UNKNOWN
                return self.RES_AC_TYPE_MAP.get(res_ac, MessageType.UNKNOWN)

            payload = data.get("data")
            if payload:
                if not isinstance(payload, dict):
                    return MessageType.UNKNOWN
                if "k" in payload:
                    return MessageType.KLINE
                if payload.get("type") == "quote":
                    return MessageType.QUOTE
                return MessageType.UNKNOWN

            return MessageType.CONNECTED_ACK

        if res_ac == "pong":
            return MessageType.PONG

        return MessageType.UNKNOWN

    @staticmethod
    def _log_only(msg: RoutedMessage) -> None:
        if msg.message_type == MessageType.CONNECTED_ACK:
            logger.info(f"Connection acknowledged: {msg.data.get('msg')!r}")
        elif msg.message_type == MessageType.ERROR_RESPONSE:
            logger.warning(f"Error response (code={msg.data.get('code')}): {msg.data.get('msg')!r}")
        else:
            logger.warning(f"Unknown message format: {list(msg.data.keys())[:5]}")

    def get_handler_count(self, message_type: MessageType) -> int:
        """Get number of registered handlers for a message type."""
        return len(self._handlers.get(message_type, []))

    def clear_handlers(self) -> None:
        """Clear all registered handlers."""
        self._handlers.clear()

    def reset_stats(self) -> None:
        """Reset routing statistics."""
        self._stats = RouterStats()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
