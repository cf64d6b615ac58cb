"""
Custom exceptions for the live quote feed.

Exception hierarchy:
- LiveFeedError (base)
  - TransportError: websocket could not open or failed at socket level
    - NotConnectedError: write attempted while the socket is not open
  - ProtocolError: frame could not be understood
    - MessageParseError: invalid/malformed frame or payload
  - HandlerError: handler processing failures
  - AuthenticationFailure: the feed rejected the credential (fatal)
  - AuthenticationTimeout: no auth result within the deadline (fatal)
  - SubscriptionError: subscribe request rejected (non-fatal)
  - HeartbeatTimeout: no pong before the deadline
  - ReconnectExhausted: max reconnect attempts used up (fatal)
  - AlreadyRunningError: start() called on a running service
  - ConfigurationError: invalid configuration
"""

from __future__ import annotations

from typing import Any, Optional


class LiveFeedError(Exception):
    """Base exception for all live feed errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class TransportError(LiveFeedError):
    """Raised when the websocket cannot be opened or fails at socket level."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        reconnect_attempt: int = 0,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        self.reconnect_attempt = reconnect_attempt
        details = details or {}
        if url:
            details["url"] = url
        details["reconnect_attempt"] = reconnect_attempt
        super().__init__(message, component=component, details=details)


class NotConnectedError(TransportError):
    """Raised (and reported, never propagated) when sending on a closed socket."""


class ProtocolError(LiveFeedError):
    """Raised when a frame is malformed or unrecognized."""


class MessageParseError(ProtocolError):
    """Raised when a frame or payload cannot be parsed."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        expected_type: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.raw_data = raw_data
        self.expected_type = expected_type
        details = details or {}
        if expected_type:
            details["expected_type"] = expected_type
        # raw_data stays out of details to keep log lines short
        super().__init__(message, component=component, details=details)


class HandlerError(LiveFeedError):
    """Raised when a message handler fails to process a message."""

    def __init__(
        self,
        message: str,
        *,
        handler_name: Optional[str] = None,
        message_type: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.handler_name = handler_name
        self.message_type = message_type
        details = details or {}
        if handler_name:
            details["handler_name"] = handler_name
        if message_type:
            details["message_type"] = message_type
        super().__init__(message, component=component, details=details)


class AuthenticationFailure(LiveFeedError):
    """Raised when the feed rejects the credential."""

    def __init__(
        self,
        message: str,
        *,
        response: Optional[dict[str, Any]] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.response = response or {}
        details = details or {}
        if response is not None:
            details["msg"] = response.get("msg")
        super().__init__(message, component=component, details=details)


class AuthenticationTimeout(LiveFeedError):
    """Raised when no authentication result arrives within the deadline."""

    def __init__(
        self,
        message: str,
        *,
        timeout_s: Optional[float] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.timeout_s = timeout_s
        details = details or {}
        if timeout_s is not None:
            details["timeout_s"] = timeout_s
        super().__init__(message, component=component, details=details)


class SubscriptionError(LiveFeedError):
    """Raised when a subscribe request cannot be sent or is rejected."""

    def __init__(
        self,
        message: str,
        *,
        symbols: Optional[list[str]] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.symbols = symbols or []
        details = details or {}
        if symbols:
            details["symbols"] = symbols
        super().__init__(message, component=component, details=details)


class HeartbeatTimeout(LiveFeedError):
    """Raised when a pong does not arrive before the deadline."""

    def __init__(
        self,
        message: str,
        *,
        timeout_s: Optional[float] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.timeout_s = timeout_s
        details = details or {}
        if timeout_s is not None:
            details["timeout_s"] = timeout_s
        super().__init__(message, component=component, details=details)


class ReconnectExhausted(LiveFeedError):
    """Raised when the maximum number of reconnect attempts is used up."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.attempts = attempts
        details = details or {}
        details["attempts"] = attempts
        super().__init__(message, component=component, details=details)


class AlreadyRunningError(LiveFeedError):
    """Raised when start() is called on a service that is already running."""


class ConfigurationError(LiveFeedError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
