"""
Configuration types for the live quote feed.

Provides immutable, validated configuration dataclasses for all live feed components.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from quotefeed.live.errors import ConfigurationError

# iTick websocket endpoints
ITICK_WS_ENDPOINTS: dict[str, str] = {
    "forex": "wss://api.itick.org/forex",
    "stock": "wss://api.itick.org/stock",
    "crypto": "wss://api.itick.org/crypto",
    "indices": "wss://api.itick.org/indices",
}

DEFAULT_SYMBOLS: tuple[str, ...] = ("EURUSD$GB",)


@dataclass(frozen=True)
class ConnectionConfig:
    """Configuration for the single streaming connection."""

    url: str = ITICK_WS_ENDPOINTS["forex"]

    connect_timeout_s: float = 10.0
    close_timeout_s: float = 5.0
    auth_timeout_s: float = 10.0  # start() waits this long for the auth result

    def __post_init__(self) -> None:
        if not self.url.startswith(("ws://", "wss://")):
            raise ConfigurationError(
                "url must be a ws:// or wss:// URL",
                field="url",
                value=self.url,
            )
        for name in ("connect_timeout_s", "close_timeout_s", "auth_timeout_s"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"{name} must be positive",
                    field=name,
                    value=getattr(self, name),
                )


@dataclass(frozen=True)
class ReconnectConfig:
    """Configuration for the reconnection policy (delays in milliseconds)."""

    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30_000

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ConfigurationError(
                "max_attempts must be non-negative",
                field="max_attempts",
                value=self.max_attempts,
            )
        if self.base_delay_ms <= 0:
            raise ConfigurationError(
                "base_delay_ms must be positive",
                field="base_delay_ms",
                value=self.base_delay_ms,
            )
        if self.max_delay_ms < self.base_delay_ms:
            raise ConfigurationError(
                "max_delay_ms must be >= base_delay_ms",
                field="max_delay_ms",
                value=self.max_delay_ms,
            )


@dataclass(frozen=True)
class HeartbeatConfig:
    """
    Configuration for the ping/pong liveness monitor.

    `pong_timeout_s` may exceed `interval_s`: the deadline runs from the oldest
    unanswered ping, so overlapping pings never postpone it.
    """

    interval_s: float = 60.0
    pong_timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if self.interval_s <= 0:
            raise ConfigurationError(
                "interval_s must be positive",
                field="interval_s",
                value=self.interval_s,
            )
        if self.pong_timeout_s <= 0:
            raise ConfigurationError(
                "pong_timeout_s must be positive",
                field="pong_timeout_s",
                value=self.pong_timeout_s,
            )


@dataclass(frozen=True)
class BufferConfig:
    """Configuration for the in-memory history buffer."""

    capacity: int = 1000
    significant_change_pct: float = 0.1  # Emit a price-change event above this (percent)

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ConfigurationError(
                "capacity must be positive",
                field="capacity",
                value=self.capacity,
            )
        if self.significant_change_pct < 0:
            raise ConfigurationError(
                "significant_change_pct must be non-negative",
                field="significant_change_pct",
                value=self.significant_change_pct,
            )


@dataclass(frozen=True)
class FeedConfig:
    """
    Immutable top-level configuration for the quote feed.

    Example:
        config = FeedConfig(
            token="...",
            symbols=("EURUSD$GB", "USDJPY$GB"),
            heartbeat=HeartbeatConfig(interval_s=30.0),
        )
    """

    token: str
    symbols: tuple[str, ...] = DEFAULT_SYMBOLS

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    buffer: BufferConfig = field(default_factory=BufferConfig)

    name: str = "quote_feed"

    def __post_init__(self) -> None:
        if not self.token:
            raise ConfigurationError("token must be provided", field="token")

        # Accept lists from callers, store as tuple
        if not isinstance(self.symbols, tuple):
            object.__setattr__(self, "symbols", tuple(self.symbols))

        if not self.symbols:
            raise ConfigurationError("at least one symbol is required", field="symbols")

        if any(not s for s in self.symbols):
            raise ConfigurationError(
                "symbols must be non-empty strings",
                field="symbols",
                value=self.symbols,
            )
