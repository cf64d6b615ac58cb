from unittest.mock import AsyncMock

import pytest

from quotefeed.live.config import FeedConfig, HeartbeatConfig, ReconnectConfig


@pytest.fixture
def alerts() -> AsyncMock:
    """AlertSink double; every method is an AsyncMock."""
    return AsyncMock()


@pytest.fixture
def fast_config() -> FeedConfig:
    """Feed config with millisecond-scale timers."""
    return FeedConfig(
        token="test-token",
        symbols=("EURUSD$GB",),
        reconnect=ReconnectConfig(max_attempts=3, base_delay_ms=1, max_delay_ms=4),
        heartbeat=HeartbeatConfig(interval_s=0.02, pong_timeout_s=0.03),
    )
