"""
Unit tests for the HistoryBuffer.
"""

import threading

import pytest

from quotefeed.live.buffer import HistoryBuffer
from quotefeed.live.types import EventKind, KlineEvent, QuoteEvent


def _kline(symbol: str, ts: int, close: float = 1.0) -> KlineEvent:
    return KlineEvent(
        symbol=symbol, period=1, open=1.0, high=1.0, low=1.0, close=close,
        volume=0.0, turnover=0.0, timestamp=ts, ts_recv=ts,
    )


def _quote(symbol: str, ts: int, price: float = 1.0) -> QuoteEvent:
    return QuoteEvent(
        symbol=symbol, last_price=price, open=1.0, high=1.0, low=1.0,
        volume=0.0, turnover=0.0, timestamp=ts, ts_recv=ts,
    )


class TestHistoryBuffer:
    """Tests for HistoryBuffer."""

    @pytest.fixture
    def buffer(self) -> HistoryBuffer:
        return HistoryBuffer(capacity=5)

    def test_capacity_must_be_positive(self) -> None:
        """Test non-positive capacity is rejected."""
        with pytest.raises(ValueError):
            HistoryBuffer(capacity=0)

    def test_eviction_keeps_most_recent(self, buffer: HistoryBuffer) -> None:
        """Test appending capacity + k entries retains the last `capacity`, in order."""
        for ts in range(8):
            buffer.append(_kline("EURUSD$GB", ts))

        retained = buffer.query(EventKind.KLINE, limit=100)
        assert buffer.size(EventKind.KLINE) == 5
        assert [k.timestamp for k in retained] == [3, 4, 5, 6, 7]

    def test_sequences_are_independent(self, buffer: HistoryBuffer) -> None:
        """Test quotes do not evict klines."""
        buffer.append(_kline("A", 1))
        for ts in range(10):
            buffer.append(_quote("A", ts))

        assert buffer.size(EventKind.KLINE) == 1
        assert buffer.size(EventKind.QUOTE) == 5
        assert len(buffer) == 6

    def test_query_filters_symbol_then_limits(self, buffer: HistoryBuffer) -> None:
        """Test the symbol filter applies before the limit."""
        buffer.append(_quote("A", 1))
        buffer.append(_quote("B", 2))
        buffer.append(_quote("A", 3))
        buffer.append(_quote("B", 4))

        result = buffer.query(EventKind.QUOTE, symbol="A", limit=1)

        assert [q.timestamp for q in result] == [3]

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_returns_empty(self, buffer: HistoryBuffer, limit: int) -> None:
        """Test limit <= 0 returns nothing."""
        buffer.append(_quote("A", 1))

        assert buffer.query(EventKind.QUOTE, limit=limit) == []

    def test_query_range_inclusive(self, buffer: HistoryBuffer) -> None:
        """Test range bounds are inclusive and symbol-scoped."""
        for ts in (10, 20, 30, 40):
            buffer.append(_kline("A", ts))
        buffer.append(_kline("B", 20))

        result = buffer.query_range("A", 20, 30)

        assert [k.timestamp for k in result] == [20, 30]

    def test_query_range_sees_only_retained(self, buffer: HistoryBuffer) -> None:
        """Test evicted klines are not returned by range queries."""
        for ts in range(10):
            buffer.append(_kline("A", ts))

        assert [k.timestamp for k in buffer.query_range("A", 0, 9)] == [5, 6, 7, 8, 9]

    def test_clear(self, buffer: HistoryBuffer) -> None:
        """Test clear empties both sequences."""
        buffer.append(_kline("A", 1))
        buffer.append(_quote("A", 1))

        buffer.clear()

        assert len(buffer) == 0

    def test_reads_are_snapshots(self, buffer: HistoryBuffer) -> None:
        """Test mutating a query result does not touch the buffer."""
        buffer.append(_quote("A", 1))

        result = buffer.query(EventKind.QUOTE)
        result.clear()

        assert buffer.size(EventKind.QUOTE) == 1

    def test_rejects_unknown_event(self, buffer: HistoryBuffer) -> None:
        """Test appending an unsupported object raises TypeError."""
        with pytest.raises(TypeError):
            buffer.append("not an event")  # type: ignore[arg-type]

    def test_concurrent_readers(self) -> None:
        """Test readers on other threads always see at most `capacity` entries."""
        buffer = HistoryBuffer(capacity=50)
        sizes: list[int] = []
        stop = threading.Event()

        def reader() -> None:
            while not stop.is_set():
                sizes.append(len(buffer.query(EventKind.QUOTE, limit=1000)))

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for ts in range(5000):
                buffer.append(_quote("A", ts))
        finally:
            stop.set()
            thread.join()

        assert sizes
        assert max(sizes) <= 50
