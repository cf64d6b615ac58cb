"""
Bounded in-memory history of normalized events.

Two independent FIFO sequences (klines, quotes), each capped at `capacity`.
Appending to a full sequence evicts its oldest entry. Data evicted from the
buffer is gone; range queries only see what is still retained.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Optional, Union

from quotefeed.live.types import EventKind, KlineEvent, NormalizedEvent, QuoteEvent

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class HistoryBuffer:
    """
    Append-only-with-eviction store of recent klines and quotes.

    Each sequence has its own lock so readers on other threads get consistent
    snapshot copies while the feed keeps appending.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._klines: deque[KlineEvent] = deque(maxlen=capacity)
        self._quotes: deque[QuoteEvent] = deque(maxlen=capacity)
        self._kline_lock = threading.Lock()
        self._quote_lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self.size(EventKind.KLINE) + self.size(EventKind.QUOTE)

    def size(self, kind: EventKind) -> int:
        if kind == EventKind.KLINE:
            with self._kline_lock:
                return len(self._klines)
        with self._quote_lock:
            return len(self._quotes)

    def append(self, event: NormalizedEvent) -> None:
        """Push `event` to the tail of its sequence, evicting the head when full."""
        if isinstance(event, KlineEvent):
            with self._kline_lock:
                self._klines.append(event)
        elif isinstance(event, QuoteEvent):
            with self._quote_lock:
                self._quotes.append(event)
        else:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")

    def query(
        self, kind: EventKind, symbol: Optional[str] = None, limit: int = 100
    ) -> list[Union[KlineEvent, QuoteEvent]]:
        """
        Return the most recent `limit` entries of `kind`, oldest first.

        When `symbol` is given, only that symbol's entries are considered
        before the limit is applied.
        """
        if limit <= 0:
            return []

        snapshot = self._snapshot(kind)
        if symbol:
            snapshot = [e for e in snapshot if e.symbol == symbol]
        return snapshot[-limit:]

    def query_range(self, symbol: str, start_ms: int, end_ms: int) -> list[KlineEvent]:
        """Retained klines for `symbol` whose bar timestamp lies in [start_ms, end_ms]."""
        with self._kline_lock:
            snapshot = list(self._klines)
        return [e for e in snapshot if e.symbol == symbol and start_ms <= e.timestamp <= end_ms]

    def clear(self) -> None:
        """Empty both sequences."""
        with self._kline_lock:
            self._klines.clear()
        with self._quote_lock:
            self._quotes.clear()
        logger.debug("History buffer cleared")

    def _snapshot(self, kind: EventKind) -> list[Union[KlineEvent, QuoteEvent]]:
        if kind == EventKind.KLINE:
            with self._kline_lock:
                return list(self._klines)
        with self._quote_lock:
            return list(self._quotes)
