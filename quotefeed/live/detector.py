"""
Significant price-change detection.

Compares each normalized event against the previous event of the same symbol
and kind, and reports moves whose magnitude exceeds a percentage threshold.
"""

from __future__ import annotations

import logging
from typing import Optional

from quotefeed.live.events import SignificantPriceChange
from quotefeed.live.types import EventKind, KlineEvent, NormalizedEvent

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PCT = 0.1


class PriceChangeDetector:
    """Tracks the last seen price per (kind, symbol)."""

    def __init__(self, threshold_pct: float = DEFAULT_THRESHOLD_PCT) -> None:
        self._threshold_pct = threshold_pct
        self._last_price: dict[tuple[EventKind, str], float] = {}

    @property
    def threshold_pct(self) -> float:
        return self._threshold_pct

    def check(self, event: NormalizedEvent) -> Optional[SignificantPriceChange]:
        """Record `event` and return a change event when the move is significant."""
        kind = EventKind.KLINE if isinstance(event, KlineEvent) else EventKind.QUOTE
        key = (kind, event.symbol)
        current = event.price
        previous = self._last_price.get(key)
        self._last_price[key] = current

        if previous is None or previous == 0:
            return None

        change = current - previous
        change_percent = change / previous * 100
        if abs(change_percent) <= self._threshold_pct:
            return None

        logger.info(
            f"Significant {kind.value} move on {event.symbol}: "
            f"{previous} -> {current} ({change_percent:+.4f}%)"
        )
        return SignificantPriceChange(
            symbol=event.symbol,
            previous_price=previous,
            current_price=current,
            change=change,
            change_percent=change_percent,
            kind=kind,
        )

    def reset(self) -> None:
        self._last_price.clear()
