"""
Lifecycle and data events surfaced to external collaborators.

Every event is a frozen dataclass; `FeedEvent` is the closed union of all of
them. Consumers register an async listener on the `EventEmitter` and dispatch
on the event type (``match`` or ``isinstance``).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from quotefeed.live.types import EventKind, KlineEvent, QuoteEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Started:
    symbols: tuple[str, ...]


@dataclass(frozen=True)
class Stopped:
    pass


@dataclass(frozen=True)
class Authenticated:
    pass


@dataclass(frozen=True)
class AuthFailed:
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Subscribed:
    pass


@dataclass(frozen=True)
class SubscribeFailed:
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Disconnected:
    code: Optional[int]
    reason: str


@dataclass(frozen=True)
class Reconnected:
    attempt: int


@dataclass(frozen=True)
class MaxReconnectAttemptsReached:
    attempts: int


@dataclass(frozen=True)
class KlineReceived:
    event: KlineEvent


@dataclass(frozen=True)
class QuoteReceived:
    event: QuoteEvent


@dataclass(frozen=True)
class SignificantPriceChange:
    symbol: str
    previous_price: float
    current_price: float
    change: float
    change_percent: float
    kind: EventKind = EventKind.QUOTE


FeedEvent = Union[
    Started,
    Stopped,
    Authenticated,
    AuthFailed,
    Subscribed,
    SubscribeFailed,
    Disconnected,
    Reconnected,
    MaxReconnectAttemptsReached,
    KlineReceived,
    QuoteReceived,
    SignificantPriceChange,
]

EventListener = Callable[[FeedEvent], Awaitable[None]]


class EventEmitter:
    """
    Ordered fan-out of feed events to async listeners.

    Listener failures are logged and never propagate into the emitting
    component.
    """

    def __init__(self, name: str = "events") -> None:
        self._name = name
        self._listeners: list[EventListener] = []
        self._waiters: list[tuple[tuple[type, ...], asyncio.Future[FeedEvent]]] = []

    def subscribe(self, listener: EventListener) -> None:
        """Register a listener; listeners are called in registration order."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def expect(self, *event_types: type) -> asyncio.Future[FeedEvent]:
        """
        Return a future resolved by the next event of one of `event_types`.

        Register before triggering the action that produces the event, so the
        event cannot slip past between the action and the wait.
        """
        future: asyncio.Future[FeedEvent] = asyncio.get_running_loop().create_future()
        self._waiters.append((event_types, future))
        return future

    async def emit(self, event: FeedEvent) -> None:
        """Deliver an event to waiters, then to all listeners."""
        logger.debug(f"[{self._name}] Emit: {type(event).__name__}")

        remaining = []
        for types, future in self._waiters:
            if future.done():
                continue
            if isinstance(event, types):
                future.set_result(event)
            else:
                remaining.append((types, future))
        self._waiters = remaining

        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.error(
                    f"[{self._name}] Listener error on {type(event).__name__}: {e}",
                    exc_info=True,
                )
