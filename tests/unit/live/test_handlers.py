"""
Unit tests for lifecycle and data handlers.
"""

from unittest.mock import AsyncMock

import pytest

from quotefeed.live.config import ReconnectConfig
from quotefeed.live.events import (
    Authenticated,
    AuthFailed,
    EventEmitter,
    FeedEvent,
    SubscribeFailed,
    Subscribed,
)
from quotefeed.live.handlers import AuthHandler, KlineHandler, QuoteHandler, SubscribeHandler
from quotefeed.live.reconnect import ReconnectPolicy
from quotefeed.live.state import SessionStateMachine
from quotefeed.live.types import KlineEvent, MessageType, QuoteEvent, RoutedMessage, SessionState


def _msg(message_type: MessageType, data: dict, recv_ts: int = 1_700_000_000_500) -> RoutedMessage:
    return RoutedMessage(message_type=message_type, data=data, recv_ts=recv_ts)


class TestKlineHandler:
    """Tests for KlineHandler."""

    @pytest.fixture
    def received(self) -> list[KlineEvent]:
        return []

    @pytest.fixture
    def handler(self, received: list[KlineEvent]) -> KlineHandler:
        async def on_event(event: KlineEvent) -> None:
            received.append(event)

        return KlineHandler(on_event=on_event)

    @pytest.mark.asyncio
    async def test_parse_kline(self, handler: KlineHandler, received: list[KlineEvent]) -> None:
        """Test a well-formed kline payload is normalized."""
        data = {
            "code": 1,
            "data": {
                "s": "EURUSD$GB",
                "t": 1,
                "k": {"o": 1.1, "h": 1.2, "l": 1.0, "c": 1.15, "v": 1200, "tu": 1320.6, "t": 1700000000000},
            },
        }

        await handler.handle(_msg(MessageType.KLINE, data))

        assert len(received) == 1
        kline = received[0]
        assert kline.symbol == "EURUSD$GB"
        assert kline.period == 1
        assert kline.close == 1.15
        assert kline.price == 1.15
        assert kline.timestamp == 1700000000000
        assert kline.ts_recv == 1_700_000_000_500
        assert handler.stats.by_symbol == {"EURUSD$GB": 1}

    @pytest.mark.asyncio
    async def test_string_numbers_are_accepted(self, handler: KlineHandler, received: list[KlineEvent]) -> None:
        """Test numeric strings are converted."""
        data = {"code": 1, "data": {"s": "X", "k": {"o": "1", "h": "2", "l": "0.5", "c": "1.5", "t": "10"}}}

        await handler.handle(_msg(MessageType.KLINE, data))

        assert received[0].close == 1.5
        assert received[0].timestamp == 10

    @pytest.mark.asyncio
    async def test_missing_field_counts_parse_error(self, handler: KlineHandler, received: list[KlineEvent]) -> None:
        """Test a kline without a close price is rejected."""
        data = {"code": 1, "data": {"s": "X", "k": {"o": 1.0, "h": 1.0, "l": 1.0, "t": 1}}}

        await handler.handle(_msg(MessageType.KLINE, data))

        assert received == []
        assert handler.stats.parse_errors == 1

    @pytest.mark.asyncio
    async def test_boolean_price_rejected(self, handler: KlineHandler, received: list[KlineEvent]) -> None:
        """Test booleans are not accepted as prices."""
        data = {"code": 1, "data": {"s": "X", "k": {"o": True, "h": 1.0, "l": 1.0, "c": 1.0, "t": 1}}}

        await handler.handle(_msg(MessageType.KLINE, data))

        assert received == []
        assert handler.stats.parse_errors == 1


class TestQuoteHandler:
    """Tests for QuoteHandler."""

    @pytest.mark.asyncio
    async def test_parse_quote(self) -> None:
        """Test a quote payload is normalized."""
        received: list[QuoteEvent] = []

        async def on_event(event: QuoteEvent) -> None:
            received.append(event)

        handler = QuoteHandler(on_event=on_event)
        data = {
            "code": 1,
            "data": {"s": "USDJPY$GB", "ld": 150.25, "o": 150.0, "h": 151.0, "l": 149.5, "t": 5, "type": "quote"},
        }

        await handler.handle(_msg(MessageType.QUOTE, data))

        assert received[0].symbol == "USDJPY$GB"
        assert received[0].last_price == 150.25
        assert received[0].price == 150.25
        assert received[0].volume == 0.0
        assert received[0].timestamp == 5

    @pytest.mark.asyncio
    async def test_timestamp_defaults_to_receive_time(self) -> None:
        """Test a quote without `t` takes the local receive timestamp."""
        on_event = AsyncMock()
        handler = QuoteHandler(on_event=on_event)

        await handler.handle(_msg(MessageType.QUOTE, {"code": 1, "data": {"s": "X", "ld": 1.0}}, recv_ts=99))

        assert on_event.await_args.args[0].timestamp == 99

    @pytest.mark.asyncio
    async def test_missing_symbol_rejected(self) -> None:
        """Test a quote without a symbol is rejected."""
        on_event = AsyncMock()
        handler = QuoteHandler(on_event=on_event)

        await handler.handle(_msg(MessageType.QUOTE, {"code": 1, "data": {"ld": 1.0, "type": "quote"}}))

        on_event.assert_not_awaited()
        assert handler.stats.parse_errors == 1


class TestLifecycleHandlers:
    """Tests for AuthHandler and SubscribeHandler."""

    @pytest.fixture
    def emitter(self) -> EventEmitter:
        return EventEmitter()

    @pytest.fixture
    def events(self, emitter: EventEmitter) -> list[FeedEvent]:
        collected: list[FeedEvent] = []

        async def listener(event: FeedEvent) -> None:
            collected.append(event)

        emitter.subscribe(listener)
        return collected

    @pytest.fixture
    def state(self) -> SessionStateMachine:
        machine = SessionStateMachine()
        machine.transition(SessionState.CONNECTING)
        machine.transition(SessionState.CONNECTED)
        return machine

    @pytest.fixture
    def policy(self, emitter: EventEmitter) -> ReconnectPolicy:
        return ReconnectPolicy(ReconnectConfig(), emitter, AsyncMock())

    @pytest.mark.asyncio
    async def test_auth_success(
        self,
        state: SessionStateMachine,
        policy: ReconnectPolicy,
        emitter: EventEmitter,
        events: list[FeedEvent],
    ) -> None:
        """Test successful auth moves to AUTHENTICATED and resets attempts."""
        policy.context.attempt = 3
        handler = AuthHandler(state, policy, emitter)

        await handler.handle(_msg(MessageType.AUTH, {"code": 1, "resAc": "auth", "msg": "authenticated"}))

        assert state.state == SessionState.AUTHENTICATED
        assert policy.attempt == 0
        assert events == [Authenticated()]

    @pytest.mark.asyncio
    async def test_auth_failure(
        self,
        state: SessionStateMachine,
        policy: ReconnectPolicy,
        emitter: EventEmitter,
        events: list[FeedEvent],
    ) -> None:
        """Test rejected auth moves to ERROR and emits the raw response."""
        handler = AuthHandler(state, policy, emitter)
        data = {"code": 1, "resAc": "auth", "msg": "auth failed"}

        await handler.handle(_msg(MessageType.AUTH, data))

        assert state.state == SessionState.ERROR
        assert events == [AuthFailed(raw=data)]

    @pytest.mark.asyncio
    async def test_subscribe_success(
        self, state: SessionStateMachine, emitter: EventEmitter, events: list[FeedEvent]
    ) -> None:
        """Test subscribe confirmation moves to SUBSCRIBED."""
        state.transition(SessionState.AUTHENTICATED)
        handler = SubscribeHandler(state, emitter)

        await handler.handle(_msg(MessageType.SUBSCRIBE, {"code": 1, "resAc": "subscribe", "msg": "subscribe Successfully"}))

        assert state.state == SessionState.SUBSCRIBED
        assert events == [Subscribed()]

    @pytest.mark.asyncio
    async def test_subscribe_failure_keeps_state(
        self, state: SessionStateMachine, emitter: EventEmitter, events: list[FeedEvent]
    ) -> None:
        """Test a rejected subscription leaves the session AUTHENTICATED."""
        state.transition(SessionState.AUTHENTICATED)
        handler = SubscribeHandler(state, emitter)
        data = {"code": 1, "resAc": "subscribe", "msg": "exceeding the maximum subscription limit"}

        await handler.handle(_msg(MessageType.SUBSCRIBE, data))

        assert state.state == SessionState.AUTHENTICATED
        assert events == [SubscribeFailed(raw=data)]

    @pytest.mark.asyncio
    async def test_subscribe_confirmation_before_auth_is_ignored(
        self, state: SessionStateMachine, emitter: EventEmitter, events: list[FeedEvent]
    ) -> None:
        """Test CONNECTED -> SUBSCRIBED is rejected and nothing is emitted."""
        handler = SubscribeHandler(state, emitter)

        await handler.handle(_msg(MessageType.SUBSCRIBE, {"code": 1, "resAc": "subscribe", "msg": "subscribe Successfully"}))

        assert state.state == SessionState.CONNECTED
        assert events == []
