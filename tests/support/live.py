"""
Shared fakes for live feed tests.

FakeWebSocket mimics the parts of aiohttp's ClientWebSocketResponse used by
TransportSession; FakeFeed plays the iTick server (connect ack, auth result,
subscribe and pong replies).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import aiohttp
import orjson


@dataclass
class FakeMessage:
    type: aiohttp.WSMsgType
    data: Any = None


class FakeWebSocket:
    def __init__(self, on_send: Optional[Callable[["FakeWebSocket", dict[str, Any]], None]] = None) -> None:
        self._inbox: asyncio.Queue[FakeMessage] = asyncio.Queue()
        self._on_send = on_send
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_calls = 0
        self.error: Optional[BaseException] = None

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> FakeMessage:
        if self.closed:
            raise StopAsyncIteration
        msg = await self._inbox.get()
        if msg.type == aiohttp.WSMsgType.CLOSE:
            self.closed = True
            if self.close_code is None:
                self.close_code = msg.data
            raise StopAsyncIteration
        return msg

    def feed(self, payload: Union[dict[str, Any], str]) -> None:
        """Queue a text frame from the server."""
        data = payload if isinstance(payload, str) else orjson.dumps(payload).decode()
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.TEXT, data))

    def server_close(self, code: int = 1006) -> None:
        """Server drops the connection."""
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.CLOSE, code))

    def server_error(self, error: BaseException) -> None:
        self.error = error
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.ERROR, None))

    def exception(self) -> Optional[BaseException]:
        return self.error

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        msg = orjson.loads(data)
        self.sent.append(msg)
        if self._on_send is not None:
            self._on_send(self, msg)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.close_calls += 1
        if self.closed:
            return False
        self.closed = True
        self.close_code = code
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.CLOSE, code))
        return True


AUTH_OK = {"code": 1, "resAc": "auth", "msg": "authenticated"}
AUTH_FAILED = {"code": 1, "resAc": "auth", "msg": "auth failed"}
SUBSCRIBE_OK = {"code": 1, "resAc": "subscribe", "msg": "subscribe Successfully"}
CONNECTED_ACK = {"code": 1, "msg": "Connected Successfully"}


class FakeFeed:
    """Server side of the conversation; `connect` is used as the ws_factory."""

    def __init__(
        self,
        auth_ok: Optional[bool] = True,
        respond_subscribe: bool = True,
        respond_ping: bool = True,
    ) -> None:
        self.auth_ok = auth_ok  # None: never answer auth
        self.respond_subscribe = respond_subscribe
        self.respond_ping = respond_ping
        self.fail_connects = 0
        self.connect_calls = 0
        self.sockets: list[FakeWebSocket] = []

    async def connect(self) -> FakeWebSocket:
        self.connect_calls += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectionRefusedError("connection refused")

        ws = FakeWebSocket(on_send=self._respond)
        ws.feed(CONNECTED_ACK)
        if self.auth_ok is True:
            ws.feed(AUTH_OK)
        elif self.auth_ok is False:
            ws.feed(AUTH_FAILED)
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]

    def _respond(self, ws: FakeWebSocket, msg: dict[str, Any]) -> None:
        if msg.get("ac") == "subscribe" and self.respond_subscribe:
            ws.feed(SUBSCRIBE_OK)
        elif msg.get("ac") == "ping" and self.respond_ping:
            ws.feed({"code": 1, "resAc": "pong", "data": {"params": msg["params"]}})


def quote_frame(symbol: str, last_price: float, ts: int = 1_700_000_000_000) -> dict[str, Any]:
    return {
        "code": 1,
        "data": {
            "s": symbol,
            "ld": last_price,
            "o": 1.1,
            "h": 1.2,
            "l": 1.0,
            "v": 100,
            "tu": 110.0,
            "t": ts,
            "ts": ts // 1000,
            "type": "quote",
        },
    }


def kline_frame(symbol: str, close: float, ts: int = 1_700_000_000_000) -> dict[str, Any]:
    return {
        "code": 1,
        "data": {
            "s": symbol,
            "t": 1,
            "k": {"o": 1.1, "h": 1.2, "l": 1.0, "c": close, "v": 100, "tu": 110.0, "t": ts},
        },
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll `predicate` on the loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class SlowAlerts:
    """AlertSink whose every call takes `delay_s`; records delivered kinds."""

    def __init__(self, delay_s: float) -> None:
        self.delay_s = delay_s
        self.delivered: list[str] = []

    async def _deliver(self, kind: str) -> None:
        await asyncio.sleep(self.delay_s)
        self.delivered.append(kind)

    async def connection_error(self, error: BaseException, attempt: Optional[int] = None) -> None:
        await self._deliver("connection_error")

    async def reconnect_failed(self, error: BaseException, attempt: int) -> None:
        await self._deliver("reconnect_failed")

    async def reconnect_succeeded(self, attempt: int) -> None:
        await self._deliver("reconnect_succeeded")

    async def heartbeat_timeout(self, timeout_s: float) -> None:
        await self._deliver("heartbeat_timeout")
