"""AlertSink Port Interface.

Contract: Turn connection lifecycle incidents into human-readable notifications.
Implementations must never raise; delivery problems are logged by the adapter.
"""

from __future__ import annotations

from typing import Optional, Protocol


class AlertSink(Protocol):
    async def connection_error(self, error: BaseException, attempt: Optional[int] = None) -> None: ...

    async def reconnect_failed(self, error: BaseException, attempt: int) -> None: ...

    async def reconnect_succeeded(self, attempt: int) -> None: ...

    async def heartbeat_timeout(self, timeout_s: float) -> None: ...
