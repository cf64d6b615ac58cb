"""Lark webhook alert sink.

Implements the AlertSink port by posting interactive cards to a Lark (Feishu)
custom-bot webhook. Delivery failures are logged and never raised; with no
webhook configured every call is a no-op.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0

_HTTP_CODE_RE = re.compile(r"\b(\d{3})\b")
_ERROR_CODE_RE = re.compile(r"code[:\s]*(\d+)", re.IGNORECASE)


def extract_error_code(message: str) -> str:
    """Best-effort status/error code from an exception message."""
    match = _HTTP_CODE_RE.search(message) or _ERROR_CODE_RE.search(message)
    return match.group(1) if match else "unknown"


def build_card(title: str, template: str, sections: list[str]) -> dict[str, Any]:
    """Interactive card: header plus lark_md sections, the first one above a rule."""
    elements: list[dict[str, Any]] = []
    for index, content in enumerate(sections):
        elements.append({"tag": "div", "text": {"content": content, "tag": "lark_md"}})
        if index == 0:
            elements.append({"tag": "hr"})
    return {
        "msg_type": "interactive",
        "card": {
            "config": {"wide_screen_mode": True},
            "header": {
                "title": {"content": title, "tag": "plain_text"},
                "template": template,
            },
            "elements": elements,
        },
    }


class LarkNotifier:
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        service_name: str = "iTick quote feed",
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._webhook_url = webhook_url or ""
        self._service_name = service_name
        self._timeout_s = timeout_s
        self._sent = 0
        self._failed = 0

        if not self.enabled:
            _LOGGER.warning("Lark notifications disabled (no webhook URL configured)")

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def failed(self) -> int:
        return self._failed

    def set_webhook_url(self, url: Optional[str]) -> None:
        self._webhook_url = url or ""
        _LOGGER.info(f"Lark webhook updated (enabled={self.enabled})")

    # --- AlertSink ---

    async def connection_error(self, error: BaseException, attempt: Optional[int] = None) -> None:
        if not self.enabled:
            return
        await self._send(self.connection_error_card(error, attempt))

    async def reconnect_failed(self, error: BaseException, attempt: int) -> None:
        if not self.enabled:
            return
        await self._send(self.reconnect_failed_card(error, attempt))

    async def reconnect_succeeded(self, attempt: int) -> None:
        if not self.enabled:
            return
        await self._send(self.reconnect_succeeded_card(attempt))

    async def heartbeat_timeout(self, timeout_s: float) -> None:
        if not self.enabled:
            return
        await self._send(self.heartbeat_timeout_card(timeout_s))

    # --- Cards ---

    def _summary(self, event: str) -> str:
        timestamp = datetime.now(timezone.utc).isoformat()
        return f"**Service:** {self._service_name}\n**Time:** {timestamp}\n**Event:** {event}"

    def connection_error_card(self, error: BaseException, attempt: Optional[int]) -> dict[str, Any]:
        message = str(error) or type(error).__name__
        attempt_text = f"attempt {attempt}" if attempt else "initial connection"
        return build_card(
            "iTick websocket connection error",
            "red",
            [
                self._summary("websocket connection error"),
                f"**Error details:**\n"
                f"- **Code:** {extract_error_code(message)}\n"
                f"- **Message:** {message}\n"
                f"- **Reconnect:** {attempt_text}",
                "**Suggested action:** check network connectivity and the API token",
            ],
        )

    def reconnect_failed_card(self, error: BaseException, attempt: int) -> dict[str, Any]:
        message = str(error) or type(error).__name__
        return build_card(
            "iTick websocket reconnect failed",
            "orange",
            [
                self._summary("reconnect failed"),
                f"**Reconnect:**\n- **Attempt:** {attempt}\n- **Message:** {message}",
                "**Impact:** quote subscription interrupted until the connection recovers",
            ],
        )

    def reconnect_succeeded_card(self, attempt: int) -> dict[str, Any]:
        return build_card(
            "iTick websocket reconnected",
            "green",
            [
                self._summary("reconnect succeeded"),
                f"**Reconnect:**\n- **Attempt:** {attempt}\n- **Connection:** restored\n"
                f"- **Subscription:** being restored",
            ],
        )

    def heartbeat_timeout_card(self, timeout_s: float) -> dict[str, Any]:
        return build_card(
            "iTick websocket heartbeat timeout",
            "yellow",
            [
                self._summary("heartbeat timeout"),
                f"**Heartbeat:**\n- **Timeout:** {timeout_s:g}s\n- **Result:** no pong from server\n"
                f"- **Action:** connection closed, reconnect scheduled",
            ],
        )

    # --- Delivery ---

    async def _send(self, payload: dict[str, Any]) -> None:
        try:
            status = await self._post(payload)
        except (aiohttp.ClientError, TimeoutError, OSError) as e:
            self._failed += 1
            _LOGGER.error(f"Failed to send Lark notification: {e}")
            return

        if status == 200:
            self._sent += 1
            _LOGGER.info("Lark notification sent")
        else:
            self._failed += 1
            _LOGGER.error(f"Lark notification rejected (status={status})")

    async def _post(self, payload: dict[str, Any]) -> int:
        timeout = aiohttp.ClientTimeout(total=self._timeout_s)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self._webhook_url, json=payload) as response:
                return response.status
