import aiohttp
import pytest

from quotefeed.adapters.lark import LarkNotifier, build_card, extract_error_code


class RecordingNotifier(LarkNotifier):
    """Captures payloads instead of posting them."""

    def __init__(self, *args, status=200, error=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.payloads = []
        self._status = status
        self._error = error

    async def _post(self, payload):
        self.payloads.append(payload)
        if self._error is not None:
            raise self._error
        return self._status


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("WSServerHandshakeError: 401, message='Invalid response status'", "401"),
        ("server replied code: 1006", "1006"),
        ("connection refused", "unknown"),
    ],
)
def test_extract_error_code(message, expected):
    assert extract_error_code(message) == expected


def test_build_card_layout():
    card = build_card("Title", "red", ["first", "second"])

    assert card["msg_type"] == "interactive"
    assert card["card"]["header"]["template"] == "red"
    assert card["card"]["header"]["title"]["content"] == "Title"
    assert [e["tag"] for e in card["card"]["elements"]] == ["div", "hr", "div"]


def test_card_templates():
    notifier = LarkNotifier("https://example.invalid/hook")
    error = ConnectionRefusedError("connection refused")

    assert notifier.connection_error_card(error, None)["card"]["header"]["template"] == "red"
    assert notifier.reconnect_failed_card(error, 2)["card"]["header"]["template"] == "orange"
    assert notifier.reconnect_succeeded_card(1)["card"]["header"]["template"] == "green"
    assert notifier.heartbeat_timeout_card(10.0)["card"]["header"]["template"] == "yellow"


def test_connection_error_card_mentions_attempt():
    notifier = LarkNotifier("https://example.invalid/hook")

    initial = notifier.connection_error_card(OSError("boom"), None)
    retry = notifier.connection_error_card(OSError("boom"), 3)

    assert "initial connection" in initial["card"]["elements"][2]["text"]["content"]
    assert "attempt 3" in retry["card"]["elements"][2]["text"]["content"]


@pytest.mark.asyncio
async def test_disabled_notifier_is_noop():
    notifier = RecordingNotifier(None)

    await notifier.connection_error(OSError("boom"))
    await notifier.reconnect_failed(OSError("boom"), 1)
    await notifier.reconnect_succeeded(1)
    await notifier.heartbeat_timeout(10.0)

    assert not notifier.enabled
    assert notifier.payloads == []


@pytest.mark.asyncio
async def test_successful_delivery_counted():
    notifier = RecordingNotifier("https://example.invalid/hook")

    await notifier.reconnect_succeeded(1)

    assert notifier.sent == 1
    assert notifier.failed == 0
    assert notifier.payloads[0]["card"]["header"]["template"] == "green"


@pytest.mark.asyncio
async def test_rejected_status_counted_as_failure():
    notifier = RecordingNotifier("https://example.invalid/hook", status=500)

    await notifier.heartbeat_timeout(10.0)

    assert notifier.sent == 0
    assert notifier.failed == 1


@pytest.mark.asyncio
async def test_transport_error_never_raises():
    notifier = RecordingNotifier(
        "https://example.invalid/hook",
        error=aiohttp.ClientConnectionError("unreachable"),
    )

    await notifier.reconnect_failed(OSError("boom"), 2)

    assert notifier.failed == 1


@pytest.mark.asyncio
async def test_set_webhook_url_enables_delivery():
    notifier = RecordingNotifier(None)
    notifier.set_webhook_url("https://example.invalid/hook")

    await notifier.reconnect_succeeded(1)

    assert notifier.enabled
    assert len(notifier.payloads) == 1
