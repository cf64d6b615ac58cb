"""JSON Lines Telemetry adapter.

Implements the Telemetry port by appending structured JSON objects (one per
line) to disk, and bridges feed lifecycle events into it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import orjson

from quotefeed.live.events import (
    AuthFailed,
    Authenticated,
    Disconnected,
    FeedEvent,
    MaxReconnectAttemptsReached,
    Reconnected,
    SignificantPriceChange,
    Started,
    Stopped,
    SubscribeFailed,
    Subscribed,
)
from quotefeed.ports.telemetry import Telemetry

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JsonlTelemetry:
    _REDACTION_TOKEN = "***REDACTED***"
    _DEFAULT_SECRET_KEYS = frozenset(
        {
            "token",
            "api_token",
            "secret",
            "password",
            "webhook_url",
        }
    )

    def __init__(
        self,
        run_id: str,
        sink_path: Union[Path, str],
        component: Optional[str] = None,
        secret_keys: Iterable[str] = _DEFAULT_SECRET_KEYS,
        clock: Clock = _utc_now,
    ) -> None:
        self._run_id = str(run_id)
        self._sink_path = sink_path if isinstance(sink_path, Path) else Path(sink_path)
        self._component = component
        self._secret_keys = frozenset(secret_keys)
        self._clock = clock

    @property
    def sink_path(self) -> Path:
        return self._sink_path

    def log(self, event: str, **fields: Any) -> None:
        extras = dict(fields)
        component = extras.pop("component", self._component)

        sanitized_fields, redacted = self._sanitize_fields(extras)

        record: dict[str, Any] = {
            "event": event,
            "ts_utc": self._clock().isoformat(),
            "run_id": self._run_id,
            **sanitized_fields,
        }
        if component is not None:
            record["component"] = component
        if redacted:
            record["redacted_fields"] = sorted(redacted)

        self._write_record(record)

    def _sanitize_fields(self, fields: Mapping[str, Any]) -> tuple[dict[str, Any], set[str]]:
        sanitized: dict[str, Any] = {}
        redacted: set[str] = set()
        for key, value in fields.items():
            if key in self._secret_keys:
                sanitized[key] = self._REDACTION_TOKEN
                redacted.add(key)
            else:
                sanitized[key] = value

        return sanitized, redacted

    def _write_record(self, record: Mapping[str, Any]) -> None:
        payload = orjson.dumps(record, option=orjson.OPT_SORT_KEYS | orjson.OPT_APPEND_NEWLINE)
        self._sink_path.parent.mkdir(parents=True, exist_ok=True)
        with self._sink_path.open("ab") as handle:
            handle.write(payload)


class TelemetryListener:
    """
    EventEmitter listener writing lifecycle events to a Telemetry sink.

    Per-message data events (klines, quotes) are not recorded; significant
    price changes are.
    """

    def __init__(self, telemetry: Telemetry) -> None:
        self._telemetry = telemetry

    async def __call__(self, event: FeedEvent) -> None:
        match event:
            case Started(symbols=symbols):
                self._telemetry.log("feed_started", symbols=list(symbols))
            case Stopped():
                self._telemetry.log("feed_stopped")
            case Authenticated():
                self._telemetry.log("feed_authenticated")
            case AuthFailed(raw=raw):
                self._telemetry.log("feed_auth_failed", msg=raw.get("msg"))
            case Subscribed():
                self._telemetry.log("feed_subscribed")
            case SubscribeFailed(raw=raw):
                self._telemetry.log("feed_subscribe_failed", msg=raw.get("msg"))
            case Disconnected(code=code, reason=reason):
                self._telemetry.log("feed_disconnected", code=code, reason=reason)
            case Reconnected(attempt=attempt):
                self._telemetry.log("feed_reconnected", attempt=attempt)
            case MaxReconnectAttemptsReached(attempts=attempts):
                self._telemetry.log("feed_reconnect_exhausted", attempts=attempts)
            case SignificantPriceChange():
                self._telemetry.log(
                    "price_change",
                    symbol=event.symbol,
                    kind=event.kind.value,
                    previous_price=event.previous_price,
                    current_price=event.current_price,
                    change_percent=round(event.change_percent, 6),
                )
            case _:
                pass
