"""
Process settings for the quote feed.

Purpose:
    - Load a TOML settings file (optional)
    - Apply environment overrides (SYMBOLS, LOG_LEVEL, API_PORT, LARK_WEBHOOK_URL)
    - Validate into AppSettings
    - Build the immutable FeedConfig used by the live service

Precedence: defaults < TOML file < environment < explicit CLI overrides.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator

from quotefeed.live.config import (
    DEFAULT_SYMBOLS,
    ITICK_WS_ENDPOINTS,
    BufferConfig,
    ConnectionConfig,
    FeedConfig,
    HeartbeatConfig,
    ReconnectConfig,
)
from quotefeed.live.errors import ConfigurationError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class FeedSettings(BaseModel):
    market: str = "forex"
    url: Optional[str] = None  # overrides `market` when set
    symbols: list[str] = list(DEFAULT_SYMBOLS)
    connect_timeout_s: float = 10.0
    auth_timeout_s: float = 10.0

    @field_validator("symbols")
    @classmethod
    def _symbols_not_empty(cls, value: list[str]) -> list[str]:
        cleaned = [s.strip() for s in value if s.strip()]
        if not cleaned:
            raise ValueError("at least one symbol is required")
        return cleaned

    @field_validator("market")
    @classmethod
    def _known_market(cls, value: str) -> str:
        if value not in ITICK_WS_ENDPOINTS:
            raise ValueError(f"unknown market {value!r}, expected one of {sorted(ITICK_WS_ENDPOINTS)}")
        return value

    def ws_url(self) -> str:
        return self.url or ITICK_WS_ENDPOINTS[self.market]


class ReconnectSettings(BaseModel):
    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30_000


class HeartbeatSettings(BaseModel):
    interval_s: float = 60.0
    pong_timeout_s: float = 10.0


class BufferSettings(BaseModel):
    capacity: int = 1000
    significant_change_pct: float = 0.1


class ApiSettings(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000


class AlertSettings(BaseModel):
    lark_webhook_url: Optional[str] = None


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None
    max_bytes: int = 5 * 1024 * 1024  # per rotated file
    backup_count: int = 5
    telemetry_path: Optional[Path] = None

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return level


class AppSettings(BaseModel):
    feed: FeedSettings = FeedSettings()
    reconnect: ReconnectSettings = ReconnectSettings()
    heartbeat: HeartbeatSettings = HeartbeatSettings()
    buffer: BufferSettings = BufferSettings()
    api: ApiSettings = ApiSettings()
    alerts: AlertSettings = AlertSettings()
    logging: LoggingSettings = LoggingSettings()

    def to_feed_config(self, token: str) -> FeedConfig:
        """Build the live-feed configuration; raises ConfigurationError on invalid values."""
        return FeedConfig(
            token=token,
            symbols=tuple(self.feed.symbols),
            connection=ConnectionConfig(
                url=self.feed.ws_url(),
                connect_timeout_s=self.feed.connect_timeout_s,
                auth_timeout_s=self.feed.auth_timeout_s,
            ),
            reconnect=ReconnectConfig(
                max_attempts=self.reconnect.max_attempts,
                base_delay_ms=self.reconnect.base_delay_ms,
                max_delay_ms=self.reconnect.max_delay_ms,
            ),
            heartbeat=HeartbeatConfig(
                interval_s=self.heartbeat.interval_s,
                pong_timeout_s=self.heartbeat.pong_timeout_s,
            ),
            buffer=BufferConfig(
                capacity=self.buffer.capacity,
                significant_change_pct=self.buffer.significant_change_pct,
            ),
        )


def parse_symbols(raw: str) -> list[str]:
    """Comma-separated symbol list, blanks dropped."""
    return [s.strip() for s in raw.split(",") if s.strip()]


class SettingsLoader:
    """
    Settings-loader; TOML file plus environment overrides.
    """

    def __init__(self, base_dir: str = ".", environ: Optional[Mapping[str, str]] = None) -> None:
        self._base_dir = base_dir
        self._environ = environ if environ is not None else os.environ

    def load_file(self, file_name: str) -> dict[str, Any]:
        path = Path(file_name)
        if not path.is_absolute():
            path = Path(self._base_dir) / file_name

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("rb") as f:
            return tomllib.load(f)

    def env_overrides(self) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        env = self._environ

        if env.get("SYMBOLS"):
            overrides.setdefault("feed", {})["symbols"] = parse_symbols(env["SYMBOLS"])
        if env.get("LOG_LEVEL"):
            overrides.setdefault("logging", {})["level"] = env["LOG_LEVEL"]
        if env.get("API_PORT"):
            overrides.setdefault("api", {})["port"] = env["API_PORT"]
        if env.get("LARK_WEBHOOK_URL"):
            overrides.setdefault("alerts", {})["lark_webhook_url"] = env["LARK_WEBHOOK_URL"]
        return overrides

    def load(
        self,
        file_name: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> AppSettings:
        """
        Resolve settings.

        Raises:
            FileNotFoundError: If `file_name` is given but missing
            ConfigurationError: If the merged settings fail validation
        """
        data: dict[str, Any] = self.load_file(file_name) if file_name else {}
        data = _deep_merge(data, self.env_overrides())
        if overrides:
            data = _deep_merge(data, overrides)

        try:
            settings = AppSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid settings: {e.error_count()} error(s)",
                component="SettingsLoader",
                details={"errors": [err["loc"] for err in e.errors()]},
            ) from e

        logger.debug(
            f"Settings resolved: market={settings.feed.market}, "
            f"symbols={settings.feed.symbols}, api_port={settings.api.port}"
        )
        return settings


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
