"""quotefeed CLI entrypoint.

Subcommand: run

Loads settings (TOML + environment + flags), resolves the feed token from the
environment, starts the feed service and the HTTP API, and runs until SIGINT /
SIGTERM or a fatal feed event.

Exit codes: 0 clean shutdown, 1 start failure or fatal feed event,
2 invalid configuration or missing token.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from quotefeed.adapters.env_provider import EnvSecretsProvider, MissingSecretError
from quotefeed.adapters.lark import LarkNotifier
from quotefeed.adapters.telemetry.jsonl import JsonlTelemetry, TelemetryListener
from quotefeed.api.routes import create_app
from quotefeed.api.server import ApiServer
from quotefeed.config.settings import AppSettings, SettingsLoader, parse_symbols
from quotefeed.live.connection import WsFactory
from quotefeed.live.errors import ConfigurationError, LiveFeedError
from quotefeed.live.events import FeedEvent, Stopped
from quotefeed.live.service import FeedService
from quotefeed.ports.alerting import AlertSink
from quotefeed.utils.overrides import parse_overrides

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog="quotefeed")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Stream quotes until interrupted")
    run.add_argument("--config", type=Path, required=False, help="Path to a TOML settings file")
    run.add_argument("--symbols", help="Comma-separated symbols, e.g. EURUSD$GB,USDJPY$GB")
    run.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    run.add_argument("--no-api", action="store_true", help="Do not start the HTTP API")
    run.add_argument("--telemetry", type=Path, help="Write lifecycle events as JSON lines here")
    run.add_argument(
        "--set",
        dest="config_overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a settings entry, e.g. reconnect.max_attempts=10 (may be repeated)",
    )
    return p


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides = parse_overrides(args.config_overrides)
    if args.symbols:
        overrides.setdefault("feed", {})["symbols"] = parse_symbols(args.symbols)
    if args.log_level:
        overrides.setdefault("logging", {})["level"] = args.log_level
    if args.no_api:
        overrides.setdefault("api", {})["enabled"] = False
    if args.telemetry:
        overrides.setdefault("logging", {})["telemetry_path"] = str(args.telemetry)
    return overrides


def error_log_path(log_file: Path) -> Path:
    """`logs/app.log` -> `logs/app.error.log`."""
    return log_file.with_name(f"{log_file.stem}.error{log_file.suffix}")


def configure_logging(
    level: str,
    log_file: Optional[Path] = None,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
) -> None:
    """
    Log to stderr and, when `log_file` is set, to two size-rotated files: every
    record in `log_file`, ERROR and above also in its `.error` sibling.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
        error_handler = RotatingFileHandler(
            error_log_path(log_file),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


async def run_feed(
    settings: AppSettings,
    token: str,
    *,
    alerts: Optional[AlertSink] = None,
    ws_factory: Optional[WsFactory] = None,
    shutdown: Optional[asyncio.Event] = None,
) -> int:
    """Run the service until `shutdown` is set or the service stops on its own."""
    config = settings.to_feed_config(token)
    alert_sink = alerts or LarkNotifier(settings.alerts.lark_webhook_url)
    service = FeedService(config, alerts=alert_sink, ws_factory=ws_factory)
    shutdown = shutdown or asyncio.Event()

    async def _on_event(event: FeedEvent) -> None:
        if isinstance(event, Stopped):
            shutdown.set()

    service.emitter.subscribe(_on_event)

    if settings.logging.telemetry_path is not None:
        telemetry = JsonlTelemetry(
            run_id=str(uuid.uuid4()),
            sink_path=settings.logging.telemetry_path,
            component="quotefeed",
        )
        service.emitter.subscribe(TelemetryListener(telemetry))

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops)
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, shutdown.set)
            installed.append(sig)

    api: Optional[ApiServer] = None
    try:
        try:
            await service.start()
        except LiveFeedError as e:
            logger.error(f"Failed to start feed: {e}")
            return 1

        if settings.api.enabled:
            api = ApiServer(create_app(service), host=settings.api.host, port=settings.api.port)
            await api.start()

        await shutdown.wait()
        logger.info("Shutting down...")
    finally:
        if api is not None:
            await api.stop()
        if service.is_running():
            await service.stop()
        await service.flush_alerts()
        for sig in installed:
            loop.remove_signal_handler(sig)

    if service.fatal_error is not None:
        logger.error(f"Feed stopped on fatal error: {service.fatal_error}")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint wrapper compatible with console scripts."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = SettingsLoader().load(
            str(args.config) if args.config else None,
            overrides=_cli_overrides(args),
        )
    except (FileNotFoundError, ConfigurationError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(
        settings.logging.level,
        settings.logging.file,
        max_bytes=settings.logging.max_bytes,
        backup_count=settings.logging.backup_count,
    )

    try:
        token = EnvSecretsProvider().get("api_token")
    except MissingSecretError as e:
        logger.error(str(e))
        return 2

    try:
        return asyncio.run(run_feed(settings, token))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
