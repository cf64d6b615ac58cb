"""Read-only HTTP query surface over a FeedService."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from quotefeed.live.service import FeedService

MAX_LIMIT = 1000


def _parse_int(name: str, raw: Optional[str]) -> int:
    if raw is None or raw == "":
        raise HTTPException(status_code=400, detail=f"missing query parameter '{name}'")
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"'{name}' must be an integer") from None


def _clamp_limit(limit: int) -> int:
    return min(limit, MAX_LIMIT)


def build_api_router(service: FeedService) -> APIRouter:
    r = APIRouter()

    # Runs on the event loop: stats are read where the feed mutates them
    @r.get("/api/status")
    async def get_status() -> JSONResponse:
        health = service.get_health()
        body: dict[str, Any] = {
            "running": service.is_running(),
            "status": service.get_connection_status().value,
            "healthy": health.is_healthy,
            "symbols": service.get_subscribed_symbols(),
            "stats": service.get_stats(),
        }
        return JSONResponse(body)

    @r.get("/api/klines")
    def get_klines(symbol: Optional[str] = None, limit: int = 100) -> JSONResponse:
        events = service.get_recent_klines(symbol, _clamp_limit(limit))
        return JSONResponse([asdict(e) for e in events])

    @r.get("/api/quotes")
    def get_quotes(symbol: Optional[str] = None, limit: int = 100) -> JSONResponse:
        events = service.get_recent_quotes(symbol, _clamp_limit(limit))
        return JSONResponse([asdict(e) for e in events])

    @r.get("/api/klines/range")
    def get_klines_range(
        symbol: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> JSONResponse:
        if not symbol:
            raise HTTPException(status_code=400, detail="missing query parameter 'symbol'")
        start_ms = _parse_int("start", start)
        end_ms = _parse_int("end", end)
        if start_ms > end_ms:
            raise HTTPException(status_code=400, detail="'start' must not be after 'end'")

        events = service.get_klines_in_range(symbol, start_ms, end_ms)
        return JSONResponse([asdict(e) for e in events])

    return r


def create_app(service: FeedService) -> FastAPI:
    app = FastAPI(title="quotefeed")
    app.include_router(build_api_router(service))
    return app
