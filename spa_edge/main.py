"""FastAPI application serving the SPA build and collecting client telemetry.

Run with ``python -m spa_edge`` or ``uvicorn spa_edge.main:create_app --factory``.
"""
from __future__ import annotations

import json
import logging
import math
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware import Middleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .config import Settings, get_settings
from .ratelimit import FixedWindowRateLimiter, RateLimitDecision
from .security import SecurityHeadersMiddleware
from .telemetry import TelemetryLog, build_telemetry_log

logger = logging.getLogger(__name__)

ASSETS_ROUTE = "/assets"
TELEMETRY_ROUTE = "/telemetry"
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
INDEX_CACHE_CONTROL = "public, max-age=0"
RATE_LIMIT_MESSAGE = "Too many requests, please try again later."


class ImmutableStaticFiles(StaticFiles):
    """Static files whose names carry a content hash and never change."""

    def file_response(self, *args: Any, **kwargs: Any) -> Response:
        response = super().file_response(*args, **kwargs)
        response.headers["Cache-Control"] = IMMUTABLE_CACHE_CONTROL
        return response


def _ensure_build_output(dist_dir: Path) -> Tuple[Path, Path]:
    """Validate the SPA build output and return its assets dir and index file."""

    if not dist_dir.is_dir():
        raise RuntimeError(f"Build directory '{dist_dir}' does not exist")
    assets_dir = dist_dir / "assets"
    if not assets_dir.is_dir():
        raise RuntimeError(f"Assets directory '{assets_dir}' does not exist")
    index_path = dist_dir / "index.html"
    if not index_path.is_file():
        raise RuntimeError(f"Fallback document '{index_path}' does not exist")
    return assets_dir, index_path


def _rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
    }


def _reject_constant(token: str) -> Any:
    raise ValueError(f"Invalid JSON token {token!r}")


def _is_json(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or (media_type.startswith("application/") and media_type.endswith("+json"))


async def _read_telemetry_body(request: Request, max_bytes: int) -> Any:
    """Parse the request body the way a JSON body parser would.

    Non-JSON content types and empty bodies yield ``{}``.
    """

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise HTTPException(status_code=413, detail="Payload too large")
    body = await request.body()
    if len(body) > max_bytes:
        raise HTTPException(status_code=413, detail="Payload too large")
    if not _is_json(request.headers.get("content-type", "")) or not body.strip():
        return {}
    try:
        return json.loads(body, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        logger.info("Rejected malformed telemetry body: %s", exc)
        raise HTTPException(status_code=400, detail="Malformed JSON body") from exc


def _create_lifespan(
    settings: Settings,
    rate_limiter: Optional[FixedWindowRateLimiter],
    telemetry_log: Optional[TelemetryLog],
):
    """Create an application lifespan manager bound to the provided settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if rate_limiter is None:
            app.state.rate_limiter = FixedWindowRateLimiter(
                limit=settings.telemetry_rate_limit,
                window_seconds=settings.telemetry_window_seconds,
            )
        else:
            app.state.rate_limiter = rate_limiter
        owned_log = telemetry_log is None
        app.state.telemetry_log = build_telemetry_log(settings) if owned_log else telemetry_log
        try:
            yield
        finally:
            if owned_log:
                app.state.telemetry_log.close()

    return lifespan


def create_app(
    settings: Optional[Settings] = None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
    telemetry_log: Optional[TelemetryLog] = None,
) -> FastAPI:
    """Instantiate the edge server with the given settings and collaborators."""

    settings = settings or get_settings()
    assets_dir, index_path = _ensure_build_output(Path(settings.dist_dir))

    # Outermost first: security headers, then compression, then routing.
    middleware = [
        Middleware(SecurityHeadersMiddleware, content_security_policy=settings.content_security_policy),
        Middleware(GZipMiddleware, minimum_size=settings.compression_minimum_size),
    ]

    app = FastAPI(
        title="SPA Edge Server",
        version="0.1.0",
        lifespan=_create_lifespan(settings, rate_limiter, telemetry_log),
        middleware=middleware,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    @app.post(TELEMETRY_ROUTE, status_code=204)
    async def telemetry(request: Request, current_settings: Settings = Depends(get_settings)) -> Response:
        if not current_settings.enable_telemetry:
            raise HTTPException(status_code=404, detail="Telemetry disabled")
        payload = await _read_telemetry_body(request, current_settings.telemetry_max_body_bytes)

        client_ip = request.client.host if request.client else "unknown"
        limiter: FixedWindowRateLimiter = app.state.rate_limiter
        decision = limiter.hit(client_ip)
        headers = _rate_limit_headers(decision)
        if not decision.allowed:
            logger.warning("Telemetry rate limit exceeded for %s", client_ip)
            headers["Retry-After"] = str(decision.retry_after(limiter.now()))
            return PlainTextResponse(RATE_LIMIT_MESSAGE, status_code=429, headers=headers)

        sink: TelemetryLog = app.state.telemetry_log
        # File writes and partition pruning stay off the event loop.
        await run_in_threadpool(sink.record, payload)
        return Response(status_code=204, headers=headers)

    app.mount(ASSETS_ROUTE, ImmutableStaticFiles(directory=str(assets_dir)), name="assets")

    @app.api_route("/{full_path:path}", methods=["GET", "HEAD"])
    async def index(full_path: str) -> Response:
        return FileResponse(index_path, media_type="text/html", headers={"Cache-Control": INDEX_CACHE_CONTROL})

    return app


def run() -> None:
    """Serve the application until interrupted; exits non-zero if the port cannot be bound."""

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)
    logger.info("Server starting on port %s", settings.port)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        server_header=False,
    )


if __name__ == "__main__":
    run()
