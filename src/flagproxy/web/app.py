"""HTTP front end serving rasterized flags."""

from __future__ import annotations

import re
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from redis.asyncio import Redis
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import FlagProxySettings
from ..flags import (
    CacheUnavailable,
    FlagCache,
    FlagFetcher,
    FlagProxyError,
    OriginError,
    OriginFetcher,
    SvgRasterizer,
    build_redis_client,
)

LOGGER = structlog.get_logger("flagproxy.web")

FLAG_PATH_REGEX = re.compile(r"^([A-Za-z]+)(?:-([0-9]+))?\.png$")

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("flagproxy_http_requests_total", "Total HTTP requests"))
FLAG_ERROR_COUNTER = GLOBAL_REGISTRY.register(Counter("flagproxy_flag_errors_total", "Flag requests that failed"))
FLAG_NOT_FOUND_COUNTER = GLOBAL_REGISTRY.register(Counter("flagproxy_flag_not_found_total", "Flag requests answered with 404"))
REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "flagproxy_http_request_latency_seconds",
        buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
        description="HTTP request latency",
    )
)


class FlagProxyState:
    def __init__(
        self,
        settings: FlagProxySettings,
        redis: Redis,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.settings = settings
        self.redis = redis
        self.http = http_client
        self.cache = FlagCache(redis, settings.redis_prefix)
        self.fetcher = FlagFetcher(
            self.cache,
            OriginFetcher(http_client, settings.http_timeout_seconds),
            SvgRasterizer(settings.density_factor),
            cache_seconds=settings.cache_seconds,
            url_template=settings.origin_url_template,
        )


def get_state(request: Request) -> FlagProxyState:
    return request.app.state.flag_state  # type: ignore[attr-defined]


def usage_text(default_size: int) -> str:
    return (
        "Use /XX-xxx.png where XX is the country code and xxx is the desired output width "
        f"(it's also optional: /XX.png uses {default_size}). Example: /NL-64.png or /NL.png"
    )


def create_app(
    settings: Optional[FlagProxySettings] = None,
    *,
    redis: Optional[Redis] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or FlagProxySettings()
    configure_logging("flagproxy", settings.log_level)
    configure_tracing(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_redis = redis is None
        owned_http = http_client is None
        redis_client = redis if redis is not None else build_redis_client(settings)
        client = http_client if http_client is not None else httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds)
        )
        state = FlagProxyState(settings, redis_client, client)
        app.state.flag_state = state
        LOGGER.info("redis_connecting", prefix=settings.redis_prefix)
        await state.cache.ping()
        LOGGER.info("redis_connected")
        try:
            yield
        finally:
            if owned_http:
                await client.aclose()
            if owned_redis:
                await redis_client.aclose()
            LOGGER.info("redis_disconnected")

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_fastapi_app(app)

    @app.exception_handler(StarletteHTTPException)
    async def plain_text_errors(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "error"
        return PlainTextResponse(detail, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        REQUEST_COUNTER.inc()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            LOGGER.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            LOGGER.warning("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.get("/", response_class=PlainTextResponse)
    async def index(state: FlagProxyState = Depends(get_state)) -> PlainTextResponse:
        return PlainTextResponse(usage_text(state.settings.default_size))

    @app.get("/healthz")
    async def health_check(state: FlagProxyState = Depends(get_state)) -> dict:
        """Health check for readiness/liveness probes."""
        try:
            await state.cache.ping()
        except CacheUnavailable as exc:
            LOGGER.warning("health_check_failed", error=str(exc))
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="redis unavailable") from exc
        return {"status": "healthy", "checks": {"redis": "ok"}}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request, state: FlagProxyState = Depends(get_state)) -> PlainTextResponse:
        token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.get("/{filename}")
    async def get_flag(filename: str, state: FlagProxyState = Depends(get_state)) -> Response:
        match = FLAG_PATH_REGEX.match(filename)
        if not match:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

        code, raw_size = match.group(1), match.group(2)
        size = state.settings.default_size if raw_size is None else int(raw_size)
        max_size = state.settings.actual_max_size
        if size <= 0 or size > max_size:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"invalid size, you may only pick a size between 1 and {max_size}",
            )

        try:
            png = await state.fetcher.fetch_png(code, size)
        except OriginError as exc:
            FLAG_ERROR_COUNTER.inc()
            LOGGER.error("flag_origin_error", code=code, size=size, error=str(exc), kind=type(exc).__name__)
            return PlainTextResponse(
                "error while requesting flag from origin", status_code=status.HTTP_502_BAD_GATEWAY
            )
        except FlagProxyError as exc:
            FLAG_ERROR_COUNTER.inc()
            LOGGER.error("flag_error", code=code, size=size, error=str(exc), kind=type(exc).__name__)
            return PlainTextResponse(
                "error while converting the image", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        if png is None:
            FLAG_NOT_FOUND_COUNTER.inc()
            LOGGER.info("flag_not_found", code=code)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

        LOGGER.info("flag_sent", code=code, size=size, bytes=len(png))
        return Response(content=png, media_type="image/png")

    return app
