"""Cached flag lookup: raster tier, then vector tier, then origin."""

from __future__ import annotations

from typing import Optional

import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter
from .cache import NOT_FOUND_SENTINEL, FlagCache
from .origin import OriginFetcher, OriginFound, flag_svg_url, normalize_country_code
from .raster import SvgRasterizer

LOGGER = structlog.get_logger("flagproxy.fetcher")
TRACER = trace.get_tracer("flagproxy.fetcher")

SVG_CONTENT_TYPE = "image/svg+xml"

RASTER_HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("flagproxy_png_cache_hits_total", "PNGs served from cache"))
VECTOR_HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("flagproxy_svg_cache_hits_total", "SVGs read from cache"))
ORIGIN_FETCH_COUNTER = GLOBAL_REGISTRY.register(Counter("flagproxy_origin_fetches_total", "Requests sent to the origin"))
ORIGIN_MISSING_COUNTER = GLOBAL_REGISTRY.register(
    Counter("flagproxy_origin_not_found_total", "Flags the origin reported as missing")
)
RASTERIZE_COUNTER = GLOBAL_REGISTRY.register(Counter("flagproxy_rasterizations_total", "PNGs built from SVG"))
RASTER_STORE_SKIPPED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("flagproxy_png_cache_writes_skipped_total", "PNG cache writes skipped or failed")
)


class FlagFetcher:
    def __init__(
        self,
        cache: FlagCache,
        origin: OriginFetcher,
        rasterizer: SvgRasterizer,
        *,
        cache_seconds: int,
        url_template: str,
    ) -> None:
        self._cache = cache
        self._origin = origin
        self._rasterizer = rasterizer
        self._cache_seconds = cache_seconds
        self._url_template = url_template

    async def fetch_png(self, code: str, size: int) -> Optional[bytes]:
        """Return PNG bytes for ``code`` at ``size`` pixels wide, or None when the flag does not exist.

        Origin, cache and rasterization failures propagate as ``FlagProxyError``.
        Nothing is cached when the origin request fails.
        """
        code = normalize_country_code(code)
        log = LOGGER.bind(code=code, size=size)
        with TRACER.start_as_current_span("flags.fetch_png", attributes={"flagproxy.code": code, "flagproxy.size": size}) as span:
            png = await self._cache.get_raster(code, size)
            if png is not None:
                RASTER_HIT_COUNTER.inc()
                span.set_attribute("flagproxy.png_cached", True)
                log.info("png_cache_hit")
                return png

            svg = await self._cache.get_vector(code)
            if svg is None:
                svg = await self._load_svg(code, log)
                if svg is None:
                    return None
            elif svg == NOT_FOUND_SENTINEL:
                log.info("svg_cached_as_missing")
                return None
            else:
                VECTOR_HIT_COUNTER.inc()
                log.info("svg_cache_hit")

            log.info("png_build")
            png = await self._rasterizer.render_async(svg, size)
            RASTERIZE_COUNTER.inc()
            span.set_attribute("flagproxy.png_bytes", len(png))
            await self._store_png(code, size, png, log)
            return png

    async def _load_svg(self, code: str, log) -> Optional[bytes]:
        url = flag_svg_url(code, self._url_template)
        log.info("svg_origin_load", url=url)
        ORIGIN_FETCH_COUNTER.inc()
        with TRACER.start_as_current_span("flags.origin_fetch", attributes={"http.url": url}):
            result = await self._origin.fetch(url, SVG_CONTENT_TYPE)

        if not isinstance(result, OriginFound):
            ORIGIN_MISSING_COUNTER.inc()
            log.info("svg_origin_missing", url=url, reason=result.reason)
            await self._cache.set_vector_with_expiry(code, NOT_FOUND_SENTINEL, self._cache_seconds)
            return None

        # An empty body shares its encoding with the not-found sentinel, so it
        # is rasterized (and rejected) without being cached.
        if not result.body:
            log.warning("svg_origin_empty_body", url=url)
            return result.body

        await self._cache.set_vector_with_expiry(code, result.body, self._cache_seconds)
        return result.body

    async def _store_png(self, code: str, size: int, png: bytes, log) -> None:
        try:
            stored = await self._cache.set_raster_if_record_exists(code, size, png)
        except Exception as exc:  # noqa: BLE001
            RASTER_STORE_SKIPPED_COUNTER.inc()
            log.warning("png_cache_write_failed", error=str(exc))
            return
        if not stored:
            RASTER_STORE_SKIPPED_COUNTER.inc()
            log.info("png_cache_write_skipped", reason="record expired")
