"""Flag fetching pipeline: origin client, Redis cache, and SVG rasterizer."""

from .cache import NOT_FOUND_SENTINEL, FlagCache, build_redis_client
from .errors import (
    CacheUnavailable,
    FlagProxyError,
    OriginBadEncoding,
    OriginBadStatus,
    OriginConnectionError,
    OriginError,
    OriginProtocolError,
    OriginTimeout,
    RasterizationError,
)
from .fetcher import FlagFetcher
from .origin import OriginFetcher, OriginFound, OriginMissing, flag_svg_url
from .raster import SvgRasterizer

__all__ = [
    "CacheUnavailable",
    "FlagCache",
    "FlagFetcher",
    "FlagProxyError",
    "NOT_FOUND_SENTINEL",
    "OriginBadEncoding",
    "OriginBadStatus",
    "OriginConnectionError",
    "OriginError",
    "OriginFetcher",
    "OriginFound",
    "OriginMissing",
    "OriginProtocolError",
    "OriginTimeout",
    "RasterizationError",
    "SvgRasterizer",
    "build_redis_client",
    "flag_svg_url",
]
