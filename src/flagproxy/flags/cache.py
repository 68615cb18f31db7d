"""Redis-backed two-tier cache for flag SVGs and their PNG renditions.

Each country code owns a single hash ``<prefix>:<CODE>``. The ``svg`` field
holds the origin document, or an empty value when the origin confirmed the
flag does not exist. PNG renditions live next to it under ``png:<size>``. The
TTL belongs to the hash and is only ever set when the ``svg`` field is
written, so renditions can never outlive the document they were built from.
"""

from __future__ import annotations

from typing import Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..common.settings import FlagProxySettings
from .errors import CacheUnavailable
from .origin import normalize_country_code

LOGGER = structlog.get_logger("flagproxy.cache")

SVG_FIELD = "svg"
NOT_FOUND_SENTINEL = b""

# KEYS[1] = record, ARGV = ttl seconds, field, value
SET_WITH_EXPIRY_SCRIPT = """
local written = redis.call('HSET', KEYS[1], ARGV[2], ARGV[3])
redis.call('EXPIRE', KEYS[1], ARGV[1])
return written
"""

# KEYS[1] = record, ARGV = required field, field, value. Returns -1 when skipped.
SET_IF_RECORD_EXISTS_SCRIPT = """
if redis.call('HEXISTS', KEYS[1], ARGV[1]) == 1 then
    return redis.call('HSET', KEYS[1], ARGV[2], ARGV[3])
end
return -1
"""


def png_field(size: int) -> str:
    return f"png:{size}"


def build_redis_client(settings: FlagProxySettings) -> Redis:
    if settings.redis_url:
        return Redis.from_url(str(settings.redis_url))
    if settings.redis_socket:
        return Redis(unix_socket_path=str(settings.redis_socket), db=settings.redis_database)
    return Redis(host=settings.redis_host, port=settings.redis_port, db=settings.redis_database)


class FlagCache:
    def __init__(self, redis: Redis, key_prefix: str) -> None:
        self._redis = redis
        self._key_prefix = key_prefix
        self._set_with_expiry = redis.register_script(SET_WITH_EXPIRY_SCRIPT)
        self._set_if_record_exists = redis.register_script(SET_IF_RECORD_EXISTS_SCRIPT)

    def record_key(self, code: str) -> str:
        return f"{self._key_prefix}:{normalize_country_code(code)}"

    async def get_raster(self, code: str, size: int) -> Optional[bytes]:
        return await self._hget(code, png_field(size))

    async def get_vector(self, code: str) -> Optional[bytes]:
        """Return the cached SVG, ``NOT_FOUND_SENTINEL`` for a known-missing flag, or None if never fetched."""
        return await self._hget(code, SVG_FIELD)

    async def set_vector_with_expiry(self, code: str, svg: bytes, ttl_seconds: int) -> None:
        key = self.record_key(code)
        try:
            await self._set_with_expiry(keys=[key], args=[int(ttl_seconds), SVG_FIELD, svg])
        except RedisError as exc:
            raise CacheUnavailable(f"failed to store svg for {key}: {exc}") from exc

    async def set_raster_if_record_exists(self, code: str, size: int, png: bytes) -> bool:
        key = self.record_key(code)
        try:
            result = await self._set_if_record_exists(keys=[key], args=[SVG_FIELD, png_field(size), png])
        except RedisError as exc:
            raise CacheUnavailable(f"failed to store png for {key}: {exc}") from exc
        return result is not None and int(result) >= 0

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            raise CacheUnavailable(f"redis ping failed: {exc}") from exc

    async def _hget(self, code: str, field: str) -> Optional[bytes]:
        key = self.record_key(code)
        try:
            return await self._redis.hget(key, field)
        except RedisError as exc:
            raise CacheUnavailable(f"failed to read {field} from {key}: {exc}") from exc
