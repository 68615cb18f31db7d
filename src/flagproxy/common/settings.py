"""Application configuration for the flag proxy service."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from pydantic import Field, RedisDsn, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Highest density (DPI) the SVG rasterizer accepts.
MAX_RASTER_DENSITY = 100_000

DEFAULT_ORIGIN_URL_TEMPLATE = "https://osu.ppy.sh/assets/images/flags/{identifier}.svg"


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


@dataclass(frozen=True, slots=True)
class TcpListen:
    host: str
    port: int


@dataclass(frozen=True, slots=True)
class UnixSocketListen:
    path: Path
    mode: Optional[int] = None


ListenTarget = Union[TcpListen, UnixSocketListen]


class FlagProxySettings(BaseSettings):
    """Runtime settings for the flag proxy HTTP service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    listen: Union[int, str] = env_field(3000, "FLAGPROXY_LISTEN")
    listen_host: str = env_field("localhost", "FLAGPROXY_LISTEN_HOST")
    listen_chmod: Optional[str] = env_field(None, "FLAGPROXY_LISTEN_CHMOD")

    redis_url: Optional[RedisDsn] = env_field(None, "FLAGPROXY_REDIS_URL")
    redis_socket: Optional[Path] = env_field(None, "FLAGPROXY_REDIS_SOCKET")
    redis_host: str = env_field("localhost", "FLAGPROXY_REDIS_HOST")
    redis_port: int = env_field(6379, "FLAGPROXY_REDIS_PORT")
    redis_database: int = env_field(0, "FLAGPROXY_REDIS_DATABASE")
    redis_prefix: str = env_field("osu-flags-proxy", "FLAGPROXY_REDIS_PREFIX")

    origin_url_template: str = env_field(DEFAULT_ORIGIN_URL_TEMPLATE, "FLAGPROXY_ORIGIN_URL_TEMPLATE")
    http_timeout_ms: int = env_field(1000, "FLAGPROXY_HTTP_TIMEOUT")
    cache_seconds: int = env_field(604_800, "FLAGPROXY_CACHE_SECONDS")  # one week

    # Properties of the SVGs served by the origin. If the origin changes them
    # the rendered output will be scaled wrong.
    flag_density: int = env_field(72, "FLAGPROXY_FLAG_DENSITY")
    flag_width: int = env_field(36, "FLAGPROXY_FLAG_WIDTH")

    max_size: int = env_field(1000, "FLAGPROXY_MAX_SIZE")
    default_size: int = env_field(128, "FLAGPROXY_DEFAULT_SIZE")
    shutdown_timeout_seconds: float = env_field(5.0, "FLAGPROXY_SHUTDOWN_TIMEOUT")

    metrics_token: Optional[SecretStr] = env_field(None, "FLAGPROXY_METRICS_TOKEN")
    log_level: str = env_field("INFO", "FLAGPROXY_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "FLAGPROXY_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "FLAGPROXY_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "FLAGPROXY_OTEL_SAMPLER_RATIO")

    @field_validator("listen", mode="before")
    @classmethod
    def _parse_listen(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if value.isdigit():
                return int(value)
        return value

    @field_validator("listen_chmod", mode="before")
    @classmethod
    def _validate_chmod(cls, value):
        if value in (None, ""):
            return None
        if isinstance(value, int):
            value = format(value, "o")
        value = str(value).strip()
        try:
            int(value, 8)
        except ValueError as exc:
            raise ValueError(f"listen chmod must be an octal mode, got {value!r}") from exc
        return value

    @field_validator("http_timeout_ms", "cache_seconds", "flag_density", "flag_width", "max_size", "default_size")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be a positive integer")
        return value

    @model_validator(mode="after")
    def _check_default_size(self) -> "FlagProxySettings":
        if self.default_size > self.actual_max_size:
            raise ValueError(
                f"default size ({self.default_size}) is greater than max allowed size ({self.actual_max_size})"
            )
        return self

    @property
    def density_factor(self) -> float:
        return self.flag_density / self.flag_width

    @property
    def actual_max_size(self) -> int:
        return min(math.floor(MAX_RASTER_DENSITY / self.density_factor), self.max_size)

    @property
    def http_timeout_seconds(self) -> float:
        return self.http_timeout_ms / 1000.0

    @property
    def listen_target(self) -> ListenTarget:
        if isinstance(self.listen, int):
            return TcpListen(host=self.listen_host, port=self.listen)
        mode = int(self.listen_chmod, 8) if self.listen_chmod else None
        return UnixSocketListen(path=Path(self.listen), mode=mode)
