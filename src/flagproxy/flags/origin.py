"""HTTP client for the upstream flag origin."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Union

import httpx
import structlog

from .errors import (
    OriginBadEncoding,
    OriginBadStatus,
    OriginConnectionError,
    OriginProtocolError,
    OriginTimeout,
)

LOGGER = structlog.get_logger("flagproxy.origin")

# Encodings httpx can decode with the brotli extra installed, in preference order.
SUPPORTED_ENCODINGS = ("br", "gzip", "deflate")
REGIONAL_INDICATOR_OFFSET = 127397


@dataclass(frozen=True, slots=True)
class OriginFound:
    body: bytes


@dataclass(frozen=True, slots=True)
class OriginMissing:
    reason: str


OriginResult = Union[OriginFound, OriginMissing]


def normalize_country_code(code: str) -> str:
    return code.strip().upper()


def flag_identifier(code: str) -> str:
    """Map a country code to the dash-joined hex code points of its regional indicator symbols."""
    code = normalize_country_code(code)
    return "-".join(format(ord(char) + REGIONAL_INDICATOR_OFFSET, "x") for char in code)


def flag_svg_url(code: str, template: str) -> str:
    return template.format(identifier=flag_identifier(code))


def _media_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _declared_encodings(response: httpx.Response) -> list[str]:
    raw = response.headers.get("content-encoding", "")
    return [value.strip().lower() for value in raw.split(",") if value.strip()]


class OriginFetcher:
    """Performs single GET requests against the origin and classifies the outcome.

    A 404, or a 200 carrying an unexpected content type, is reported as
    ``OriginMissing``. Any other problem raises an ``OriginError`` subclass.
    ``timeout`` bounds the whole exchange, body included, not each read.
    """

    def __init__(self, client: httpx.AsyncClient, timeout: float) -> None:
        self._client = client
        self._timeout_seconds = timeout
        self._timeout = httpx.Timeout(timeout)
        self._headers = {"Accept-Encoding": ", ".join(SUPPORTED_ENCODINGS)}

    async def fetch(self, url: str, expected_content_type: str) -> OriginResult:
        try:
            return await asyncio.wait_for(self._request(url, expected_content_type), timeout=self._timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise OriginTimeout(f"timed out requesting {url}", url) from exc
        except httpx.NetworkError as exc:
            raise OriginConnectionError(f"connection error requesting {url}: {exc}", url) from exc
        except httpx.HTTPError as exc:
            raise OriginProtocolError(f"protocol error requesting {url}: {exc}", url) from exc

    async def _request(self, url: str, expected_content_type: str) -> OriginResult:
        async with self._client.stream("GET", url, headers=self._headers, timeout=self._timeout) as response:
            return await self._read(url, response, expected_content_type)

    async def _read(self, url: str, response: httpx.Response, expected_content_type: str) -> OriginResult:
        if response.status_code == httpx.codes.NOT_FOUND:
            return OriginMissing("origin returned 404")
        if response.status_code != httpx.codes.OK:
            raise OriginBadStatus(url, response.status_code, response.reason_phrase)

        for encoding in _declared_encodings(response):
            if encoding != "identity" and encoding not in SUPPORTED_ENCODINGS:
                raise OriginBadEncoding(url, encoding)

        content_type = _media_type(response.headers.get("content-type"))
        if content_type != expected_content_type.lower():
            LOGGER.info("origin_unexpected_content_type", url=url, content_type=content_type)
            return OriginMissing(f"unexpected content type {content_type or 'none'}")

        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
        LOGGER.debug("origin_body_received", url=url, bytes=len(body))
        return OriginFound(bytes(body))
