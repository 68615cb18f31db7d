from __future__ import annotations

import asyncio
import gzip
import time
import zlib

import brotli
import httpx
import pytest

from flagproxy.flags.errors import (
    OriginBadEncoding,
    OriginBadStatus,
    OriginConnectionError,
    OriginError,
    OriginProtocolError,
    OriginTimeout,
)
from flagproxy.flags.origin import (
    OriginFetcher,
    OriginFound,
    OriginMissing,
    flag_identifier,
    flag_svg_url,
)
from flagproxy.common.settings import DEFAULT_ORIGIN_URL_TEMPLATE

URL = "https://origin.test/flags/1f1f3-1f1f1.svg"
SVG = b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10"/>'


def _fetcher(handler) -> OriginFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OriginFetcher(client, timeout=1.0)


def test_flag_url_uses_regional_indicator_code_points() -> None:
    assert flag_identifier("NL") == "1f1f3-1f1f1"
    assert flag_identifier("nl") == "1f1f3-1f1f1"
    assert flag_svg_url("us", DEFAULT_ORIGIN_URL_TEMPLATE) == (
        "https://osu.ppy.sh/assets/images/flags/1f1fa-1f1f8.svg"
    )


@pytest.mark.asyncio
async def test_fetch_returns_body_on_200() -> None:
    fetcher = _fetcher(lambda request: httpx.Response(200, headers={"Content-Type": "image/svg+xml"}, content=SVG))

    result = await fetcher.fetch(URL, "image/svg+xml")

    assert result == OriginFound(SVG)


@pytest.mark.asyncio
async def test_fetch_advertises_supported_encodings() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, headers={"Content-Type": "image/svg+xml"}, content=SVG)

    await _fetcher(handler).fetch(URL, "image/svg+xml")

    assert seen[0].method == "GET"
    assert seen[0].headers["Accept-Encoding"] == "br, gzip, deflate"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("encoding", "compress"),
    [
        ("br", brotli.compress),
        ("gzip", gzip.compress),
        ("deflate", zlib.compress),
    ],
)
async def test_fetch_decodes_declared_content_encoding(encoding, compress) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "image/svg+xml", "Content-Encoding": encoding},
            content=compress(SVG),
        )

    result = await _fetcher(handler).fetch(URL, "image/svg+xml")

    assert isinstance(result, OriginFound)
    assert result.body == SVG
    assert len(result.body) == len(SVG)


@pytest.mark.asyncio
async def test_fetch_rejects_unknown_content_encoding() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "image/svg+xml", "Content-Encoding": "compress"},
            content=SVG,
        )

    with pytest.raises(OriginBadEncoding) as exc:
        await _fetcher(handler).fetch(URL, "image/svg+xml")
    assert exc.value.encoding == "compress"
    assert exc.value.url == URL


@pytest.mark.asyncio
async def test_fetch_maps_404_to_missing() -> None:
    result = await _fetcher(lambda request: httpx.Response(404)).fetch(URL, "image/svg+xml")

    assert isinstance(result, OriginMissing)


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [301, 403, 500, 503])
async def test_fetch_raises_on_unexpected_status(status_code) -> None:
    with pytest.raises(OriginBadStatus) as exc:
        await _fetcher(lambda request: httpx.Response(status_code)).fetch(URL, "image/svg+xml")
    assert exc.value.status_code == status_code


@pytest.mark.asyncio
async def test_fetch_treats_wrong_content_type_as_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "text/html"}, content=b"<html>placeholder</html>")

    result = await _fetcher(handler).fetch(URL, "image/svg+xml")

    assert isinstance(result, OriginMissing)
    assert "text/html" in result.reason


@pytest.mark.asyncio
async def test_fetch_ignores_content_type_parameters() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "image/svg+xml; charset=utf-8"}, content=SVG)

    assert await _fetcher(handler).fetch(URL, "image/svg+xml") == OriginFound(SVG)


@pytest.mark.asyncio
async def test_fetch_keeps_empty_body_distinct_from_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "image/svg+xml"}, content=b"")

    result = await _fetcher(handler).fetch(URL, "image/svg+xml")

    assert result == OriginFound(b"")
    assert not isinstance(result, OriginMissing)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (httpx.ReadTimeout("slow"), OriginTimeout),
        (httpx.ConnectTimeout("slow"), OriginTimeout),
        (httpx.ConnectError("refused"), OriginConnectionError),
        (httpx.RemoteProtocolError("garbage"), OriginProtocolError),
    ],
)
async def test_fetch_classifies_transport_failures(error, expected) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    with pytest.raises(expected) as exc:
        await _fetcher(handler).fetch(URL, "image/svg+xml")
    assert isinstance(exc.value, OriginError)
    assert exc.value.__cause__ is error


class TrickleStream(httpx.AsyncByteStream):
    """Body that sends one byte at a time, pausing between bytes."""

    def __init__(self, chunks: int, delay: float) -> None:
        self._chunks = chunks
        self._delay = delay

    async def __aiter__(self):
        for _ in range(self._chunks):
            await asyncio.sleep(self._delay)
            yield b"x"


@pytest.mark.asyncio
async def test_fetch_timeout_bounds_slow_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "image/svg+xml"},
            stream=TrickleStream(chunks=8, delay=0.1),
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = OriginFetcher(client, timeout=0.3)

    started = time.monotonic()
    with pytest.raises(OriginTimeout) as exc:
        await fetcher.fetch(URL, "image/svg+xml")

    assert time.monotonic() - started < 0.7
    assert exc.value.url == URL
