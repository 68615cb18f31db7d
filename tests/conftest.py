from __future__ import annotations

from typing import Callable

import httpx
import pytest

from tests.utils.fake_redis import FakeRedis

FLAG_SVG = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10" viewBox="0 0 10 10">'
    b'<rect width="10" height="4" fill="#ae1c28"/>'
    b'<rect y="4" width="10" height="3" fill="#fff"/>'
    b'<rect y="7" width="10" height="3" fill="#21468b"/>'
    b"</svg>"
)


class OriginStub:
    """Scripted origin for httpx.MockTransport that records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = self.serve_svg

    @staticmethod
    def serve_svg(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "image/svg+xml"}, content=FLAG_SVG)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def origin() -> OriginStub:
    return OriginStub()


@pytest.fixture
def flag_svg() -> bytes:
    return FLAG_SVG
