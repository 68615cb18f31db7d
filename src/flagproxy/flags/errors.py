"""Failure kinds raised by the flag fetch pipeline."""

from __future__ import annotations


class FlagProxyError(RuntimeError):
    """Base class for failures that abort a flag request."""


class OriginError(FlagProxyError):
    """Raised when the origin could not deliver a usable answer."""

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url


class OriginBadStatus(OriginError):
    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        super().__init__(f"Unexpected http response {status_code} {reason}".rstrip(), url)
        self.status_code = status_code


class OriginBadEncoding(OriginError):
    def __init__(self, url: str, encoding: str) -> None:
        super().__init__(f"unknown content encoding ({encoding}) in origin response", url)
        self.encoding = encoding


class OriginTimeout(OriginError):
    pass


class OriginConnectionError(OriginError):
    pass


class OriginProtocolError(OriginError):
    pass


class CacheUnavailable(FlagProxyError):
    """Raised when the cache backend cannot be reached or rejects a command."""


class RasterizationError(FlagProxyError):
    """Raised when an SVG cannot be converted to PNG."""
