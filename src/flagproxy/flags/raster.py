"""SVG to PNG conversion."""

from __future__ import annotations

import asyncio

import cairosvg

from .errors import RasterizationError


class SvgRasterizer:
    """Renders SVG documents to PNG at a DPI proportional to the output width.

    The origin SVGs are calibrated so that ``density_factor * width`` DPI yields
    crisp line art at ``width`` pixels.
    """

    def __init__(self, density_factor: float) -> None:
        self._density_factor = density_factor

    def density_for(self, size: int) -> float:
        return self._density_factor * size

    def render(self, svg: bytes, size: int) -> bytes:
        if not svg:
            raise RasterizationError("cannot rasterize an empty svg document")
        try:
            return cairosvg.svg2png(bytestring=svg, dpi=self.density_for(size), output_width=size)
        except Exception as exc:  # noqa: BLE001 - cairosvg raises parser and cairo errors of many types
            raise RasterizationError(f"failed to rasterize svg at size {size}: {exc}") from exc

    async def render_async(self, svg: bytes, size: int) -> bytes:
        return await asyncio.to_thread(self.render, svg, size)
