# image_transformer/core/ports.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from image_transformer.core.formats import ImageFormat


@dataclass(frozen=True)
class RemoteImage:
    """Bytes as received from the fetch gateway"""
    data: bytes
    content_type: Optional[str] = None
    source: str = ""  # e.g. "http_direct", "image_proxy"


@dataclass
class DecodedRaster:
    width: int
    height: int
    pixels: Any  # codec-specific handle (a PIL image for the Pillow gateway)


# ============================================================================
# GATEWAYS
# ============================================================================

class ImageFetcher(Protocol):
    async def fetch(self, url: str) -> RemoteImage:
        """
        Raises:
            FetchError: carrying the HTTP status to report.
        """
        ...


class CodecGateway(Protocol):
    async def ensure_initialised(self) -> None:
        """Idempotent and safe under concurrent first use. Raises CodecInitError."""
        ...

    async def decode(self, data: bytes, fmt: ImageFormat) -> DecodedRaster: ...
    async def resize(self, raster: DecodedRaster, width: int, height: int) -> DecodedRaster: ...
    async def encode(self, raster: DecodedRaster, fmt: ImageFormat) -> bytes: ...


class PlaceholderGenerator(Protocol):
    async def generate(self, raster: DecodedRaster) -> Optional[str]:
        """Best effort. Raises HashError; callers treat failure as no placeholder."""
        ...
