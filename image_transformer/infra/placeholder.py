# image_transformer/infra/placeholder.py
"""
Placeholder hash generation for the meta endpoint.

ThumbHash encodes a tiny preview (with alpha and aspect ratio) into ~25 bytes.
The encoder itself lives in the optional ``thumbhash`` package
(``pip install image-transformer[placeholder]``); without it every request
reports ``thumbHash: null``.
"""
from __future__ import annotations

import asyncio
import base64
from typing import Optional

from PIL import Image

from image_transformer.core.errors import HashError
from image_transformer.core.ports import DecodedRaster
from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)

# ThumbHash accepts at most 100x100 input
THUMBHASH_MAX_SIDE = 100

# Greyscale modes Pillow cannot convert straight to RGBA
_WIDE_GREY_MODES = ("I;16", "I;16L", "I;16B", "I;16N")


def _thumbnail_rgba(img: Image.Image) -> Image.Image:
    """Downscale to fit THUMBHASH_MAX_SIDE and return an RGBA copy."""
    if img.mode in _WIDE_GREY_MODES:
        # 16-bit grey → 8-bit grey, keeping relative brightness
        img = img.convert("I").point(lambda v: v * (1 / 256)).convert("L")
    elif img.mode in ("I", "F"):
        img = img.convert("L")

    thumb = img.convert("RGBA")
    thumb.thumbnail((THUMBHASH_MAX_SIDE, THUMBHASH_MAX_SIDE), Image.Resampling.BILINEAR)
    return thumb


class ThumbHashGenerator:
    """Hash gateway producing base64 ThumbHash strings"""

    def _generate_sync(self, raster: DecodedRaster) -> str:
        try:
            import thumbhash
        except ImportError as e:
            raise HashError("thumbhash package is not installed") from e

        try:
            thumb = _thumbnail_rgba(raster.pixels)
            # Returns the hash as a list of byte values
            hash_bytes = bytes(thumbhash.rgba_to_thumb_hash(thumb.width, thumb.height, list(thumb.tobytes())))
        except Exception as e:
            raise HashError(f"thumbhash encoding failed: {e.__class__.__name__}: {e}") from e

        if not hash_bytes:
            raise HashError("thumbhash returned an empty hash")
        return base64.b64encode(hash_bytes).decode("ascii")

    async def generate(self, raster: DecodedRaster) -> Optional[str]:
        return await asyncio.to_thread(self._generate_sync, raster)


class DisabledPlaceholderGenerator:
    """Hash gateway used when placeholders are switched off"""

    async def generate(self, raster: DecodedRaster) -> Optional[str]:
        return None


def build_placeholder_generator(settings):
    if settings.placeholder_provider == "none":
        logger.info("Placeholder generation disabled")
        return DisabledPlaceholderGenerator()
    return ThumbHashGenerator()
