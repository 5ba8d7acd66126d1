# image_transformer/infra/codecs.py
"""
Pillow-backed codec gateway.

- One-time, concurrency-safe initialisation (plugin registration, decode
  limits, capability check)
- Format dispatch through a lookup table: ImageFormat → (decoder, encoder)
- Decode restricted to the sniffed format's plugin, full load forced so
  truncated or corrupt payloads fail here and not during encode
- Re-encode strips EXIF/metadata
- CPU-bound work runs in a worker thread
"""
from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from typing import Callable, NamedTuple

from PIL import Image, ImageFile

from image_transformer.core.errors import CodecInitError, DecodeError, EncodeError, ResizeError
from image_transformer.core.formats import ImageFormat
from image_transformer.core.ports import DecodedRaster
from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)

# Pillow plugin ids per format
PIL_FORMATS = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.AVIF: "AVIF",
}

# Formats without which the service cannot do anything useful
REQUIRED_FORMATS = (ImageFormat.JPEG, ImageFormat.PNG)


@dataclass
class CodecConfig:
    """Configuration for decode/encode"""
    max_input_pixels: int = 50_000_000
    max_output_pixels: int = 40_000_000
    jpeg_quality: int = 85
    webp_quality: int = 80
    avif_quality: int = 60


def get_codec_config() -> CodecConfig:
    """Build CodecConfig from application settings."""
    from image_transformer.config import settings

    return CodecConfig(
        max_input_pixels=settings.max_input_pixels,
        max_output_pixels=settings.max_output_pixels,
        jpeg_quality=settings.jpeg_quality,
        webp_quality=settings.webp_quality,
        avif_quality=settings.avif_quality,
    )


# ============================================================================
# PER-FORMAT CODECS
# ============================================================================

def _flatten_alpha(img: Image.Image) -> Image.Image:
    """Composite transparency onto white and return an RGB image."""
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _to_rgb_or_rgba(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    has_alpha = img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info)
    return img.convert("RGBA" if has_alpha else "RGB")


def _to_png_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("1", "L", "LA", "P", "RGB", "RGBA", "I;16"):
        return img
    return _to_rgb_or_rgba(img)


def _decode_with(pil_format: str) -> Callable[[bytes], Image.Image]:
    def decode(data: bytes) -> Image.Image:
        img = Image.open(io.BytesIO(data), formats=[pil_format])
        # Decompression happens here; most malformed payloads fail on load
        img.load()
        return img
    return decode


def _encode_jpeg(img: Image.Image, config: CodecConfig) -> bytes:
    output = io.BytesIO()
    _flatten_alpha(img).save(output, format="JPEG", quality=config.jpeg_quality, optimize=True)
    return output.getvalue()


def _encode_png(img: Image.Image, config: CodecConfig) -> bytes:
    output = io.BytesIO()
    _to_png_mode(img).save(output, format="PNG", optimize=True)
    return output.getvalue()


def _encode_webp(img: Image.Image, config: CodecConfig) -> bytes:
    output = io.BytesIO()
    _to_rgb_or_rgba(img).save(output, format="WEBP", quality=config.webp_quality)
    return output.getvalue()


def _encode_avif(img: Image.Image, config: CodecConfig) -> bytes:
    output = io.BytesIO()
    _to_rgb_or_rgba(img).save(output, format="AVIF", quality=config.avif_quality)
    return output.getvalue()


class FormatCodec(NamedTuple):
    decode: Callable[[bytes], Image.Image]
    encode: Callable[[Image.Image, CodecConfig], bytes]


CODECS: dict[ImageFormat, FormatCodec] = {
    ImageFormat.JPEG: FormatCodec(_decode_with("JPEG"), _encode_jpeg),
    ImageFormat.PNG: FormatCodec(_decode_with("PNG"), _encode_png),
    ImageFormat.WEBP: FormatCodec(_decode_with("WEBP"), _encode_webp),
    ImageFormat.AVIF: FormatCodec(_decode_with("AVIF"), _encode_avif),
}


# ============================================================================
# ONE-TIME INITIALISATION
# ============================================================================

def _consume_exception(future: asyncio.Future) -> None:
    # A failed attempt may have no waiter left if every caller was cancelled
    if not future.cancelled():
        future.exception()


class OnceInitializer:
    """
    Run an initialisation routine at most once per process.

    States: not started (no future), in progress (shared future), ready.
    Concurrent first callers all await the same future. A failed attempt
    clears the future so a later call starts over.
    """

    def __init__(self, routine: Callable[[], None]):
        self._routine = routine
        self._ready = False
        self._future: asyncio.Future | None = None

    @property
    def ready(self) -> bool:
        return self._ready

    async def run(self) -> None:
        if self._ready:
            return

        if self._future is None or self._future.done():
            self._future = asyncio.ensure_future(self._execute())
            self._future.add_done_callback(_consume_exception)

        # Shield so a cancelled waiter does not cancel the shared attempt
        await asyncio.shield(self._future)

    async def _execute(self) -> None:
        try:
            await asyncio.to_thread(self._routine)
        except BaseException:
            self._future = None
            raise
        self._ready = True


# ============================================================================
# GATEWAY
# ============================================================================

class PillowCodecGateway:
    """Codec gateway backed by Pillow"""

    def __init__(self, config: CodecConfig | None = None):
        self.config = config or get_codec_config()
        self.available_formats: frozenset[ImageFormat] = frozenset()
        self._initializer = OnceInitializer(self._initialise)

    @property
    def initialised(self) -> bool:
        return self._initializer.ready

    def _initialise(self) -> None:
        # Do NOT allow truncated images: a partial decode serves grey bands
        ImageFile.LOAD_TRUNCATED_IMAGES = False
        # Decompression bomb protection (parsing limit, not output limit)
        Image.MAX_IMAGE_PIXELS = self.config.max_input_pixels

        Image.init()

        available = {
            fmt for fmt, pil_id in PIL_FORMATS.items()
            if pil_id in Image.OPEN and pil_id in Image.SAVE
        }
        missing = [fmt.value for fmt in REQUIRED_FORMATS if fmt not in available]
        if missing:
            raise CodecInitError(f"Pillow is missing required codecs: {', '.join(missing)}")

        self.available_formats = frozenset(available)
        unavailable = sorted(fmt.value for fmt in set(PIL_FORMATS) - available)
        logger.info(
            f"Image codecs ready: {sorted(fmt.value for fmt in available)}"
            + (f" (unavailable: {unavailable})" if unavailable else "")
        )

    async def ensure_initialised(self) -> None:
        try:
            await self._initializer.run()
        except CodecInitError as e:
            logger.error(f"Codec initialisation failed: {e}")
            # Public message stays generic
            raise CodecInitError() from e

    async def decode(self, data: bytes, fmt: ImageFormat) -> DecodedRaster:
        return await asyncio.to_thread(self._decode_sync, data, fmt)

    async def resize(self, raster: DecodedRaster, width: int, height: int) -> DecodedRaster:
        return await asyncio.to_thread(self._resize_sync, raster, width, height)

    async def encode(self, raster: DecodedRaster, fmt: ImageFormat) -> bytes:
        return await asyncio.to_thread(self._encode_sync, raster, fmt)

    # ------------------------------------------------------------------
    # Synchronous implementations (worker thread)
    # ------------------------------------------------------------------

    def _decode_sync(self, data: bytes, fmt: ImageFormat) -> DecodedRaster:
        if fmt not in self.available_formats:
            logger.warning(f"Decode requested for unavailable codec: {fmt.value}")
            raise DecodeError()

        try:
            img = CODECS[fmt].decode(data)
        except Image.DecompressionBombError as e:
            logger.warning(f"Decompression bomb rejected: {e}")
            raise DecodeError()
        except MemoryError:
            logger.error("Memory error during image decode")
            raise DecodeError()
        except (OSError, ValueError, SyntaxError) as e:
            # Pillow reports corrupt data as OSError (incl. UnidentifiedImageError)
            logger.warning(f"Image decode error (malformed {fmt.value}): {e}")
            raise DecodeError()
        except Exception as e:
            # Catch-all for unexpected parser issues
            logger.error(f"Unexpected error during {fmt.value} decode: {type(e).__name__}: {e}")
            raise DecodeError()

        width, height = img.size
        if width <= 0 or height <= 0:
            raise DecodeError()

        logger.debug(f"Decoded {fmt.value}: {width}x{height} mode={img.mode}")
        return DecodedRaster(width=width, height=height, pixels=img)

    def _resize_sync(self, raster: DecodedRaster, width: int, height: int) -> DecodedRaster:
        if width <= 0 or height <= 0:
            raise ResizeError()

        if width * height > self.config.max_output_pixels:
            logger.warning(
                f"Resize target {width}x{height} exceeds {self.config.max_output_pixels:,} pixels"
            )
            raise ResizeError()

        if (width, height) == (raster.width, raster.height):
            return raster

        img: Image.Image = raster.pixels
        # Resampling filters need a non-palette mode
        if img.mode in ("P", "1"):
            img = _to_rgb_or_rgba(img)

        try:
            resized = img.resize((width, height), Image.Resampling.LANCZOS)
        except MemoryError:
            logger.error(f"Memory error resizing to {width}x{height}")
            raise ResizeError()
        except Exception as e:
            logger.warning(f"Resize to {width}x{height} failed: {type(e).__name__}: {e}")
            raise ResizeError()

        return DecodedRaster(width=resized.width, height=resized.height, pixels=resized)

    def _encode_sync(self, raster: DecodedRaster, fmt: ImageFormat) -> bytes:
        if fmt not in self.available_formats:
            logger.warning(f"Encode requested for unavailable codec: {fmt.value}")
            raise EncodeError()

        try:
            return CODECS[fmt].encode(raster.pixels, self.config)
        except MemoryError:
            logger.error("Memory error during image encode")
            raise EncodeError()
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Image encode error ({fmt.value}): {e}")
            raise EncodeError()
        except Exception as e:
            logger.error(f"Unexpected error during {fmt.value} encode: {type(e).__name__}: {e}")
            raise EncodeError()


# Process-wide gateway; initialisation state lives on the instance
_gateway: PillowCodecGateway | None = None


def get_codec_gateway() -> PillowCodecGateway:
    global _gateway
    if _gateway is None:
        _gateway = PillowCodecGateway()
    return _gateway
