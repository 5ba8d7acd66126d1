# image_transformer/core/formats.py
"""
Image format detection from raw bytes.

Magic bytes decide the format. The transport's Content-Type header is only
consulted when the buffer is too short, or too truncated, for the signature
check to be conclusive; it never overrides a signature match.
"""
from __future__ import annotations

import struct
from enum import Enum


class ImageFormat(str, Enum):
    """Supported source and output formats"""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"


JPEG_SIGNATURE = b"\xff\xd8"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
AVIF_BRANDS = frozenset({b"avif", b"avis"})

# Longest fixed-offset check (RIFF....WEBP / size+ftyp+brand)
_CONCLUSIVE_PREFIX = 12

_CONTENT_TYPES = {
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.AVIF: "image/avif",
}

_DECLARED_TYPES = {
    "image/jpeg": ImageFormat.JPEG,
    "image/jpg": ImageFormat.JPEG,
    "image/pjpeg": ImageFormat.JPEG,
    "image/png": ImageFormat.PNG,
    "image/x-png": ImageFormat.PNG,
    "image/webp": ImageFormat.WEBP,
    "image/avif": ImageFormat.AVIF,
}

_FORMAT_ALIASES = {
    "jpeg": ImageFormat.JPEG,
    "jpg": ImageFormat.JPEG,
    "png": ImageFormat.PNG,
    "webp": ImageFormat.WEBP,
    "avif": ImageFormat.AVIF,
}


def format_to_content_type(fmt: ImageFormat) -> str:
    return _CONTENT_TYPES[fmt]


def parse_format_name(value: str | None) -> ImageFormat | None:
    """Map a user-supplied format name to ImageFormat (case-insensitive, jpg → jpeg)."""
    if not value:
        return None
    return _FORMAT_ALIASES.get(value.strip().lower())


def _declared_format(content_type: str | None) -> ImageFormat | None:
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    return _DECLARED_TYPES.get(mime)


def _is_avif(data: bytes) -> bool:
    """Check an ISO-BMFF ftyp box for an AVIF major or compatible brand."""
    if data[4:8] != b"ftyp":
        return False

    if data[8:12] in AVIF_BRANDS:
        return True

    # ftyp: size(4) 'ftyp'(4) major(4) minor_version(4) compatible brands(4 each)
    box_size = struct.unpack(">I", data[0:4])[0]
    box_end = min(box_size, len(data)) if box_size >= 16 else len(data)
    for offset in range(16, box_end - 3, 4):
        if data[offset:offset + 4] in AVIF_BRANDS:
            return True
    return False


def _is_truncated_container(data: bytes) -> bool:
    """True when a RIFF / ftyp header starts but ends before the brand bytes."""
    if len(data) >= _CONCLUSIVE_PREFIX:
        return False
    if data.startswith(b"RIFF") or b"RIFF".startswith(data):
        return True
    return len(data) >= 8 and data[4:8] == b"ftyp"


def detect_format(data: bytes, content_type: str | None = None) -> ImageFormat | None:
    """
    Classify a payload as one of the supported formats.

    Returns None when nothing matches. That is not an error: callers pass such
    payloads through untouched.
    """
    if data.startswith(JPEG_SIGNATURE):
        return ImageFormat.JPEG

    if data.startswith(PNG_SIGNATURE):
        return ImageFormat.PNG

    if len(data) >= _CONCLUSIVE_PREFIX:
        if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            return ImageFormat.WEBP
        if _is_avif(data):
            return ImageFormat.AVIF
        return None

    # Too short to be conclusive: a prefix of a known signature, a truncated
    # container header, or an empty body. Let the declared type break the tie.
    inconclusive = (
        not data
        or JPEG_SIGNATURE.startswith(data)
        or PNG_SIGNATURE.startswith(data)
        or _is_truncated_container(data)
    )
    if inconclusive:
        return _declared_format(content_type)

    return None
