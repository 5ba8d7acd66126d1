# image_transformer/core/errors.py
"""
Error taxonomy for the transform and meta pipelines.

Every pipeline stage raises a subclass of TransformError. The orchestrator
catches them at its boundary and turns each into exactly one HTTP response,
so ``message`` must be safe to show to clients: it never carries exception
text from a codec or the network stack.
"""
from __future__ import annotations


class TransformError(Exception):
    """Base exception for pipeline failures"""

    status_code: int = 500
    stage: str = "unknown"
    default_message: str = "Image transformation failed."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ParameterError(TransformError):
    """Malformed or unsupported query parameter"""
    status_code = 400
    stage = "parse_params"
    default_message = "Invalid request parameters."


class FetchError(TransformError):
    """Remote retrieval failed; status comes from upstream when meaningful"""
    status_code = 502
    stage = "fetch"
    default_message = "Unexpected error fetching image."


class UnsupportedFormatError(TransformError):
    """Bytes match no known image signature (meta endpoint only)"""
    status_code = 415
    stage = "sniff"
    default_message = "Unsupported image format."


class CodecInitError(TransformError):
    """One-time codec setup failed"""
    status_code = 500
    stage = "ensure_codecs"
    default_message = "Failed to prepare image codecs."


class DecodeError(TransformError):
    """Bytes carry a known signature but are not valid content of that format"""
    status_code = 422
    stage = "decode"
    default_message = "Failed to decode source image."


class InvalidDimensionError(TransformError):
    """Requested resize dimensions cannot produce a sane target size"""
    status_code = 400
    stage = "resolve_size"
    default_message = "Invalid resize parameters."


class ResizeError(TransformError):
    status_code = 422
    stage = "resize"
    default_message = "Unable to resize image with the given parameters."


class EncodeError(TransformError):
    status_code = 500
    stage = "encode"
    default_message = "Failed to encode resized image."


class HashError(TransformError):
    """Placeholder hash generation failed. Never fatal."""
    status_code = 500
    stage = "placeholder"
    default_message = "Failed to generate placeholder hash."
