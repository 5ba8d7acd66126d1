"""
Tests for image_transformer/core/orchestrator.py.

Covers:
- Transform pipeline: passthrough, fast path, resize, re-encode
- Stage failure → status mapping
- Meta pipeline including non-fatal placeholder failures
- Metrics recorded per outcome
"""
from __future__ import annotations

import io
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from conftest import FakeFetcher, FakePlaceholder
from image_transformer.core.errors import CodecInitError, FetchError, HashError
from image_transformer.core.formats import ImageFormat, detect_format
from image_transformer.core.ports import DecodedRaster
from image_transformer.core.orchestrator import (
    DEFAULT_CACHE_CONTROL,
    ErrorResult,
    ImageResult,
    ImageTransformService,
    MetaResult,
)
from image_transformer.infra.metrics import get_metrics_collector

URL = "https://cdn.example.com/photo"


def _service(fetcher, codecs, placeholder=None) -> ImageTransformService:
    return ImageTransformService(
        fetcher=fetcher,
        codecs=codecs,
        placeholder=placeholder or FakePlaceholder(),
    )


def _size_of(data: bytes) -> tuple[int, int]:
    return Image.open(io.BytesIO(data)).size


# ============================================================================
# Transform: parameters
# ============================================================================

class TestTransformParameters:
    @pytest.mark.asyncio
    async def test_missing_url(self, codecs):
        fetcher = FakeFetcher()
        result = await _service(fetcher, codecs).transform({})
        assert isinstance(result, ErrorResult)
        assert result.status_code == 400
        assert result.to_dict() == {"error": "Missing url parameter."}
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_invalid_width(self, codecs):
        result = await _service(FakeFetcher(), codecs).transform({"url": URL, "width": "abc"})
        assert result.status_code == 400
        assert result.message == "Invalid width parameter."

    @pytest.mark.asyncio
    async def test_unsupported_format(self, codecs):
        result = await _service(FakeFetcher(), codecs).transform({"url": URL, "format": "tiff"})
        assert result.status_code == 400
        assert result.message == "Unsupported output format requested."


# ============================================================================
# Transform: fetch
# ============================================================================

class TestTransformFetch:
    @pytest.mark.asyncio
    async def test_upstream_404_propagates(self, codecs, not_found_error):
        result = await _service(FakeFetcher(error=not_found_error), codecs).transform({"url": URL})
        assert isinstance(result, ErrorResult)
        assert result.status_code == 404
        assert result.stage == "fetch"

    @pytest.mark.asyncio
    async def test_fetch_error_without_status_defaults_to_502(self, codecs):
        result = await _service(FakeFetcher(error=FetchError()), codecs).transform({"url": URL})
        assert result.status_code == 502

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_generic_502(self, codecs):
        fetcher = FakeFetcher(error=RuntimeError("socket exploded at 0xdeadbeef"))
        result = await _service(fetcher, codecs).transform({"url": URL})
        assert result.status_code == 502
        assert result.message == "Unexpected error fetching image."


# ============================================================================
# Transform: short circuits
# ============================================================================

class TestTransformShortCircuits:
    @pytest.mark.asyncio
    async def test_unrecognised_bytes_pass_through_even_with_params(self):
        payload = b"%PDF-1.7 definitely not an image"
        codecs = AsyncMock()
        fetcher = FakeFetcher(payload, "application/pdf")

        result = await _service(fetcher, codecs).transform(
            {"url": URL, "width": "10", "format": "webp"}
        )

        assert isinstance(result, ImageResult)
        assert result.body == payload
        assert result.content_type == "application/pdf"
        assert result.cache_control == DEFAULT_CACHE_CONTROL
        assert result.outcome == "passthrough"
        codecs.ensure_initialised.assert_not_called()
        codecs.decode.assert_not_called()

    @pytest.mark.asyncio
    async def test_passthrough_without_content_type_is_octet_stream(self):
        result = await _service(FakeFetcher(b"just some bytes here"), AsyncMock()).transform({"url": URL})
        assert result.content_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_empty_upstream_body_passes_through(self):
        codecs = AsyncMock()
        result = await _service(FakeFetcher(b"", "text/plain"), codecs).transform({"url": URL, "width": "10"})

        assert isinstance(result, ImageResult)
        assert result.status_code == 200
        assert result.body == b""
        assert result.content_type == "text/plain"
        assert result.outcome == "passthrough"
        codecs.decode.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_body_declared_as_image_uses_declared_type(self):
        result = await _service(FakeFetcher(b"", "image/png"), AsyncMock()).transform({"url": URL})
        assert result.outcome == "fast_path"
        assert result.content_type == "image/png"

    @pytest.mark.asyncio
    async def test_fast_path_without_params(self, png_bytes):
        codecs = AsyncMock()
        result = await _service(FakeFetcher(png_bytes, "image/png"), codecs).transform({"url": URL})

        assert result.body == png_bytes
        assert result.content_type == "image/png"
        assert result.outcome == "fast_path"
        codecs.ensure_initialised.assert_not_called()

    @pytest.mark.asyncio
    async def test_fast_path_same_format_is_byte_identical(self, jpeg_bytes):
        codecs = AsyncMock()
        service = _service(FakeFetcher(jpeg_bytes, "image/jpeg"), codecs)

        plain = await service.transform({"url": URL})
        explicit = await service.transform({"url": URL, "format": "jpg"})

        assert explicit.body == plain.body == jpeg_bytes
        codecs.decode.assert_not_called()

    @pytest.mark.asyncio
    async def test_fast_path_content_type_falls_back_to_sniffed(self, png_bytes):
        result = await _service(FakeFetcher(png_bytes, None), AsyncMock()).transform({"url": URL})
        assert result.content_type == "image/png"

    @pytest.mark.asyncio
    async def test_fast_path_keeps_declared_content_type(self, png_bytes):
        # Mislabelled upstream: signature wins for sniffing, declared type is echoed
        result = await _service(FakeFetcher(png_bytes, "image/jpeg"), AsyncMock()).transform({"url": URL})
        assert result.content_type == "image/jpeg"
        assert result.body == png_bytes


# ============================================================================
# Transform: full pipeline
# ============================================================================

class TestTransformPipeline:
    @pytest.mark.asyncio
    async def test_resize_by_width(self, codecs, png_bytes):
        result = await _service(FakeFetcher(png_bytes, "image/png"), codecs).transform(
            {"url": URL, "width": "200"}
        )
        assert isinstance(result, ImageResult)
        assert result.status_code == 200
        assert result.content_type == "image/png"
        assert _size_of(result.body) == (200, 100)

    @pytest.mark.asyncio
    async def test_resize_by_height(self, codecs, png_bytes):
        result = await _service(FakeFetcher(png_bytes), codecs).transform({"url": URL, "height": "25"})
        assert _size_of(result.body) == (50, 25)

    @pytest.mark.asyncio
    async def test_both_dimensions_ignore_aspect(self, codecs, png_bytes):
        result = await _service(FakeFetcher(png_bytes), codecs).transform(
            {"url": URL, "width": "30", "height": "30"}
        )
        assert _size_of(result.body) == (30, 30)

    @pytest.mark.asyncio
    async def test_reformat_without_resize(self, codecs, png_bytes):
        result = await _service(FakeFetcher(png_bytes, "image/png"), codecs).transform(
            {"url": URL, "format": "JPEG"}
        )
        assert result.content_type == "image/jpeg"
        assert detect_format(result.body) == ImageFormat.JPEG
        assert _size_of(result.body) == (100, 50)

    @pytest.mark.asyncio
    async def test_resize_and_reformat(self, codecs, jpeg_bytes):
        result = await _service(FakeFetcher(jpeg_bytes), codecs).transform(
            {"url": URL, "width": "50", "format": "png"}
        )
        assert result.content_type == "image/png"
        assert detect_format(result.body) == ImageFormat.PNG
        assert _size_of(result.body) == (50, 25)

    @pytest.mark.asyncio
    async def test_codec_init_failure_is_500(self, png_bytes):
        codecs = AsyncMock()
        codecs.ensure_initialised.side_effect = CodecInitError()
        result = await _service(FakeFetcher(png_bytes), codecs).transform({"url": URL, "width": "10"})
        assert result.status_code == 500
        assert result.message == "Failed to prepare image codecs."
        codecs.decode.assert_not_called()

    @pytest.mark.asyncio
    async def test_codec_init_crash_is_500(self, png_bytes):
        codecs = AsyncMock()
        codecs.ensure_initialised.side_effect = RuntimeError("plugin registry corrupted")
        result = await _service(FakeFetcher(png_bytes), codecs).transform({"url": URL, "width": "10"})
        assert result.status_code == 500
        assert result.stage == "ensure_codecs"

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_422(self, codecs):
        corrupt = b"\xff\xd8\xff\xe0" + b"\x13\x37" * 200
        result = await _service(FakeFetcher(corrupt), codecs).transform({"url": URL, "width": "10"})
        assert result.status_code == 422
        assert result.message == "Failed to decode source image."

    @pytest.mark.asyncio
    async def test_pathological_resize_is_422(self, codecs, png_bytes):
        result = await _service(FakeFetcher(png_bytes), codecs).transform({"url": URL, "width": "100000"})
        assert result.status_code == 422
        assert result.message == "Unable to resize image with the given parameters."

    @pytest.mark.asyncio
    async def test_resize_crash_is_422(self, codecs, png_bytes):
        codecs.resize = AsyncMock(side_effect=MemoryError())
        result = await _service(FakeFetcher(png_bytes), codecs).transform({"url": URL, "width": "10"})
        assert result.status_code == 422

    @pytest.mark.asyncio
    async def test_encode_crash_is_500(self, codecs, png_bytes):
        codecs.encode = AsyncMock(side_effect=RuntimeError("encoder segfault"))
        result = await _service(FakeFetcher(png_bytes), codecs).transform({"url": URL, "format": "webp"})
        assert result.status_code == 500
        assert result.message == "Failed to encode resized image."

    @pytest.mark.asyncio
    async def test_resolver_failure_is_400(self, png_bytes):
        codecs = AsyncMock()
        codecs.decode.return_value = DecodedRaster(width=0, height=0, pixels=None)
        result = await _service(FakeFetcher(png_bytes), codecs).transform({"url": URL, "width": "10"})
        assert result.status_code == 400
        assert result.stage == "resolve_size"
        codecs.resize.assert_not_called()


# ============================================================================
# Meta pipeline
# ============================================================================

class TestMeta:
    @pytest.mark.asyncio
    async def test_meta_success(self, codecs, png_bytes):
        placeholder = FakePlaceholder("abc123")
        result = await _service(FakeFetcher(png_bytes), codecs, placeholder).meta({"url": URL})

        assert isinstance(result, MetaResult)
        assert result.to_dict() == {"width": 100, "height": 50, "thumbHash": "abc123"}
        assert result.cache_control == DEFAULT_CACHE_CONTROL
        assert placeholder.calls == 1

    @pytest.mark.asyncio
    async def test_meta_missing_url(self, codecs):
        result = await _service(FakeFetcher(), codecs).meta({})
        assert result.status_code == 400
        assert result.to_dict() == {"error": "Missing url parameter."}

    @pytest.mark.asyncio
    async def test_meta_unsupported_format_is_415(self, codecs):
        result = await _service(FakeFetcher(b"GIF89a not supported here"), codecs).meta({"url": URL})
        assert result.status_code == 415
        assert result.message == "Unsupported image format."

    @pytest.mark.asyncio
    async def test_meta_fetch_error(self, codecs, not_found_error):
        result = await _service(FakeFetcher(error=not_found_error), codecs).meta({"url": URL})
        assert result.status_code == 404

    @pytest.mark.asyncio
    async def test_meta_codec_failure_precedes_sniff(self):
        codecs = AsyncMock()
        codecs.ensure_initialised.side_effect = CodecInitError()
        result = await _service(FakeFetcher(b"not an image at all"), codecs).meta({"url": URL})
        assert result.status_code == 500

    @pytest.mark.asyncio
    async def test_meta_corrupt_image_is_422(self, codecs):
        corrupt = b"\x89PNG\r\n\x1a\n" + b"\x00" * 40
        result = await _service(FakeFetcher(corrupt), codecs).meta({"url": URL})
        assert result.status_code == 422

    @pytest.mark.asyncio
    async def test_hash_failure_is_not_fatal(self, codecs, png_bytes):
        placeholder = FakePlaceholder(error=HashError("boom"))
        result = await _service(FakeFetcher(png_bytes), codecs, placeholder).meta({"url": URL})

        assert isinstance(result, MetaResult)
        assert result.status_code == 200
        assert result.to_dict() == {"width": 100, "height": 50, "thumbHash": None}

    @pytest.mark.asyncio
    async def test_unexpected_hash_crash_is_not_fatal(self, codecs, png_bytes):
        placeholder = FakePlaceholder(error=ZeroDivisionError())
        result = await _service(FakeFetcher(png_bytes), codecs, placeholder).meta({"url": URL})
        assert result.thumb_hash is None


# ============================================================================
# Metrics
# ============================================================================

class TestPipelineMetrics:
    @pytest.mark.asyncio
    async def test_outcomes_counted(self, codecs, png_bytes):
        collector = get_metrics_collector()
        collector.reset()
        service = _service(FakeFetcher(png_bytes), codecs)

        await service.transform({"url": URL})
        await service.transform({"url": URL, "width": "10"})
        await service.transform({})

        counters = collector.get_metrics()["counters"]
        assert counters["image_requests_total{endpoint=transform,outcome=fast_path}"] == 1
        assert counters["image_requests_total{endpoint=transform,outcome=ok}"] == 1
        assert counters["image_requests_total{endpoint=transform,outcome=parse_params}"] == 1

    @pytest.mark.asyncio
    async def test_placeholder_failure_counted(self, codecs, png_bytes):
        collector = get_metrics_collector()
        collector.reset()
        service = _service(FakeFetcher(png_bytes), codecs, FakePlaceholder(error=HashError()))

        await service.meta({"url": URL})

        assert collector.get_metrics()["counters"]["image_placeholder_failures_total"] == 1
