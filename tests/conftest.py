"""Pytest configuration and fixtures"""
import io
import pytest
import sys
from pathlib import Path

from PIL import Image

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from image_transformer.core.errors import FetchError  # noqa: E402
from image_transformer.core.ports import RemoteImage  # noqa: E402
from image_transformer.infra.codecs import CodecConfig, PillowCodecGateway  # noqa: E402


def encode_test_image(
    fmt: str = "PNG",
    size: tuple[int, int] = (100, 50),
    mode: str = "RGB",
    color=(200, 30, 30),
) -> bytes:
    """Render a solid-colour image in memory."""
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    img = Image.new(mode, size, color)
    output = io.BytesIO()
    img.save(output, format=fmt)
    return output.getvalue()


def pillow_supports(pil_format: str) -> bool:
    Image.init()
    return pil_format in Image.OPEN and pil_format in Image.SAVE


class FakeFetcher:
    """In-memory fetch gateway recording requested URLs"""

    def __init__(self, data: bytes = b"", content_type: str | None = None, error: Exception | None = None):
        self.data = data
        self.content_type = content_type
        self.error = error
        self.calls: list[str] = []

    async def fetch(self, url: str) -> RemoteImage:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return RemoteImage(data=self.data, content_type=self.content_type, source="fake")


class FakePlaceholder:
    def __init__(self, value: str | None = "3OcRJYB4d3h/iIeHeEh3eIhw+j2w", error: Exception | None = None):
        self.value = value
        self.error = error
        self.calls = 0

    async def generate(self, raster):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


@pytest.fixture
def png_bytes():
    """100x50 opaque PNG"""
    return encode_test_image("PNG", (100, 50))


@pytest.fixture
def jpeg_bytes():
    """100x50 JPEG"""
    return encode_test_image("JPEG", (100, 50))


@pytest.fixture
def codecs():
    """Fresh Pillow codec gateway (own initialisation state)"""
    return PillowCodecGateway(CodecConfig(max_output_pixels=4_000_000))


@pytest.fixture
def not_found_error():
    return FetchError("Failed to fetch image (upstream status 404).", status_code=404)
