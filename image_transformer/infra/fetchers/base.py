# image_transformer/infra/fetchers/base.py
"""
Shared response handling for remote image fetchers.

Fetchers differ only in which URL they request. Status classification,
size limits and error mapping live here so every transport reports
failures the same way.
"""
from __future__ import annotations

import asyncio
from typing import Callable
from urllib.parse import urlsplit

import aiohttp

from image_transformer.core.errors import FetchError
from image_transformer.core.ports import RemoteImage
from image_transformer.infra.http_client import get_fetcher_session
from image_transformer.infra.logging_config import get_logger, mask_url

logger = get_logger(__name__)

DEFAULT_MAX_BYTES = 25 * 1024 * 1024


def validate_source_url(url: str) -> None:
    """Only absolute http(s) URLs with a host are fetchable."""
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise FetchError("Invalid url parameter.", status_code=400)


def status_for_upstream(status: int) -> int:
    """Upstream client errors propagate as-is; everything else is a bad gateway."""
    if 400 <= status < 500:
        return status
    return 502


class BaseImageFetcher:
    """GET a URL through the shared session and classify the outcome."""

    source = "http"

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        session_factory: Callable[[], aiohttp.ClientSession] = get_fetcher_session,
    ):
        self._max_bytes = max_bytes
        self._session_factory = session_factory

    async def _download(self, request_url: str, params: dict[str, str] | None = None) -> RemoteImage:
        session = self._session_factory()
        try:
            async with session.get(request_url, params=params, allow_redirects=True) as response:
                if not 200 <= response.status < 300:
                    logger.warning(
                        f"Upstream returned {response.status} for {mask_url(request_url)}"
                    )
                    raise FetchError(
                        f"Failed to fetch image (upstream status {response.status}).",
                        status_code=status_for_upstream(response.status),
                    )

                content_length = response.headers.get("Content-Length")
                if content_length and content_length.isdigit() and int(content_length) > self._max_bytes:
                    raise FetchError("Remote image is too large.", status_code=413)

                data = await response.read()
                content_type = response.headers.get("Content-Type")

        except FetchError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"Timed out fetching {mask_url(request_url)}")
            raise FetchError("Timed out fetching image.", status_code=504) from e
        except aiohttp.ClientError as e:
            logger.warning(f"Network error fetching {mask_url(request_url)}: {e.__class__.__name__}")
            raise FetchError("Unexpected error fetching image.", status_code=502) from e

        if len(data) > self._max_bytes:
            raise FetchError("Remote image is too large.", status_code=413)

        logger.debug(
            f"Fetched {len(data)} bytes from {mask_url(request_url)} (content_type={content_type})"
        )
        return RemoteImage(data=data, content_type=content_type, source=self.source)
