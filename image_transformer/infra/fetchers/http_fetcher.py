# image_transformer/infra/fetchers/http_fetcher.py
"""
Direct HTTP fetcher.

Downloads the source URL itself through the shared aiohttp session.
"""
from __future__ import annotations

from image_transformer.core.ports import RemoteImage
from image_transformer.infra.fetchers.base import BaseImageFetcher, validate_source_url


class HttpImageFetcher(BaseImageFetcher):
    source = "http_direct"

    async def fetch(self, url: str) -> RemoteImage:
        validate_source_url(url)
        return await self._download(url)
