# image_transformer/infra/fetchers/proxy_fetcher.py
"""
Image proxy fetcher.

Deployments that sit behind an image proxy never contact the source host
directly. The proxy is asked for ``<proxy_url>?url=<source url>`` and its
response is treated exactly like a direct download: upstream statuses the
proxy forwards are classified the same way.
"""
from __future__ import annotations

from typing import Callable

import aiohttp

from image_transformer.core.ports import RemoteImage
from image_transformer.infra.fetchers.base import (
    DEFAULT_MAX_BYTES,
    BaseImageFetcher,
    validate_source_url,
)
from image_transformer.infra.http_client import get_fetcher_session


class ProxyImageFetcher(BaseImageFetcher):
    source = "image_proxy"

    def __init__(
        self,
        proxy_url: str,
        max_bytes: int = DEFAULT_MAX_BYTES,
        session_factory: Callable[[], aiohttp.ClientSession] = get_fetcher_session,
    ):
        super().__init__(max_bytes=max_bytes, session_factory=session_factory)
        self._proxy_url = proxy_url

    async def fetch(self, url: str) -> RemoteImage:
        validate_source_url(url)
        return await self._download(self._proxy_url, params={"url": url})
