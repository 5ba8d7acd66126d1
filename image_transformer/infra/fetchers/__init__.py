"""
Remote image fetchers.

Strategy pattern: the transform pipeline depends only on the ImageFetcher
protocol. Which transport backs it (direct HTTP or an image proxy) is chosen
from settings at startup.
"""
from image_transformer.infra.fetchers.base import BaseImageFetcher
from image_transformer.infra.fetchers.http_fetcher import HttpImageFetcher
from image_transformer.infra.fetchers.proxy_fetcher import ProxyImageFetcher

__all__ = [
    "BaseImageFetcher",
    "HttpImageFetcher",
    "ProxyImageFetcher",
    "build_fetcher",
]


def build_fetcher(settings) -> BaseImageFetcher:
    """Select the fetcher for the configured fetch strategy."""
    if settings.fetch_strategy == "proxy":
        if not settings.image_proxy_url:
            raise RuntimeError("fetch_strategy=proxy requires IMAGE_PROXY_URL")
        return ProxyImageFetcher(
            proxy_url=settings.image_proxy_url,
            max_bytes=settings.fetch_max_bytes,
        )
    return HttpImageFetcher(max_bytes=settings.fetch_max_bytes)
