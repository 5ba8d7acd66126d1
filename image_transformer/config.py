# image_transformer/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    enable_request_logging: bool = True
    allowed_origins: list[str] = ["*"]

    # Remote fetch
    # "direct" - GET the source URL ourselves
    # "proxy"  - GET <image_proxy_url>?url=<source> and let the proxy fetch it
    fetch_strategy: Literal["direct", "proxy"] = "direct"
    image_proxy_url: str | None = None  # e.g. https://image-proxy.internal/fetch
    fetch_timeout_seconds: float = 30.0
    fetch_connect_timeout_seconds: float = 10.0
    fetch_max_bytes: int = 25 * 1024 * 1024  # 25 MiB
    fetch_user_agent: str = "image-transformer/1.0"

    # Placeholder hash for /meta
    # "thumbhash" - ThumbHash via the optional `thumbhash` package
    # "none"      - always report thumbHash: null
    placeholder_provider: Literal["thumbhash", "none"] = "thumbhash"

    # Codec limits
    # Decode guard against decompression bombs (Pillow MAX_IMAGE_PIXELS)
    max_input_pixels: int = 50_000_000
    # Resize targets above this are rejected with 422
    max_output_pixels: int = 40_000_000
    jpeg_quality: int = 85
    webp_quality: int = 80
    avif_quality: int = 60

    # Response caching
    cache_max_age_seconds: int = 31536000  # one year

    # Monitoring & Metrics
    enable_metrics: bool = True
    metrics_token: str | None = None  # Bearer token for /metrics; open when unset

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def cache_control(self) -> str:
        return f"public, max-age={self.cache_max_age_seconds}"

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        if self.fetch_strategy == "proxy" and not self.image_proxy_url:
            missing.append("image_proxy_url")

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.fetch_strategy == "proxy" and not s.image_proxy_url:
        warnings.append("fetch_strategy=proxy but image_proxy_url is not set (every fetch will fail).")

    if s.enable_metrics and not s.metrics_token:
        warnings.append("enable_metrics=True but metrics_token is not set: /metrics is publicly readable.")

    if s.placeholder_provider == "none":
        warnings.append("placeholder_provider=none: /meta will always report thumbHash=null.")

    if s.max_output_pixels > s.max_input_pixels:
        warnings.append("max_output_pixels exceeds max_input_pixels (upscaling beyond decode limits is allowed).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
