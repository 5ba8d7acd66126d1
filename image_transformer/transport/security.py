# image_transformer/transport/security.py
"""
Security utilities for the public image API.

- Constant-time metrics token comparison
- Response security headers suited to an image CDN origin
- Generic client-facing error messages
"""
import hmac

from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from image_transformer.config import settings
from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)

metrics_bearer_scheme = HTTPBearer(
    scheme_name="Metrics Token",
    description="Enter your metrics token (without 'Bearer ' prefix)",
    auto_error=False,
)


def require_metrics_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
):
    """
    Dependency for the metrics endpoint.

    If METRICS_TOKEN is set, a matching Bearer token is required.
    Without a token the endpoint is open (config validation warns about it).
    """
    if not settings.metrics_token:
        return

    if not credentials:
        logger.warning("Metrics endpoint accessed without token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials, settings.metrics_token):
        logger.warning("Invalid metrics token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


class SecurityHeaders:
    """Add security headers to responses."""

    @staticmethod
    def add_security_headers(response):
        # Prevent MIME sniffing: browsers must honour our Content-Type
        response.headers["X-Content-Type-Options"] = "nosniff"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Images are inert; nothing in a response may load or execute
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # Error/JSON responses are not cacheable unless the endpoint said so
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"

        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        # Transformed images are embedded from other origins
        response.headers["Cross-Origin-Resource-Policy"] = "cross-origin"

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Sanitize error messages for external responses.
    In production: Generic messages
    In dev: Detailed messages
    """
    if not is_production:
        return str(error)

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }

    return generic_messages.get(type(error).__name__, "Internal server error")
