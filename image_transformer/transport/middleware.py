# image_transformer/transport/middleware.py
"""
Request-scoped middleware: request ids, access logging, security headers.

Unhandled exceptions are not converted here. They propagate to the app's
general exception handler, which renders the 500 body with the request id.
"""
import re
import time
import uuid
from typing import Callable, Iterable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from image_transformer.infra.logging_config import get_logger, LogContext
from image_transformer.transport.security import SecurityHeaders

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Inbound ids are echoed into logs and response headers
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")

# Polled by load balancers; logged at debug
QUIET_PATHS = frozenset({"/health", "/ready"})


def resolve_request_id(header_value: str | None) -> str:
    """Reuse a well-formed inbound request id, otherwise mint a new one."""
    if header_value and _REQUEST_ID_PATTERN.match(header_value):
        return header_value
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Expose a request id on request.state and the response headers"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access log line per request"""

    def __init__(self, app: ASGIApp, enabled: bool = True, quiet_paths: Iterable[str] = QUIET_PATHS):
        super().__init__(app)
        self.enabled = enabled
        self.quiet_paths = frozenset(quiet_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        # Query strings are not logged: source URLs may carry signatures
        path = request.url.path
        log_ctx = LogContext(logger, request_id=getattr(request.state, "request_id", None))
        fields = {"method": request.method, "path": path}
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            # Traceback and 500 body come from the app's exception handler
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            fields["error_type"] = exc.__class__.__name__
            log_ctx.error(f"{request.method} {path} failed with {exc.__class__.__name__}", extra=fields)
            raise

        fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        fields["status_code"] = response.status_code
        fields["content_type"] = response.headers.get("content-type")
        fields["content_length"] = response.headers.get("content-length")

        message = f"{request.method} {path} {response.status_code} {fields['duration_ms']}ms"
        if path in self.quiet_paths:
            log_ctx.debug(message, extra=fields)
        elif response.status_code >= 500:
            log_ctx.warning(message, extra=fields)
        else:
            log_ctx.info(message, extra=fields)

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)
