# image_transformer/transport/http_app.py
"""
HTTP application for the image transformer.

Public surface:
1. Transform: GET / (alias /image-transformer) → resized/re-encoded image
2. Meta: GET /meta (alias /image-transformer/meta) → width, height, thumbHash
3. Operational: /health, /ready, /metrics
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware

from image_transformer.config import settings
from image_transformer.core.errors import CodecInitError
from image_transformer.core.orchestrator import (
    ErrorResult,
    ImageTransformService,
    MetaOutcome,
    TransformResult,
)
from image_transformer.infra.codecs import get_codec_gateway
from image_transformer.infra.fetchers import build_fetcher
from image_transformer.infra.logging_config import setup_logging, get_logger
from image_transformer.infra.metrics import get_metrics_collector
from image_transformer.infra.placeholder import build_placeholder_generator
from image_transformer.transport.middleware import (
    REQUEST_ID_HEADER,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from image_transformer.transport.security import require_metrics_auth, sanitize_error_message

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def build_transform_service() -> ImageTransformService:
    """Wire the orchestrator with the gateways selected in settings"""
    return ImageTransformService(
        fetcher=build_fetcher(settings),
        codecs=get_codec_gateway(),
        placeholder=build_placeholder_generator(settings),
        cache_control=settings.cache_control,
    )


def get_transform_service(request: Request) -> ImageTransformService:
    """Get the orchestrator from app state"""
    service = getattr(request.app.state, "transform_service", None)
    if service is None:
        service = build_transform_service()
        request.app.state.transform_service = service
    return service


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


# ============================================================================
# RESPONSES
# ============================================================================

def _error_response(result: ErrorResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.to_dict())


def _transform_response(result: TransformResult) -> Response:
    if isinstance(result, ErrorResult):
        return _error_response(result)

    # Content-Type is set verbatim: passthrough responses echo the upstream type
    return Response(
        content=result.body,
        status_code=result.status_code,
        headers={
            "Content-Type": result.content_type,
            "Content-Length": str(len(result.body)),
            "Cache-Control": result.cache_control,
        },
    )


def _meta_response(result: MetaOutcome) -> JSONResponse:
    if isinstance(result, ErrorResult):
        return _error_response(result)

    return JSONResponse(
        status_code=result.status_code,
        content=result.to_dict(),
        headers={"Cache-Control": result.cache_control},
    )


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    logger.info(
        f"Starting image transformer: env={settings.app_env}, "
        f"fetch_strategy={settings.fetch_strategy}, "
        f"placeholder={settings.placeholder_provider}"
    )

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

        if settings.log_level.upper() == "DEBUG":
            logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
            raise RuntimeError("LOG_LEVEL=DEBUG in production")

    # Codecs are initialised lazily on first use; see ImageTransformService
    if getattr(fastapi_app.state, "transform_service", None) is None:
        fastapi_app.state.transform_service = build_transform_service()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")

    from image_transformer.infra.http_client import close_all_sessions
    await close_all_sessions()

    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Image Transformer",
    description="On-demand resizing and re-encoding of remote images",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

# Images are embedded cross-origin; reads only
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle unexpected exceptions.

    Runs outside the middleware stack, so the request id is read back from
    request.state and set on the response here.
    """
    request_id = _request_id(request)
    logger.error(
        f"Unhandled exception: {exc.__class__.__name__}",
        extra={"request_id": request_id} if request_id else None,
        exc_info=True,
    )

    headers = {REQUEST_ID_HEADER: request_id} if request_id else None
    return JSONResponse(
        status_code=500,
        content={
            "error": sanitize_error_message(exc, settings.is_production),
            "request_id": request_id,
        },
        headers=headers,
    )


# ============================================================================
# OPERATIONAL ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness check. No I/O."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(service: ImageTransformService = Depends(get_transform_service)):
    """Readiness check: codecs must initialise."""
    try:
        await service.codecs.ensure_initialised()
    except CodecInitError:
        return JSONResponse(status_code=503, content={"status": "unavailable"})

    return {"status": "ready"}


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """In-process counters and stage-duration histograms."""
    if not settings.enable_metrics:
        raise HTTPException(status_code=404, detail="Not found")
    return get_metrics_collector().get_metrics()


# ============================================================================
# IMAGE ENDPOINTS
# ============================================================================

@app.get("/")
@app.get("/image-transformer")
@app.get("/image-transformer/")
async def transform_image(
    request: Request,
    service: ImageTransformService = Depends(get_transform_service),
):
    """
    Resize and/or re-encode a remote image.

    Query: url (required), width, height, format (jpeg|jpg|png|webp|avif).
    Unrecognised payloads and no-op requests return the original bytes.
    """
    result = await service.transform(request.query_params, request_id=_request_id(request))
    return _transform_response(result)


@app.get("/meta")
@app.get("/meta/")
@app.get("/image-transformer/meta")
@app.get("/image-transformer/meta/")
async def image_meta(
    request: Request,
    service: ImageTransformService = Depends(get_transform_service),
):
    """Report width, height and a ThumbHash placeholder (or null) for a remote image."""
    result = await service.meta(request.query_params, request_id=_request_id(request))
    return _meta_response(result)


@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
async def catch_all(path: str):
    """
    Catch-all route for undefined endpoints.
    Returns generic 404 without revealing information.
    """
    logger.warning(f"404 - Unknown route accessed: {path}")
    raise HTTPException(status_code=404, detail="Not found")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "image_transformer.transport.http_app:app",
        host="0.0.0.0",
        port=8080,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Disable in prod (use middleware logging)
        server_header=False,
        date_header=False,
    )
