# image_transformer/core/orchestrator.py
"""
Request pipelines for the transform and meta endpoints.

Transform: params → fetch → sniff → (passthrough | fast path) → codecs →
decode → resize → encode.
Meta: params → fetch → codecs → sniff → decode → placeholder hash.

Each stage raises a TransformError subclass; ``transform()`` and ``meta()``
catch them and return an ErrorResult, so callers always receive exactly one
result variant and never partial output. Placeholder generation is the only
stage whose failure does not end the request.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from image_transformer.core.dimensions import Dimensions, resolve_dimensions
from image_transformer.core.errors import (
    CodecInitError,
    DecodeError,
    EncodeError,
    FetchError,
    InvalidDimensionError,
    ResizeError,
    TransformError,
    UnsupportedFormatError,
)
from image_transformer.core.formats import ImageFormat, detect_format, format_to_content_type
from image_transformer.core.params import (
    TransformParams,
    parse_meta_params,
    parse_transform_params,
)
from image_transformer.core.ports import (
    CodecGateway,
    DecodedRaster,
    ImageFetcher,
    PlaceholderGenerator,
    RemoteImage,
)
from image_transformer.infra.logging_config import LogContext, get_logger, mask_url
from image_transformer.infra.metrics import TransformMetrics

logger = get_logger(__name__)

DEFAULT_CACHE_CONTROL = "public, max-age=31536000"
GENERIC_BINARY_TYPE = "application/octet-stream"


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class ImageResult:
    """Binary success: transformed or passed-through image bytes"""
    body: bytes
    content_type: str
    cache_control: str
    outcome: str = "ok"  # "ok", "passthrough" or "fast_path"
    status_code: int = 200


@dataclass(frozen=True)
class MetaResult:
    width: int
    height: int
    thumb_hash: Optional[str]
    cache_control: str
    status_code: int = 200

    def to_dict(self) -> dict[str, Any]:
        return {"width": self.width, "height": self.height, "thumbHash": self.thumb_hash}


@dataclass(frozen=True)
class ErrorResult:
    message: str
    status_code: int
    stage: str

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


TransformResult = Union[ImageResult, ErrorResult]
MetaOutcome = Union[MetaResult, ErrorResult]


# ============================================================================
# SERVICE
# ============================================================================

class ImageTransformService:
    """
    Pipeline orchestrator, parameterised over its gateways.

    The fetch transport and placeholder generator are configuration choices;
    the pipeline logic is identical whichever implementations are injected.
    """

    def __init__(
        self,
        *,
        fetcher: ImageFetcher,
        codecs: CodecGateway,
        placeholder: PlaceholderGenerator,
        cache_control: str = DEFAULT_CACHE_CONTROL,
    ) -> None:
        self.fetcher = fetcher
        self.codecs = codecs
        self.placeholder = placeholder
        self.cache_control = cache_control

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def transform(
        self,
        query: Mapping[str, str],
        request_id: str | None = None,
    ) -> TransformResult:
        log = LogContext(logger, request_id=request_id, endpoint="transform")
        try:
            result = await self._run_transform(query, log)
        except TransformError as exc:
            return self._fail("transform", exc, log)

        TransformMetrics.request_finished("transform", result.outcome)
        return result

    async def meta(
        self,
        query: Mapping[str, str],
        request_id: str | None = None,
    ) -> MetaOutcome:
        log = LogContext(logger, request_id=request_id, endpoint="meta")
        try:
            result = await self._run_meta(query, log)
        except TransformError as exc:
            return self._fail("meta", exc, log)

        TransformMetrics.request_finished("meta", "ok")
        return result

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def _run_transform(self, query: Mapping[str, str], log: LogContext) -> ImageResult:
        params = parse_transform_params(query)
        remote = await self._fetch(params.url, "transform", log)

        source_format = detect_format(remote.data, remote.content_type)
        if source_format is None:
            log.info(
                f"Unrecognised payload ({len(remote.data)} bytes, "
                f"content_type={remote.content_type}), passing through"
            )
            return ImageResult(
                body=remote.data,
                content_type=remote.content_type or GENERIC_BINARY_TYPE,
                cache_control=self.cache_control,
                outcome="passthrough",
            )

        if self._is_fast_path(params, source_format):
            return ImageResult(
                body=remote.data,
                content_type=remote.content_type or format_to_content_type(source_format),
                cache_control=self.cache_control,
                outcome="fast_path",
            )

        await self._ensure_codecs(log)
        raster = await self._decode(remote, source_format, "transform", log)

        if params.needs_resize:
            target = self._resolve_size(raster, params)
            raster = await self._run_stage(
                ResizeError, "transform", log,
                self.codecs.resize, raster, target.width, target.height,
            )

        target_format = params.target_format or source_format
        encoded = await self._run_stage(
            EncodeError, "transform", log,
            self.codecs.encode, raster, target_format,
        )

        log.info(
            f"Transformed {source_format.value} → {target_format.value} "
            f"{raster.width}x{raster.height} ({len(remote.data)} → {len(encoded)} bytes)"
        )
        return ImageResult(
            body=encoded,
            content_type=format_to_content_type(target_format),
            cache_control=self.cache_control,
        )

    async def _run_meta(self, query: Mapping[str, str], log: LogContext) -> MetaResult:
        params = parse_meta_params(query)
        remote = await self._fetch(params.url, "meta", log)

        await self._ensure_codecs(log)

        source_format = detect_format(remote.data, remote.content_type)
        if source_format is None:
            raise UnsupportedFormatError()

        raster = await self._decode(remote, source_format, "meta", log)

        thumb_hash: Optional[str] = None
        try:
            thumb_hash = await self.placeholder.generate(raster)
        except Exception as exc:
            TransformMetrics.placeholder_failed()
            log.warning(
                f"Placeholder generation failed, continuing without it: "
                f"{exc.__class__.__name__}: {exc}",
                extra={"stage": "placeholder"},
            )

        return MetaResult(
            width=raster.width,
            height=raster.height,
            thumb_hash=thumb_hash,
            cache_control=self.cache_control,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @staticmethod
    def _is_fast_path(params: TransformParams, source_format: ImageFormat) -> bool:
        if params.needs_resize:
            return False
        return params.target_format is None or params.target_format == source_format

    async def _fetch(self, url: str, endpoint: str, log: LogContext) -> RemoteImage:
        log.debug(f"Fetching {mask_url(url)}")
        return await self._run_stage(FetchError, endpoint, log, self.fetcher.fetch, url)

    async def _ensure_codecs(self, log: LogContext) -> None:
        try:
            await self.codecs.ensure_initialised()
        except CodecInitError:
            raise
        except Exception as exc:
            log.error(
                f"Codec initialisation crashed: {exc.__class__.__name__}",
                extra={"stage": CodecInitError.stage},
                exc_info=True,
            )
            raise CodecInitError() from exc

    async def _decode(
        self,
        remote: RemoteImage,
        fmt: ImageFormat,
        endpoint: str,
        log: LogContext,
    ) -> DecodedRaster:
        return await self._run_stage(DecodeError, endpoint, log, self.codecs.decode, remote.data, fmt)

    @staticmethod
    def _resolve_size(raster: DecodedRaster, params: TransformParams) -> Dimensions:
        try:
            return resolve_dimensions(Dimensions(raster.width, raster.height), params.size)
        except InvalidDimensionError:
            raise
        except Exception as exc:
            raise InvalidDimensionError() from exc

    async def _run_stage(
        self,
        error_cls: type[TransformError],
        endpoint: str,
        log: LogContext,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Run one gateway call, mapping unexpected exceptions to the stage's error."""
        with TransformMetrics.track_stage(endpoint, error_cls.stage):
            try:
                return await func(*args)
            except TransformError:
                raise
            except Exception as exc:
                log.error(
                    f"Unexpected {error_cls.stage} failure: {exc.__class__.__name__}: {exc}",
                    extra={"stage": error_cls.stage},
                    exc_info=True,
                )
                raise error_cls() from exc

    def _fail(self, endpoint: str, exc: TransformError, log: LogContext) -> ErrorResult:
        TransformMetrics.request_finished(endpoint, exc.stage)
        msg = f"{exc.stage} failed: status={exc.status_code} error={exc.message}"
        if exc.status_code >= 500:
            log.error(msg, extra={"stage": exc.stage})
        else:
            log.warning(msg, extra={"stage": exc.stage})
        return ErrorResult(message=exc.message, status_code=exc.status_code, stage=exc.stage)
