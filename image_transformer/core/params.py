# image_transformer/core/params.py
"""Query parameter parsing for the transform and meta endpoints."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Mapping

from image_transformer.core.dimensions import DimensionRequest
from image_transformer.core.errors import ParameterError
from image_transformer.core.formats import ImageFormat, parse_format_name


@dataclass(frozen=True)
class TransformParams:
    url: str
    size: DimensionRequest = field(default_factory=DimensionRequest)
    target_format: ImageFormat | None = None

    @property
    def needs_resize(self) -> bool:
        return not self.size.is_empty


@dataclass(frozen=True)
class MetaParams:
    url: str


# Numeric literal grammar of the query API: decimals with optional sign and
# exponent, or unsigned hex / octal / binary integers
_DECIMAL_PATTERN = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)
_PREFIXED_PATTERN = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)", re.ASCII)


def _parse_number(text: str) -> float:
    if _PREFIXED_PATTERN.fullmatch(text):
        try:
            return float(int(text, 0))
        except OverflowError:
            return math.inf
    if _DECIMAL_PATTERN.fullmatch(text):
        return float(text)
    raise ValueError(f"not a number: {text!r}")


def parse_dimension_param(raw: str | None) -> float | None:
    """
    Parse a width/height value.

    Returns None for an absent or empty value, the number for a finite value
    above zero, and raises ValueError for anything else.
    """
    if raw is None or raw == "":
        return None
    value = _parse_number(raw.strip())
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"not a positive finite number: {raw!r}")
    return value


def _require_url(query: Mapping[str, str]) -> str:
    url = query.get("url")
    if not url:
        raise ParameterError("Missing url parameter.")
    return url


def parse_transform_params(query: Mapping[str, str]) -> TransformParams:
    url = _require_url(query)

    dims: dict[str, float | None] = {}
    for name in ("width", "height"):
        try:
            dims[name] = parse_dimension_param(query.get(name))
        except ValueError:
            raise ParameterError(f"Invalid {name} parameter.")

    raw_format = query.get("format")
    target_format = parse_format_name(raw_format)
    if raw_format and target_format is None:
        raise ParameterError("Unsupported output format requested.")

    return TransformParams(
        url=url,
        size=DimensionRequest(width=dims["width"], height=dims["height"]),
        target_format=target_format,
    )


def parse_meta_params(query: Mapping[str, str]) -> MetaParams:
    return MetaParams(url=_require_url(query))
