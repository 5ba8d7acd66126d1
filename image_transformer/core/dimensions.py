# image_transformer/core/dimensions.py
from __future__ import annotations

import math
from dataclasses import dataclass

from image_transformer.core.errors import InvalidDimensionError


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True)
class DimensionRequest:
    """Requested target size; either side may be absent"""
    width: float | None = None
    height: float | None = None

    @property
    def is_empty(self) -> bool:
        return self.width is None and self.height is None


def _round_half_up(value: float) -> int:
    return max(1, math.floor(value + 0.5))


def _check_requested(value: float | None, name: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not math.isfinite(value) or value <= 0:
        raise InvalidDimensionError(f"Invalid {name} parameter.")


def resolve_dimensions(source: Dimensions, requested: DimensionRequest) -> Dimensions:
    """
    Compute the output size for a resize.

    One requested side scales the other to keep the source aspect ratio.
    Two requested sides are used as given; the source aspect ratio is not
    enforced. Results are rounded half-up and never drop below 1px.

    Raises:
        InvalidDimensionError: a requested side is non-finite or <= 0, or the
            source size is not positive.
    """
    _check_requested(requested.width, "width")
    _check_requested(requested.height, "height")

    if source.width <= 0 or source.height <= 0:
        raise InvalidDimensionError("Source image has no usable dimensions.")

    if requested.is_empty:
        return source

    if requested.height is None:
        width = requested.width
        return Dimensions(
            width=_round_half_up(width),
            height=_round_half_up(width * source.height / source.width),
        )

    if requested.width is None:
        height = requested.height
        return Dimensions(
            width=_round_half_up(height * source.width / source.height),
            height=_round_half_up(height),
        )

    return Dimensions(
        width=_round_half_up(requested.width),
        height=_round_half_up(requested.height),
    )
