"""
Resolve relative or ambiguous geometry arguments into concrete backend values.

Everything here is a pure function of its arguments so the conventions can be
checked without decoding an image.
"""
import math
from typing import Tuple

# Backend alpha unit: 0 is opaque, ALPHA_MAX fully transparent
ALPHA_MAX = 127


def anchor_offset(canvas_size: int, offset: int, insert_size: int) -> int:
    """
    Resolve one axis of a placement offset.

    A non-negative offset is measured from the top/left edge. A negative one
    is measured from the far edge: -10 puts the inserted item's right (or
    bottom) edge 10px inside the canvas's right (or bottom) edge.
    """
    if offset < 0:
        return canvas_size - (-offset + insert_size)
    return offset


def watermark_position(canvas: Tuple[int, int], insert: Tuple[int, int],
                       left: int = 0, top: int = 0) -> Tuple[int, int]:
    """Top-left corner at which an ``insert``-sized image lands on ``canvas``."""
    return (
        anchor_offset(canvas[0], left, insert[0]),
        anchor_offset(canvas[1], top, insert[1]),
    )


def proportional_height(source: Tuple[int, int], width: int) -> int:
    """
    Height matching ``width`` with the aspect ratio of ``source``, truncated.
    Can be 0 for very wide sources; the scale then fails.
    """
    src_w, src_h = source
    return width * src_h // src_w


def scaled_size(source: Tuple[int, int], width: int, height: int = -1) -> Tuple[int, int]:
    """
    Target size of a scale operation.
    A negative height (conventionally -1) derives it from the width.
    """
    if height < 0:
        height = proportional_height(source, width)
    return width, height


def crop_box(width: int, height: int, left: int = 0, top: int = 0) -> Tuple[int, int, int, int]:
    """Pillow-style (left, upper, right, lower) box of a crop request."""
    return left, top, left + width, top + height


def opacity_alpha(percent: int) -> int:
    """Backend alpha level for an opacity percentage; 100% maps to 0 (opaque)."""
    return _round_half_up(abs(percent * ALPHA_MAX / 100 - ALPHA_MAX))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
