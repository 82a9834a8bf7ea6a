from enum import IntEnum
import logging

import numpy as np
from PIL import Image, ImageFilter, ImageOps

from .raster import Raster, RasterError

logger = logging.getLogger(__name__)


class Filter(IntEnum):
    """Filter kinds understood by apply_filter, numbered like the GD constants."""
    NEGATE = 0
    GRAYSCALE = 1
    BRIGHTNESS = 2
    CONTRAST = 3
    COLORIZE = 4
    EDGEDETECT = 5
    EMBOSS = 6
    GAUSSIAN_BLUR = 7
    SELECTIVE_BLUR = 8
    MEAN_REMOVAL = 9
    SMOOTH = 10
    PIXELATE = 11


# Accepted argument counts per filter kind: (required, optional)
FILTER_ARGS = {
    Filter.NEGATE: (0, 0),
    Filter.GRAYSCALE: (0, 0),
    Filter.BRIGHTNESS: (1, 0),
    Filter.CONTRAST: (1, 0),
    Filter.COLORIZE: (3, 1),
    Filter.EDGEDETECT: (0, 0),
    Filter.EMBOSS: (0, 0),
    Filter.GAUSSIAN_BLUR: (0, 0),
    Filter.SELECTIVE_BLUR: (0, 0),
    Filter.MEAN_REMOVAL: (0, 0),
    Filter.SMOOTH: (1, 0),
    Filter.PIXELATE: (1, 1),
}

_GAUSSIAN = ImageFilter.Kernel((3, 3), [1, 2, 1, 2, 4, 2, 1, 2, 1], 16)
_MEAN_REMOVAL = ImageFilter.Kernel((3, 3), [-1, -1, -1, -1, 9, -1, -1, -1, -1], 1)


def apply_filter(raster: Raster, kind, *args) -> Raster:
    """
    Apply filter ``kind`` with its numeric ``args`` and return the result as a
    new raster. The alpha channel passes through unchanged except for
    COLORIZE, whose optional fourth argument shifts it.
    """
    try:
        kind = Filter(kind)
    except ValueError as exc:
        raise RasterError(f"Unknown filter: {kind}") from exc

    required, optional = FILTER_ARGS[kind]
    if not required <= len(args) <= required + optional:
        raise RasterError(f"{kind.name} expects {required} to {required + optional} arguments, {len(args)} given")
    try:
        args = [int(a) for a in args]
    except (TypeError, ValueError) as exc:
        raise RasterError(f"{kind.name} arguments must be integers: {args}") from exc

    image = raster.image
    if kind is Filter.COLORIZE:
        return raster.derive(_colorize(image, *args))

    rgb, alpha = _split_alpha(image)
    rgb = _FILTERS[kind](rgb, *args)
    logger.debug("Applied %s%s to %s", kind.name, tuple(args), raster)
    return raster.derive(_merge_alpha(rgb, alpha))


def _split_alpha(image: Image.Image):
    if image.mode == 'RGBA':
        return image.convert('RGB'), image.getchannel('A')
    return image, None


def _merge_alpha(rgb: Image.Image, alpha):
    if alpha is None:
        return rgb
    rgb = rgb.convert('RGBA')
    rgb.putalpha(alpha)
    return rgb


def _negate(image: Image.Image) -> Image.Image:
    return ImageOps.invert(image)


def _grayscale(image: Image.Image) -> Image.Image:
    return image.convert('L').convert('RGB')


def _brightness(image: Image.Image, level: int) -> Image.Image:
    """
    Add ``level`` (-255 to 255) to every channel.
    Linear offset through a lookup table, clipped to the valid range.
    """
    lut = [min(255, max(0, i + level)) for i in range(256)]
    return image.point(lut * 3)


def _contrast(image: Image.Image, level: int) -> Image.Image:
    """
    Scale every channel around mid-gray.
    -100 is maximum contrast, 0 leaves the image alone, 100 flattens to gray.
    """
    factor = ((100.0 - level) / 100.0) ** 2
    arr = np.array(image).astype(float) / 255.0
    arr = ((arr - 0.5) * factor + 0.5) * 255.0
    return Image.fromarray(np.clip(np.rint(arr), 0, 255).astype(np.uint8), 'RGB')


def _colorize(image: Image.Image, red: int, green: int, blue: int, alpha: int = 0) -> Image.Image:
    """Add a colour to every pixel; ``alpha`` adds backend alpha units (positive is more transparent)."""
    has_alpha = image.mode == 'RGBA' or alpha != 0
    arr = np.array(image.convert('RGBA' if has_alpha else 'RGB')).astype(int)
    arr[..., 0] += red
    arr[..., 1] += green
    arr[..., 2] += blue
    if alpha:
        arr[..., 3] -= alpha * 2
    arr = np.clip(arr, 0, 255).astype(np.uint8)
    return Image.fromarray(arr, 'RGBA' if has_alpha else 'RGB')


def _smooth(image: Image.Image, weight: int) -> Image.Image:
    if weight + 8 == 0:
        raise RasterError("SMOOTH weight -8 gives a zero kernel sum")
    kernel = ImageFilter.Kernel((3, 3), [1, 1, 1, 1, weight, 1, 1, 1, 1], weight + 8)
    return image.filter(kernel)


def _pixelate(image: Image.Image, block_size: int, advanced: int = 0) -> Image.Image:
    """
    Replace each ``block_size`` square with one colour: a sampled pixel,
    or the block average when ``advanced`` is non-zero.
    """
    if block_size <= 0:
        raise RasterError(f"Invalid pixelate block size: {block_size}")
    if block_size == 1:
        return image.copy()
    width, height = image.size
    small = (max(1, -(-width // block_size)), max(1, -(-height // block_size)))
    method = Image.Resampling.BOX if advanced else Image.Resampling.NEAREST
    reduced = image.resize(small, resample=method)
    enlarged = reduced.resize((small[0] * block_size, small[1] * block_size), Image.Resampling.NEAREST)
    return enlarged.crop((0, 0, width, height))


_FILTERS = {
    Filter.NEGATE: _negate,
    Filter.GRAYSCALE: _grayscale,
    Filter.BRIGHTNESS: _brightness,
    Filter.CONTRAST: _contrast,
    Filter.EDGEDETECT: lambda img: img.filter(ImageFilter.FIND_EDGES),
    Filter.EMBOSS: lambda img: img.filter(ImageFilter.EMBOSS),
    Filter.GAUSSIAN_BLUR: lambda img: img.filter(_GAUSSIAN),
    Filter.SELECTIVE_BLUR: lambda img: img.filter(ImageFilter.SMOOTH),
    Filter.MEAN_REMOVAL: lambda img: img.filter(_MEAN_REMOVAL),
    Filter.SMOOTH: _smooth,
    Filter.PIXELATE: _pixelate,
}
