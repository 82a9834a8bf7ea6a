"""
Raster backend built on Pillow.

A Raster owns one decoded Pillow image plus the drawing state the handle
relies on: the layer effect used when drawing onto it, whether the alpha
channel is kept on encode, and the DPI metadata. Geometric operations return
a new Raster and leave their input untouched; the caller decides when to
release the old one.

Colour alpha uses the backend unit: 0 is opaque and ALPHA_MAX (127) is fully
transparent.
"""
from enum import Enum
from typing import BinaryIO, NamedTuple, Optional, Tuple
import logging

import numpy as np
from PIL import Image, UnidentifiedImageError

from .config import get_settings
from .formats import FORMAT_SPECS, Format
from .geometry import ALPHA_MAX

logger = logging.getLogger(__name__)

# Pillow's rotate only implements these
_ROTATE_RESAMPLE = (
    Image.Resampling.NEAREST,
    Image.Resampling.BILINEAR,
    Image.Resampling.BICUBIC,
)


class RasterError(RuntimeError):
    """A backend primitive refused the request."""


class LayerEffect(Enum):
    REPLACE = 'replace'
    ALPHABLEND = 'alphablend'
    OVERLAY = 'overlay'


class FlipDirection(Enum):
    HORIZONTAL = Image.Transpose.FLIP_LEFT_RIGHT
    VERTICAL = Image.Transpose.FLIP_TOP_BOTTOM
    BOTH = Image.Transpose.ROTATE_180


class Color(NamedTuple):
    red: int
    green: int
    blue: int
    alpha: int = 0

    @property
    def rgba(self) -> Tuple[int, int, int, int]:
        return self.red, self.green, self.blue, to_pillow_alpha(self.alpha)


def to_pillow_alpha(alpha):
    """Backend alpha (0 opaque .. 127 transparent) to Pillow alpha (255 .. 0)."""
    return 255 - ((alpha << 1) + (alpha >> 6))


def to_backend_alpha(alpha):
    """Pillow alpha (0 .. 255) to backend alpha (127 .. 0)."""
    return ALPHA_MAX - (alpha >> 1)


class Raster:
    def __init__(self, image: Image.Image, resolution: Optional[Tuple[int, int]] = None,
                 save_alpha: bool = False, effect: LayerEffect = LayerEffect.ALPHABLEND):
        self._image = image
        if resolution is None:
            dpi = get_settings().default_dpi
            resolution = (dpi, dpi)
        self.resolution = resolution
        self.save_alpha = save_alpha
        self.effect = effect

    @property
    def image(self) -> Image.Image:
        if self._image is None:
            raise RasterError("Raster has been released")
        return self._image

    @property
    def released(self) -> bool:
        return self._image is None

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    @property
    def width(self) -> int:
        return self.image.size[0]

    @property
    def height(self) -> int:
        return self.image.size[1]

    @property
    def has_alpha(self) -> bool:
        return self.image.mode == 'RGBA'

    @property
    def alpha_blending(self) -> bool:
        return self.effect is not LayerEffect.REPLACE

    @alpha_blending.setter
    def alpha_blending(self, enabled: bool):
        self.effect = LayerEffect.ALPHABLEND if enabled else LayerEffect.REPLACE

    def derive(self, image: Image.Image) -> 'Raster':
        """New raster around ``image`` carrying this raster's state."""
        return Raster(image, self.resolution, self.save_alpha, self.effect)

    def release(self) -> bool:
        """Free the pixel buffer. Returns False when already released."""
        if self._image is None:
            return False
        self._image.close()
        self._image = None
        return True

    def __repr__(self):
        if self._image is None:
            return '<Raster released>'
        return f'<Raster {self._image.mode} {self._image.size[0]}x{self._image.size[1]}>'


def _normalize_mode(image: Image.Image) -> Tuple[Image.Image, bool]:
    """Convert to a true-color mode. Returns the image and whether it has alpha."""
    has_alpha = image.mode in ('RGBA', 'LA', 'PA') or 'transparency' in image.info
    if has_alpha:
        return (image if image.mode == 'RGBA' else image.convert('RGBA')), True
    return (image if image.mode == 'RGB' else image.convert('RGB')), False


def from_pil(image: Image.Image, resolution: Optional[Tuple[int, int]] = None) -> Raster:
    """Wrap an in-memory Pillow image as a Raster."""
    converted, has_alpha = _normalize_mode(image)
    return Raster(converted, resolution, save_alpha=has_alpha)


def decode(path, fmt: Format) -> Raster:
    """Decode the first frame of the file at ``path`` using the codec for ``fmt``."""
    spec = FORMAT_SPECS[fmt]
    try:
        with Image.open(path, formats=[spec.pillow_format]) as img:
            img.load()
            dpi = img.info.get('dpi')
            converted, has_alpha = _normalize_mode(img)
            if converted is img:
                converted = img.copy()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise RasterError(f"Could not decode {fmt.name} image: {exc}") from exc

    resolution = None
    if dpi:
        resolution = (int(round(dpi[0])), int(round(dpi[1])))
    logger.debug("Decoded %s %s as %s", fmt.name, converted.size, converted.mode)
    return Raster(converted, resolution, save_alpha=has_alpha)


def encode(raster: Raster, fmt: Format, fp: BinaryIO, quality: Optional[int] = None) -> None:
    """Write ``raster`` to the path or binary stream ``fp`` with the codec for ``fmt``."""
    spec = FORMAT_SPECS[fmt]
    image = raster.image
    if fmt is Format.JPEG or not raster.save_alpha:
        if image.mode != 'RGB':
            image = image.convert('RGB')

    params = {}
    if fmt is Format.PNG:
        params['dpi'] = raster.resolution
        if quality is not None:
            params['compress_level'] = quality
    elif fmt is Format.JPEG:
        params['dpi'] = raster.resolution
        if quality is not None:
            params['quality'] = quality

    try:
        image.save(fp, format=spec.pillow_format, **params)
    except (OSError, ValueError) as exc:
        raise RasterError(f"Could not encode {fmt.name} image: {exc}") from exc


def flip(raster: Raster, direction: FlipDirection) -> Raster:
    return raster.derive(raster.image.transpose(direction.value))


def crop(raster: Raster, box: Tuple[int, int, int, int]) -> Raster:
    """
    Cut ``box`` out of the raster. The box origin must lie inside the image;
    a box reaching past the right or bottom edge is clipped to it.
    """
    left, top, right, bottom = box
    width, height = raster.size
    if right <= left or bottom <= top:
        raise RasterError(f"Empty crop rectangle: {box}")
    if not (0 <= left < width and 0 <= top < height):
        raise RasterError(f"Crop origin ({left}, {top}) outside of {width}x{height} image")
    return raster.derive(raster.image.crop((left, top, min(right, width), min(bottom, height))))


def scale(raster: Raster, size: Tuple[int, int], resample=None) -> Raster:
    if size[0] <= 0 or size[1] <= 0:
        raise RasterError(f"Invalid target size: {size}")
    if resample is None:
        resample = get_settings().resample_filter
    return raster.derive(raster.image.resize(size, resample=resample))


def allocate_color(raster: Raster, red: int, green: int, blue: int, alpha: int = 0) -> Color:
    if raster.released:
        raise RasterError("Raster has been released")
    if not all(0 <= c <= 255 for c in (red, green, blue)) or not 0 <= alpha <= ALPHA_MAX:
        raise RasterError(f"Color out of range: ({red}, {green}, {blue}, {alpha})")
    return Color(red, green, blue, alpha)


def rotate(raster: Raster, angle: float, background: Color, resample=None) -> Raster:
    """Rotate counter-clockwise by ``angle`` degrees, growing the canvas to fit."""
    if resample is None:
        resample = get_settings().resample_filter
    if resample not in _ROTATE_RESAMPLE:
        resample = Image.Resampling.BICUBIC

    image = raster.image
    fill = background.rgba
    if image.mode == 'RGB':
        if background.alpha:
            image = image.convert('RGBA')
        else:
            fill = fill[:3]
    try:
        rotated = image.rotate(angle, resample=resample, expand=True, fillcolor=fill)
    except ValueError as exc:
        raise RasterError(f"Could not rotate by {angle}: {exc}") from exc
    return raster.derive(rotated)


def create_truecolor(width: int, height: int, resolution: Optional[Tuple[int, int]] = None) -> Raster:
    """A black, opaque canvas that alpha-blends what is drawn onto it."""
    if width <= 0 or height <= 0:
        raise RasterError(f"Invalid canvas size: {width}x{height}")
    return Raster(Image.new('RGB', (width, height)), resolution)


def filled_rectangle(raster: Raster, box: Tuple[int, int, int, int], color: Color) -> Raster:
    """Paint the inclusive rectangle ``box`` with ``color`` using the raster's layer effect."""
    image = raster.image
    x1, y1, x2, y2 = box
    region = (max(x1, 0), max(y1, 0), min(x2 + 1, image.size[0]), min(y2 + 1, image.size[1]))
    if region[2] <= region[0] or region[3] <= region[1]:
        return raster.derive(image.copy())

    size = (region[2] - region[0], region[3] - region[1])
    layer = Image.new('RGBA', size, color.rgba)
    return _draw(raster, layer, region[:2])


def copy(dst: Raster, src: Raster, position: Tuple[int, int],
         box: Optional[Tuple[int, int, int, int]] = None) -> Raster:
    """
    Draw ``box`` of ``src`` (all of it by default) onto a copy of ``dst`` at
    ``position``. ``src`` is only read. Parts falling outside ``dst`` are
    clipped.
    """
    piece = src.image
    if box is not None:
        piece = piece.crop(box)
    return _draw(dst, piece, position)


def _draw(dst: Raster, piece: Image.Image, position: Tuple[int, int]) -> Raster:
    image = dst.image
    effect = dst.effect
    if effect is LayerEffect.OVERLAY:
        return dst.derive(_overlay_onto(image, piece, position))

    out = image.copy()
    if effect is LayerEffect.ALPHABLEND and piece.mode == 'RGBA':
        if out.mode == 'RGBA':
            clipped = _clip_to(piece, position, out.size)
            if clipped.size[0] and clipped.size[1]:
                out.alpha_composite(clipped, _clip_origin(position))
        else:
            # Piece alpha as the paste mask
            out.paste(piece, position, piece)
    else:
        if piece.mode == 'RGBA' and out.mode == 'RGB':
            out = out.convert('RGBA')
        out.paste(piece, position)
    return dst.derive(out)


def _clip_origin(position):
    return max(position[0], 0), max(position[1], 0)


def _clip_to(piece: Image.Image, position, size) -> Image.Image:
    """Crop away the parts of ``piece`` placed at ``position`` that fall outside ``size``."""
    x, y = position
    left, top = max(-x, 0), max(-y, 0)
    right = min(piece.size[0], size[0] - x)
    bottom = min(piece.size[1], size[1] - y)
    if right <= left or bottom <= top:
        return Image.new('RGBA', (0, 0))
    return piece.crop((left, top, right, bottom))


def _overlay_onto(image: Image.Image, piece: Image.Image, position) -> Image.Image:
    """
    Overlay-blend ``piece`` onto ``image``: channels use the overlay curve and
    opacities multiply.
    """
    out = image.convert('RGBA') if image.mode != 'RGBA' else image.copy()
    piece = _clip_to(piece.convert('RGBA'), position, out.size)
    if piece.size[0] == 0 or piece.size[1] == 0:
        return out

    x, y = _clip_origin(position)
    w, h = piece.size
    base = np.array(out, dtype=np.int32)
    dst = base[y:y + h, x:x + w]
    src = np.array(piece, dtype=np.int32)

    blended = np.empty_like(dst)
    blended[..., :3] = _overlay_channel(src[..., :3], dst[..., :3])

    dst_opacity = ALPHA_MAX - to_backend_alpha(dst[..., 3])
    src_opacity = ALPHA_MAX - to_backend_alpha(src[..., 3])
    alpha = ALPHA_MAX - dst_opacity * src_opacity // ALPHA_MAX
    blended[..., 3] = to_pillow_alpha(alpha)

    base[y:y + h, x:x + w] = np.clip(blended, 0, 255)
    return Image.fromarray(base.astype(np.uint8), 'RGBA')


def _overlay_channel(src: np.ndarray, dst: np.ndarray, top: int = 255) -> np.ndarray:
    dst = dst << 1
    light = dst + (src << 1) - (dst * src // top) - top
    dark = dst * src // top
    return np.where(dst > top, light, dark)


def get_resolution(raster: Raster) -> Tuple[int, int]:
    if raster.released:
        raise RasterError("Raster has been released")
    return raster.resolution


def set_resolution(raster: Raster, horizontal: int, vertical: int) -> None:
    if raster.released:
        raise RasterError("Raster has been released")
    if horizontal <= 0 or vertical <= 0:
        raise RasterError(f"Invalid resolution: {horizontal}x{vertical}")
    raster.resolution = (horizontal, vertical)
