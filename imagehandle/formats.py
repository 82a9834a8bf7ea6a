from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional, Tuple
import logging

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


class Format(Enum):
    PNG = 'png'
    JPEG = 'jpeg'
    GIF = 'gif'


@dataclass(frozen=True)
class FormatSpec:
    mime: str
    # Canonical extension first
    extensions: Tuple[str, ...]
    # Inclusive (min, max) of the quality value, None when quality does not apply
    quality_range: Optional[Tuple[int, int]]
    default_quality: Optional[int]
    # Force alpha-channel preservation before encoding
    preserve_alpha: bool
    pillow_format: str

    @property
    def extension(self) -> str:
        return self.extensions[0]

    @property
    def has_quality(self) -> bool:
        return self.quality_range is not None


FORMAT_SPECS = {
    Format.PNG: FormatSpec(
        mime='image/png',
        extensions=('.png',),
        # zlib compression level
        quality_range=(0, 9),
        default_quality=6,
        preserve_alpha=True,
        pillow_format='PNG',
    ),
    Format.JPEG: FormatSpec(
        mime='image/jpeg',
        extensions=('.jpeg', '.jpg'),
        quality_range=(0, 100),
        default_quality=75,
        preserve_alpha=False,
        pillow_format='JPEG',
    ),
    Format.GIF: FormatSpec(
        mime='image/gif',
        extensions=('.gif',),
        quality_range=None,
        default_quality=None,
        preserve_alpha=True,
        pillow_format='GIF',
    ),
}

_BY_PILLOW_FORMAT = {spec.pillow_format: fmt for fmt, spec in FORMAT_SPECS.items()}


class ProbeInfo(NamedTuple):
    width: int
    height: int
    # Pillow's format name, e.g. 'PNG' or 'BMP'
    format_name: str
    mime: Optional[str]
    # None when the detected format is not supported
    format: Optional[Format]


def format_from_pillow(name: Optional[str]) -> Optional[Format]:
    """Map a Pillow format name to a supported Format, or None."""
    if name is None:
        return None
    return _BY_PILLOW_FORMAT.get(name.upper())


def probe(path) -> Optional[ProbeInfo]:
    """
    Read the header of an image file without decoding its pixels.

    Returns None when the file cannot be opened or its format is not
    recognised at all. A recognised but unsupported format yields a
    ProbeInfo whose ``format`` is None.
    """
    try:
        with Image.open(Path(path)) as img:
            width, height = img.size
            name = img.format
            mime = img.get_format_mimetype()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        logger.debug("Could not probe %s: %s", path, exc)
        return None

    fmt = format_from_pillow(name)
    if fmt is not None:
        mime = FORMAT_SPECS[fmt].mime
    return ProbeInfo(width, height, name, mime, fmt)
