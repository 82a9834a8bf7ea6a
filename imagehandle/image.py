from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Optional, Tuple
import base64
import json
import logging
import os
import sys

from . import filters, raster
from .errors import EncodeError, InvalidInput, InvalidOperation, OperationFailed, Unsupported
from .formats import FORMAT_SPECS, Format, probe
from .geometry import ALPHA_MAX, crop_box, opacity_alpha, scaled_size, watermark_position
from .raster import FlipDirection, LayerEffect, Raster, RasterError

logger = logging.getLogger(__name__)

FLIP_DIRECTIONS = {
    'h': FlipDirection.HORIZONTAL,
    'horizontal': FlipDirection.HORIZONTAL,
    'v': FlipDirection.VERTICAL,
    'vertical': FlipDirection.VERTICAL,
    'b': FlipDirection.BOTH,
    'both': FlipDirection.BOTH,
}


def _readable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


class Image:
    """
    A decoded PNG, JPEG or GIF file with chainable in-place transforms.

    The handle owns its raster exclusively. Every transform builds the new
    raster first and swaps it in only once all backend steps succeeded, so a
    failed call leaves the image as it was.
    """

    def __init__(self, path):
        """
        Load the image at ``path``.

        Raises:
            InvalidInput: the path is not a readable regular file.
            Unsupported: the format could not be detected, is not PNG, JPEG
                or GIF, or the file could not be decoded.
        """
        try:
            source = Path(path).resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            raise InvalidInput(f"File does not exist or is not readable: {path}") from exc
        if not _readable_file(source):
            raise InvalidInput(f"File does not exist or is not readable: {path}")

        info = probe(source)
        if info is None:
            raise Unsupported(f"Could not get image info from the given filename: {source}")
        if info.format is None:
            raise Unsupported(f"Unsupported image type: {info.format_name}")

        try:
            self._raster = raster.decode(source, info.format)
        except RasterError as exc:
            raise Unsupported(f"Image of type {info.format.name} could not be decoded: {source}") from exc

        self._source_path = source
        self._format = info.format
        self._mime = FORMAT_SPECS[info.format].mime
        self._quality: Optional[int] = None
        logger.debug("Loaded %s (%s, %dx%d)", source, self._mime, *self._raster.size)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.destroy()

    def __del__(self):
        if getattr(self, '_raster', None) is not None:
            self.destroy()

    def __repr__(self):
        return f"<Image {self._format.name} {self._source_path}>"

    @property
    def source_path(self) -> Path:
        return self._source_path

    @property
    def format(self) -> Format:
        return self._format

    def _replace(self, new: Raster) -> 'Image':
        old, self._raster = self._raster, new
        if old is not new:
            old.release()
        return self

    # Quality

    def get_quality(self) -> Optional[int]:
        """Quality/compression level: 0-9 for PNG, 0-100 for JPEG, None for GIF."""
        if self._quality is None:
            self._quality = FORMAT_SPECS[self._format].default_quality
        return self._quality

    def set_quality(self, quality: int) -> 'Image':
        spec = FORMAT_SPECS[self._format]
        if not spec.has_quality:
            raise InvalidOperation(f"{self._format.name} images does not receive a quality value")
        if isinstance(quality, bool) or not isinstance(quality, int):
            raise InvalidInput(f"Quality must be an integer, {quality!r} given")
        low, high = spec.quality_range
        if not low <= quality <= high:
            raise InvalidInput(
                f"{self._format.name} images must receive a quality value between "
                f"{low} and {high}, {quality} given"
            )
        self._quality = quality
        return self

    # Export

    def _encode(self, target) -> None:
        quality = self.get_quality() if FORMAT_SPECS[self._format].has_quality else None
        raster.encode(self._raster, self._format, target, quality)

    def save(self, path=None) -> bool:
        """Save to ``path``, or over the source file. Returns False when writing fails."""
        target = Path(path) if path is not None else self._source_path
        try:
            self._encode(target)
        except RasterError as exc:
            logger.warning("Could not save %s: %s", target, exc)
            return False
        logger.debug("Saved %s", target)
        return True

    def _output(self, stream: BinaryIO) -> None:
        if FORMAT_SPECS[self._format].preserve_alpha:
            self._raster.save_alpha = True
        self._encode(stream)

    def send(self, stream: Optional[BinaryIO] = None) -> bool:
        """Write the encoded image to ``stream`` (standard output by default)."""
        if stream is None:
            stream = sys.stdout.buffer
        try:
            self._output(stream)
        except RasterError as exc:
            logger.warning("Could not send image: %s", exc)
            return False
        return True

    def render(self) -> bytes:
        """Return the encoded image contents."""
        buffer = BytesIO()
        try:
            self._output(buffer)
        except RasterError as exc:
            raise EncodeError("Image could not be rendered") from exc
        contents = buffer.getvalue()
        if not contents:
            raise EncodeError("Image could not be rendered")
        return contents

    def to_data_uri(self) -> str:
        """RFC 2397 data URI embedding the rendered image."""
        payload = base64.b64encode(self.render()).decode('ascii')
        return f"data:{self._mime};base64,{payload}"

    def __json__(self) -> str:
        return self.to_data_uri()

    # Queries

    def get_width(self) -> int:
        return self._raster.width

    def get_height(self) -> int:
        return self._raster.height

    def get_mime(self) -> str:
        return self._mime

    def get_extension(self) -> str:
        return FORMAT_SPECS[self._format].extension

    def get_raster(self) -> Raster:
        """
        Borrow the current raster. The handle still owns it: it is released by
        the next transform, by destroy() or when the handle is collected.
        """
        return self._raster

    def set_raster(self, new: Raster) -> 'Image':
        """Take ownership of ``new``; the current raster is released."""
        if not isinstance(new, Raster) or new.released:
            raise InvalidInput(f"Expected a live raster, got {new!r}")
        return self._replace(new)

    # Transforms

    def flip(self, direction: str = 'horizontal') -> 'Image':
        """Flip along ``direction``: h or horizontal, v or vertical, b or both."""
        try:
            mode = FLIP_DIRECTIONS[direction]
        except (KeyError, TypeError):
            raise InvalidInput(f"Invalid image flip direction: {direction}") from None
        try:
            flipped = raster.flip(self._raster, mode)
        except RasterError as exc:
            raise OperationFailed("Image could not be flipped", "flip") from exc
        return self._replace(flipped)

    def crop(self, width: int, height: int, margin_left: int = 0, margin_top: int = 0) -> 'Image':
        try:
            cropped = raster.crop(self._raster, crop_box(width, height, margin_left, margin_top))
        except RasterError as exc:
            raise OperationFailed("Image could not be cropped", "crop") from exc
        return self._replace(cropped)

    def scale(self, width: int, height: int = -1) -> 'Image':
        """Resize to ``width`` x ``height``; height -1 keeps the aspect ratio."""
        try:
            size = scaled_size(self._raster.size, width, height)
            scaled = raster.scale(self._raster, size)
        except (RasterError, ZeroDivisionError) as exc:
            raise OperationFailed("Image could not be scaled", "scale") from exc
        return self._replace(scaled)

    def rotate(self, angle: float) -> 'Image':
        """
        Rotate clockwise by ``angle`` degrees. Uncovered corners are transparent
        for PNG and GIF, white for JPEG.
        """
        current = self._raster
        try:
            if FORMAT_SPECS[self._format].preserve_alpha:
                background = raster.allocate_color(current, 0, 0, 0, ALPHA_MAX)
            else:
                background = raster.allocate_color(current, 255, 255, 255)
        except RasterError as exc:
            raise OperationFailed("Image could not allocate a color", "allocate") from exc
        try:
            rotated = raster.rotate(current, -1 * angle, background)
        except RasterError as exc:
            raise OperationFailed("Image could not be rotated", "rotate") from exc
        if FORMAT_SPECS[self._format].preserve_alpha:
            rotated.alpha_blending = False
            rotated.save_alpha = True
        return self._replace(rotated)

    def flatten(self, red: int = 255, green: int = 255, blue: int = 255) -> 'Image':
        """Replace transparency with a solid RGB background."""
        current = self._raster
        try:
            width, height = current.size
            canvas = raster.create_truecolor(width, height, current.resolution)
        except RasterError as exc:
            raise OperationFailed("Could not create a true color image", "canvas") from exc
        try:
            color = raster.allocate_color(canvas, red, green, blue)
            filled = raster.filled_rectangle(canvas, (0, 0, width, height), color)
        except RasterError as exc:
            canvas.release()
            raise OperationFailed("Image could not allocate a color", "allocate") from exc
        canvas.release()
        try:
            flattened = raster.copy(filled, current, (0, 0))
        except RasterError as exc:
            filled.release()
            raise OperationFailed("Image could not be flattened", "copy") from exc
        filled.release()
        flattened.save_alpha = False
        return self._replace(flattened)

    def set_resolution(self, horizontal: int = 96, vertical: int = 96) -> 'Image':
        """Set the DPI metadata; pixel dimensions are unaffected."""
        try:
            raster.set_resolution(self._raster, horizontal, vertical)
        except RasterError as exc:
            raise OperationFailed("Image could not set resolution", "resolution") from exc
        return self

    def get_resolution(self) -> Tuple[int, int]:
        """Return the (horizontal, vertical) DPI pair."""
        try:
            return raster.get_resolution(self._raster)
        except RasterError as exc:
            raise OperationFailed("Image could not get resolution", "resolution") from exc

    def filter(self, kind, *arguments) -> 'Image':
        """Apply a backend filter; see imagehandle.filters.Filter for the kinds."""
        try:
            filtered = filters.apply_filter(self._raster, kind, *arguments)
        except RasterError as exc:
            raise OperationFailed("Image could not apply the filter", "filter") from exc
        return self._replace(filtered)

    def watermark(self, watermark: 'Image', left: int = 0, top: int = 0) -> 'Image':
        """
        Draw ``watermark`` onto this image. Negative offsets count from the
        right/bottom edge: (-10, -10) puts the watermark's bottom-right corner
        10px inside this image's bottom-right corner.
        """
        source = watermark.get_raster()
        try:
            position = watermark_position(self._raster.size, source.size, left, top)
            marked = raster.copy(self._raster, source, position)
        except RasterError as exc:
            raise OperationFailed("Image could not create watermark", "copy") from exc
        return self._replace(marked)

    def opacity(self, opacity: int = 100) -> 'Image':
        """
        Set the opacity percentage, 0 to 100. 100 only turns alpha blending
        on; anything lower washes the whole image with translucent gray.
        """
        if opacity < 0 or opacity > 100:
            raise InvalidInput(f"Opacity percentage must be between 0 and 100, {opacity} given")
        if opacity == 100:
            if self._raster.released:
                raise OperationFailed("Image could not apply opacity", "blending")
            self._raster.alpha_blending = True
            return self

        current = self._raster
        try:
            color = raster.allocate_color(current, 127, 127, 127, opacity_alpha(opacity))
        except RasterError as exc:
            raise OperationFailed("Image could not allocate a color", "allocate") from exc
        effect = current.effect
        current.effect = LayerEffect.OVERLAY
        try:
            washed = raster.filled_rectangle(current, (0, 0, current.width, current.height), color)
        except RasterError as exc:
            raise OperationFailed("Image could not apply opacity", "fill") from exc
        finally:
            current.effect = effect
        washed.save_alpha = True
        washed.alpha_blending = False
        return self._replace(washed)

    # Lifecycle

    def destroy(self) -> bool:
        """Release the raster. Safe to call any number of times."""
        released = self._raster.release()
        if released:
            logger.debug("Released raster of %s", self._source_path)
        return released

    @staticmethod
    def is_acceptable(path) -> bool:
        """Tell whether ``path`` is a readable PNG, JPEG or GIF file, reading its header only."""
        try:
            source = Path(path).resolve(strict=True)
        except (OSError, RuntimeError, TypeError, ValueError):
            return False
        if not _readable_file(source):
            return False
        info = probe(source)
        return info is not None and info.format is not None


class ImageJSONEncoder(json.JSONEncoder):
    """JSON encoder that embeds Image handles as data URIs."""

    def default(self, o):
        if isinstance(o, Image):
            return o.__json__()
        return super().default(o)
