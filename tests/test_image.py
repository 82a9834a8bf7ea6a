"""
Tests for the Image handle.

Run with: pytest tests/test_image.py -v
"""

import base64
import json
from io import BytesIO

import pytest
from PIL import Image as PILImage

from imagehandle.errors import EncodeError, InvalidInput, InvalidOperation, OperationFailed, Unsupported
from imagehandle.filters import Filter
from imagehandle.formats import Format
from imagehandle.image import Image, ImageJSONEncoder
from imagehandle.raster import from_pil

from conftest import CANVAS_COLOR


def _decoded(data: bytes) -> PILImage.Image:
    return PILImage.open(BytesIO(data))


class TestConstruction:
    """Loading files into a handle."""

    @pytest.mark.parametrize('fixture, fmt, mime, extension', [
        ('png_path', Format.PNG, 'image/png', '.png'),
        ('jpeg_path', Format.JPEG, 'image/jpeg', '.jpeg'),
        ('gif_path', Format.GIF, 'image/gif', '.gif'),
    ])
    def test_supported_formats(self, request, fixture, fmt, mime, extension):
        path = request.getfixturevalue(fixture)
        image = Image(path)

        assert image.format is fmt
        assert image.get_mime() == mime
        assert image.get_extension() == extension
        assert image.source_path == path.resolve()

    def test_dimensions(self, png_path):
        image = Image(png_path)

        assert (image.get_width(), image.get_height()) == (700, 920)

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidInput):
            Image(tmp_path / 'missing.png')

    def test_directory(self, tmp_path):
        with pytest.raises(InvalidInput):
            Image(tmp_path)

    def test_not_an_image(self, text_path):
        with pytest.raises(Unsupported):
            Image(text_path)

    def test_unsupported_format(self, bmp_path):
        with pytest.raises(Unsupported, match="BMP"):
            Image(bmp_path)

    def test_is_acceptable(self, png_path, jpeg_path, gif_path, bmp_path, text_path, tmp_path):
        assert Image.is_acceptable(png_path)
        assert Image.is_acceptable(jpeg_path)
        assert Image.is_acceptable(gif_path)
        assert not Image.is_acceptable(bmp_path)
        assert not Image.is_acceptable(text_path)
        assert not Image.is_acceptable(tmp_path / 'missing.png')
        assert not Image.is_acceptable(tmp_path)


class TestQuality:
    def test_defaults(self, png_path, jpeg_path, gif_path):
        assert Image(png_path).get_quality() == 6
        assert Image(jpeg_path).get_quality() == 75
        assert Image(gif_path).get_quality() is None

    def test_gif_rejects_quality(self, gif_path):
        image = Image(gif_path)

        with pytest.raises(InvalidOperation):
            image.set_quality(5)
        assert image.get_quality() is None

    def test_png_range(self, png_path):
        image = Image(png_path)

        with pytest.raises(InvalidInput, match="between 0 and 9, 10 given"):
            image.set_quality(10)
        with pytest.raises(InvalidInput):
            image.set_quality(-1)
        assert image.set_quality(9).get_quality() == 9

    def test_jpeg_echo(self, jpeg_path):
        image = Image(jpeg_path)

        assert image.set_quality(50) is image
        assert image.get_quality() == 50
        with pytest.raises(InvalidInput, match="between 0 and 100"):
            image.set_quality(101)

    @pytest.mark.parametrize('quality', [5.5, True, '50'])
    def test_rejects_non_integers(self, jpeg_path, quality):
        image = Image(jpeg_path)

        with pytest.raises(InvalidInput, match="must be an integer"):
            image.set_quality(quality)
        assert image.get_quality() == 75

    def test_jpeg_quality_changes_output(self, jpeg_path):
        low = Image(jpeg_path).set_quality(10).render()
        high = Image(jpeg_path).set_quality(95).render()

        assert len(low) < len(high)


class TestExport:
    def test_render_is_decodable(self, png_path):
        data = Image(png_path).render()

        assert data.startswith(b'\x89PNG')
        assert _decoded(data).size == (700, 920)

    def test_data_uri(self, gif_path):
        image = Image(gif_path)
        uri = image.to_data_uri()

        prefix = 'data:image/gif;base64,'
        assert uri.startswith(prefix)
        assert base64.b64decode(uri[len(prefix):]) == image.render()

    def test_json_encoder(self, png_path):
        image = Image(png_path).scale(10)
        encoded = json.loads(json.dumps({'thumb': image}, cls=ImageJSONEncoder))

        assert encoded['thumb'] == image.to_data_uri()

    def test_send_to_stream(self, png_path):
        image = Image(png_path)
        stream = BytesIO()

        assert image.send(stream)
        assert stream.getvalue() == image.render()

    def test_save_to_path(self, png_path, tmp_path):
        target = tmp_path / 'copy.png'

        assert Image(png_path).crop(20, 30).save(target)
        assert (Image(target).get_width(), Image(target).get_height()) == (20, 30)

    def test_save_over_source(self, png_path):
        assert Image(png_path).scale(70).save()
        assert Image(png_path).get_width() == 70

    def test_save_failure_is_soft(self, png_path, tmp_path):
        assert Image(png_path).save(tmp_path / 'missing-dir' / 'out.png') is False

    def test_render_after_destroy(self, png_path):
        image = Image(png_path)
        image.destroy()

        with pytest.raises(EncodeError):
            image.render()


class TestTransforms:
    def test_scale_is_deterministic(self, png_path):
        first = Image(png_path).scale(80, 80).render()
        second = Image(png_path).scale(80, 80).render()

        assert first == second
        assert _decoded(first).size == (80, 80)

    def test_scale_proportional(self, png_path):
        image = Image(png_path).scale(350)

        assert (image.get_width(), image.get_height()) == (350, 460)

    def test_scale_proportional_truncates(self, png_path):
        image = Image(png_path).scale(5)

        assert (image.get_width(), image.get_height()) == (5, 6)

    def test_scale_proportional_to_zero_height(self, halves_path):
        image = Image(halves_path)

        with pytest.raises(OperationFailed) as exc_info:
            image.scale(1)
        assert exc_info.value.step == 'scale'
        assert image.get_width() == 40

    def test_scale_failure_keeps_raster(self, png_path):
        image = Image(png_path)

        with pytest.raises(OperationFailed) as exc_info:
            image.scale(0, 10)
        assert exc_info.value.step == 'scale'
        assert image.get_width() == 700

    def test_flip_both_twice_is_identity(self, png_path):
        original = Image(png_path).render()
        flipped = Image(png_path).flip('b')

        assert flipped.render() != original
        assert flipped.flip('both').render() == original

    def test_flip_horizontal(self, halves_path):
        image = Image(halves_path).flip('h')

        assert image.get_raster().image.getpixel((5, 5))[:3] == (0, 0, 255)

    @pytest.mark.parametrize('direction', ['H', 'x', '', 'Horizontal'])
    def test_flip_rejects_unknown_direction(self, png_path, direction):
        with pytest.raises(InvalidInput, match="Invalid image flip direction"):
            Image(png_path).flip(direction)

    def test_crop_matches_pillow(self, png_path):
        data = Image(png_path).crop(200, 200, 100, 100).render()

        expected = PILImage.open(png_path).convert('RGBA').crop((100, 100, 300, 300))
        actual = _decoded(data).convert('RGBA')
        assert actual.size == (200, 200)
        assert actual.tobytes() == expected.tobytes()

    def test_crop_outside_bounds(self, png_path):
        image = Image(png_path)

        with pytest.raises(OperationFailed) as exc_info:
            image.crop(10, 10, 800, 0)
        assert exc_info.value.step == 'crop'
        assert image.get_width() == 700

        with pytest.raises(OperationFailed):
            image.crop(0, 10)

    def test_crop_clips_to_edge(self, png_path):
        image = Image(png_path).crop(200, 200, 600, 800)

        assert (image.get_width(), image.get_height()) == (100, 120)

    def test_rotate_is_clockwise(self, halves_path):
        image = Image(halves_path).rotate(90)
        pixels = image.get_raster().image

        assert (image.get_width(), image.get_height()) == (20, 40)
        assert pixels.getpixel((10, 5))[:3] == (255, 0, 0)
        assert pixels.getpixel((10, 35))[:3] == (0, 0, 255)

    def test_rotate_png_corners_transparent(self, png_path):
        image = Image(png_path).rotate(45)
        rendered = _decoded(image.render()).convert('RGBA')

        assert image.get_width() > 700
        assert rendered.getpixel((0, 0))[3] == 0

    def test_rotate_jpeg_corners_white(self, jpeg_path):
        image = Image(jpeg_path).rotate(30)

        assert image.get_raster().image.getpixel((0, 0))[:3] == (255, 255, 255)

    def test_flatten(self, png_path):
        image = Image(png_path).flatten(255, 0, 0)
        rendered = _decoded(image.render())

        assert rendered.mode == 'RGB'
        assert rendered.getpixel((10, 10)) == (255, 0, 0)
        assert rendered.getpixel((300, 100)) == CANVAS_COLOR[:3]

    def test_flatten_rejects_bad_color(self, png_path):
        image = Image(png_path)

        with pytest.raises(OperationFailed) as exc_info:
            image.flatten(300, 0, 0)
        assert exc_info.value.step == 'allocate'
        assert image.get_raster().has_alpha

    def test_flatten_after_destroy(self, png_path):
        image = Image(png_path)
        image.destroy()

        with pytest.raises(OperationFailed) as exc_info:
            image.flatten()
        assert exc_info.value.step == 'canvas'

    def test_resolution(self, png_path):
        image = Image(png_path)

        assert image.get_resolution() == (72, 72)
        assert image.set_resolution(300, 150) is image
        assert image.get_resolution() == (300, 150)
        assert image.get_width() == 700
        dpi = _decoded(image.render()).info['dpi']
        assert (round(dpi[0]), round(dpi[1])) == (300, 150)

    def test_resolution_defaults(self, png_path):
        assert Image(png_path).set_resolution().get_resolution() == (96, 96)

    def test_resolution_rejected(self, png_path):
        with pytest.raises(OperationFailed) as exc_info:
            Image(png_path).set_resolution(0, 10)
        assert exc_info.value.step == 'resolution'

    def test_filter_negate(self, png_path):
        image = Image(png_path).filter(Filter.NEGATE)
        pixels = image.get_raster().image

        r, g, b, a = CANVAS_COLOR
        assert pixels.getpixel((300, 100)) == (255 - r, 255 - g, 255 - b, a)
        # transparency untouched
        assert pixels.getpixel((10, 10))[3] == 0

    def test_filter_brightness(self, png_path):
        image = Image(png_path).filter(Filter.BRIGHTNESS, 20)
        pixels = image.get_raster().image

        assert pixels.getpixel((300, 100))[:3] == (50, 164, 255)

    def test_filter_failures(self, png_path):
        image = Image(png_path)
        before = image.get_raster()

        with pytest.raises(OperationFailed, match="apply the filter"):
            image.filter(99)
        with pytest.raises(OperationFailed):
            image.filter(Filter.BRIGHTNESS)
        assert image.get_raster() is before
        assert not before.released


class TestOpacity:
    def test_full_opacity_keeps_pixels(self, png_path):
        original = Image(png_path).render()

        assert Image(png_path).opacity(100).render() == original

    def test_zero_opacity_is_transparent(self, png_path):
        rendered = _decoded(Image(png_path).opacity(0).render()).convert('RGBA')

        assert rendered.getpixel((300, 100))[3] == 0

    def test_half_opacity(self, png_path):
        rendered = _decoded(Image(png_path).opacity(50).render()).convert('RGBA')
        red, green, blue, alpha = rendered.getpixel((300, 100))

        assert alpha == 126
        assert blue == 255

    @pytest.mark.parametrize('percent', [120, -1, 101])
    def test_out_of_range(self, png_path, percent):
        with pytest.raises(InvalidInput, match="must be between 0 and 100"):
            Image(png_path).opacity(percent)

    @pytest.mark.parametrize('percent', [100, 50])
    def test_after_destroy(self, png_path, percent):
        image = Image(png_path)
        image.destroy()

        with pytest.raises(OperationFailed):
            image.opacity(percent)
        assert image.get_raster().released


class TestWatermark:
    @pytest.fixture
    def mark(self, watermark_path):
        return Image(watermark_path).scale(100)

    def test_negative_offsets_anchor_bottom_right(self, png_path, mark):
        image = Image(png_path).watermark(mark, -10, -10)
        pixels = image.get_raster().image

        assert (mark.get_width(), mark.get_height()) == (100, 50)
        assert pixels.getpixel((590, 860)) == (255, 0, 0, 255)
        assert pixels.getpixel((689, 909)) == (255, 0, 0, 255)
        assert pixels.getpixel((690, 910)) == CANVAS_COLOR
        assert pixels.getpixel((589, 859)) == CANVAS_COLOR

    def test_positive_offsets(self, png_path, mark):
        image = Image(png_path).watermark(mark, 20, 30)
        pixels = image.get_raster().image

        assert pixels.getpixel((20, 30)) == (255, 0, 0, 255)
        assert pixels.getpixel((119, 79)) == (255, 0, 0, 255)
        assert pixels.getpixel((19, 29)) == (0, 0, 0, 0)
        assert pixels.getpixel((120, 80)) == CANVAS_COLOR

    def test_source_is_borrowed(self, png_path, mark):
        source = mark.get_raster()
        Image(png_path).watermark(mark)

        assert mark.get_raster() is source
        assert not source.released
        assert mark.get_width() == 100

    def test_destroyed_watermark(self, png_path, mark):
        mark.destroy()

        with pytest.raises(OperationFailed) as exc_info:
            Image(png_path).watermark(mark)
        assert exc_info.value.step == 'copy'


class TestLifecycle:
    def test_destroy_is_idempotent(self, png_path):
        image = Image(png_path)
        raster = image.get_raster()

        assert image.destroy() is True
        assert image.destroy() is False
        assert raster.released

    def test_context_manager_releases(self, png_path):
        with Image(png_path) as image:
            raster = image.get_raster()
            assert not raster.released
        assert raster.released

    def test_transform_releases_previous_raster(self, png_path):
        image = Image(png_path)
        before = image.get_raster()

        image.scale(10)
        assert before.released
        assert not image.get_raster().released

    def test_set_raster(self, png_path):
        image = Image(png_path)
        before = image.get_raster()

        replacement = from_pil(PILImage.new('RGB', (5, 6), 'white'))
        assert image.set_raster(replacement) is image
        assert (image.get_width(), image.get_height()) == (5, 6)
        assert before.released

    def test_set_raster_rejects_other_objects(self, png_path):
        image = Image(png_path)

        with pytest.raises(InvalidInput):
            image.set_raster(PILImage.new('RGB', (5, 6)))

    def test_chaining(self, png_path):
        image = Image(png_path)
        result = image.crop(400, 400, 50, 50).scale(200).rotate(180).flip('v').flatten().opacity(100)

        assert result is image
        assert (image.get_width(), image.get_height()) == (200, 200)
