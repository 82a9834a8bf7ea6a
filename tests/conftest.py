"""
Pytest fixtures: small image files generated with Pillow.
"""

import pytest
from PIL import Image, ImageDraw

CANVAS_SIZE = (700, 920)
CANVAS_COLOR = (30, 144, 255, 255)
CLEAR_BOX = (0, 0, 49, 49)


def _canvas():
    img = Image.new('RGBA', CANVAS_SIZE, CANVAS_COLOR)
    d = ImageDraw.Draw(img)
    d.rectangle([100, 400, 600, 700], fill=(144, 238, 144, 255))
    d.ellipse([500, 50, 650, 200], fill=(255, 255, 0, 255))
    # Fully transparent top-left corner
    d.rectangle(CLEAR_BOX, fill=(0, 0, 0, 0))
    return img


@pytest.fixture
def png_path(tmp_path):
    path = tmp_path / 'tree.png'
    _canvas().save(path, dpi=(72, 72))
    return path


@pytest.fixture
def jpeg_path(tmp_path):
    path = tmp_path / 'tree.jpg'
    _canvas().convert('RGB').save(path, quality=90)
    return path


@pytest.fixture
def gif_path(tmp_path):
    path = tmp_path / 'tree.gif'
    img = Image.new('RGB', (120, 80), 'skyblue')
    ImageDraw.Draw(img).rectangle([10, 10, 60, 40], fill='yellow')
    img.save(path)
    return path


@pytest.fixture
def watermark_path(tmp_path):
    """Solid red 200x100 PNG; scaled to width 100 it becomes 100x50."""
    path = tmp_path / 'mark.png'
    Image.new('RGBA', (200, 100), (255, 0, 0, 255)).save(path)
    return path


@pytest.fixture
def halves_path(tmp_path):
    """40x20 PNG, left half red, right half blue."""
    path = tmp_path / 'halves.png'
    img = Image.new('RGB', (40, 20), (0, 0, 255))
    ImageDraw.Draw(img).rectangle([0, 0, 19, 19], fill=(255, 0, 0))
    img.save(path)
    return path


@pytest.fixture
def bmp_path(tmp_path):
    path = tmp_path / 'tree.bmp'
    Image.new('RGB', (10, 10), 'white').save(path)
    return path


@pytest.fixture
def text_path(tmp_path):
    path = tmp_path / 'notes.txt'
    path.write_text("This is not an image.\n", encoding='utf-8')
    return path
