"""Unit tests for raster post-processing."""

import io

import pytest
from PIL import Image

from webshot.capture.imaging import image_size, make_thumbnail
from webshot.errors import CaptureFailure


class TestImaging:
    """Tests for dimensions and thumbnails."""

    def test_image_size(self, png_factory):
        assert image_size(png_factory(1920, 4200)) == (1920, 4200)

    def test_unreadable_image(self):
        with pytest.raises(CaptureFailure):
            image_size(b"not an image")

    @pytest.mark.parametrize("width,height", [(1920, 8000), (200, 100), (1280, 720)])
    def test_thumbnail_exact_size(self, png_factory, width, height):
        thumb = make_thumbnail(png_factory(width, height))

        with Image.open(io.BytesIO(thumb)) as img:
            assert img.size == (300, 200)
            assert img.format == "PNG"

    def test_thumbnail_custom_size(self, png_factory):
        thumb = make_thumbnail(png_factory(), width=120, height=90)

        with Image.open(io.BytesIO(thumb)) as img:
            assert img.size == (120, 90)

    def test_thumbnail_keeps_top_of_page(self, png_factory):
        # Red header above a blue body: a top-anchored crop stays red at the top
        img = Image.new("RGB", (1000, 5000), (0, 0, 255))
        img.paste((255, 0, 0), (0, 0, 1000, 800))
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")

        with Image.open(io.BytesIO(make_thumbnail(buffer.getvalue()))) as thumb:
            assert thumb.getpixel((150, 5)) == (255, 0, 0)

    def test_thumbnail_failure(self):
        with pytest.raises(CaptureFailure):
            make_thumbnail(b"\x89PNG broken")
