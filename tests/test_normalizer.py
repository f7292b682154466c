"""
Image normalization: orientation, re-encoding and the fail-open path.
"""

import io

import pytest
from PIL import Image

from markwise.services.normalizer import (
    Normalized,
    Passthrough,
    normalize_image,
    normalize_pages,
)


def _png(width, height, exif_orientation=None):
    img = Image.new("RGB", (width, height), color=(200, 30, 30))
    out = io.BytesIO()
    if exif_orientation is None:
        img.save(out, "PNG")
    else:
        exif = Image.Exif()
        exif[0x0112] = exif_orientation
        img.save(out, "JPEG", exif=exif)
    return out.getvalue()


def _size(buffer):
    with Image.open(io.BytesIO(buffer)) as img:
        return img.size


class TestNormalizeImage:

    def test_landscape_becomes_portrait(self):
        result = normalize_image(_png(400, 200), "image/png")

        assert isinstance(result, Normalized)
        assert result.mime_type == "image/jpeg"
        assert result.rotated_to_portrait
        assert _size(result.buffer) == (200, 400)

    def test_portrait_keeps_orientation(self):
        result = normalize_image(_png(200, 400), "image/png")

        assert isinstance(result, Normalized)
        assert not result.rotated_to_portrait
        assert _size(result.buffer) == (200, 400)

    def test_exif_orientation_applied_first(self):
        # stored landscape, but EXIF says "rotate 90": already portrait once applied
        result = normalize_image(_png(400, 200, exif_orientation=6), "image/jpeg")

        assert isinstance(result, Normalized)
        assert not result.rotated_to_portrait
        assert _size(result.buffer) == (200, 400)

    def test_corrupt_image_passes_through(self):
        buffer = b"\xff\xd8\xff\xe0 definitely not a jpeg"
        result = normalize_image(buffer, "image/jpeg")

        assert isinstance(result, Passthrough)
        assert result.buffer == buffer
        assert result.mime_type == "image/jpeg"

    def test_non_image_passes_through(self):
        buffer = b"%PDF-1.4 fake"
        result = normalize_image(buffer, "application/pdf")

        assert isinstance(result, Passthrough)
        assert result.buffer == buffer
        assert result.reason == "not an image"


@pytest.mark.asyncio
async def test_normalize_pages_keeps_order():
    pages = [
        (_png(400, 200), "image/png"),
        (b"broken", "image/png"),
        (_png(100, 300), "image/png"),
    ]
    outcomes = await normalize_pages(pages)

    assert [type(o) for o in outcomes] == [Normalized, Passthrough, Normalized]
    assert _size(outcomes[0].buffer) == (200, 400)
    assert _size(outcomes[2].buffer) == (100, 300)
