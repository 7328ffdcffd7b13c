"""Raster post-processing: dimensions and thumbnails."""

import io
from typing import Tuple

from PIL import Image, ImageOps

from ..errors import CaptureFailure


def image_size(raw: bytes) -> Tuple[int, int]:
    """Pixel width and height of an encoded image."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            return img.size
    except Exception as e:
        raise CaptureFailure(f"Unreadable screenshot data: {e}") from e


def make_thumbnail(raw: bytes, width: int = 300, height: int = 200) -> bytes:
    """Cover-crop an encoded image to exactly ``width`` x ``height`` PNG."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            thumb = ImageOps.fit(
                img.convert("RGB"),
                (width, height),
                method=Image.Resampling.LANCZOS,
                centering=(0.5, 0.0),
            )
    except Exception as e:
        raise CaptureFailure(f"Thumbnail generation failed: {e}") from e

    buffer = io.BytesIO()
    thumb.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()
