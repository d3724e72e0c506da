"""
Synthetic image builders and pixel checks shared by the test suite.
"""

import io
from datetime import datetime, timezone
from typing import Optional, Tuple

from PIL import Image

EXIF_ORIENTATION = 0x0112
EXIF_IFD = 0x8769
EXIF_DATETIME_ORIGINAL = 0x9003

INGESTION_TIME = datetime(2021, 6, 15, 12, 30, 45, tzinfo=timezone.utc)

RED = (220, 20, 20)
BLUE = (20, 20, 220)


def build_jpeg(
    size: Tuple[int, int] = (64, 48),
    color: Tuple[int, int, int] = BLUE,
    orientation: Optional[int] = None,
    captured: Optional[str] = None,
    red_corner: Optional[str] = None,
) -> bytes:
    """
    Build a JPEG in memory.

    Args:
        size: Image (width, height)
        color: Background color
        orientation: EXIF orientation code to embed
        captured: EXIF DateTimeOriginal string to embed
        red_corner: Paint one quadrant red: top-left, top-right,
            bottom-left or bottom-right
    """
    image = Image.new("RGB", size, color=color)
    if red_corner is not None:
        width, height = size
        vertical, horizontal = red_corner.split("-")
        left = 0 if horizontal == "left" else width // 2
        top = 0 if vertical == "top" else height // 2
        image.paste(RED, (left, top, left + width // 2, top + height // 2))

    buf = io.BytesIO()
    if orientation is None and captured is None:
        image.save(buf, format="JPEG", quality=95)
        return buf.getvalue()

    exif = Image.Exif()
    if orientation is not None:
        exif[EXIF_ORIENTATION] = orientation
    if captured is not None:
        exif[EXIF_IFD] = {EXIF_DATETIME_ORIGINAL: captured}
    image.save(buf, format="JPEG", quality=95, exif=exif)
    return buf.getvalue()


def decode(data: bytes) -> Image.Image:
    """Decode JPEG bytes into an RGB image."""
    with Image.open(io.BytesIO(data)) as img:
        return img.convert("RGB")


def is_red(pixel) -> bool:
    r, g, b = pixel[:3]
    return r > 150 and b < 100


def is_blue(pixel) -> bool:
    r, g, b = pixel[:3]
    return b > 150 and r < 100
