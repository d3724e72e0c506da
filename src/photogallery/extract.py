"""
Identity and metadata extraction for uploaded photographs.

This module computes the content hash used as image identity and reads
the display metadata (dimensions, EXIF orientation and capture time)
from a seekable JPEG stream.
"""

import base64
import hashlib
import logging
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Tuple

from PIL import ExifTags, UnidentifiedImageError
from PIL import Image as PILImage

from .errors import DecodeError
from .models.schemas import Image

logger = logging.getLogger(__name__)

SUPPORTED_FORMAT = "JPEG"
EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
NO_TRANSFORM = 1
VALID_ORIENTATIONS = range(1, 9)

_HASH_CHUNK_SIZE = 64 * 1024


def encode_digest(digest: bytes) -> str:
    """Render a digest as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def compute_image_id(stream: BinaryIO) -> str:
    """
    Compute the identity of an image from its raw bytes.

    The whole stream is hashed from the beginning, so any byte difference
    (including in embedded metadata) yields a different identity.

    Args:
        stream: Seekable binary stream

    Returns:
        43 character URL-safe SHA-256 digest

    Raises:
        DecodeError: If the stream cannot be read
    """
    sha256_hash = hashlib.sha256()
    try:
        stream.seek(0)
        for chunk in iter(lambda: stream.read(_HASH_CHUNK_SIZE), b""):
            sha256_hash.update(chunk)
    except OSError as e:
        raise DecodeError(f"Cannot compute image hash: {e}") from e
    return encode_digest(sha256_hash.digest())


def extract_image(stream: BinaryIO, now: datetime) -> Image:
    """
    Extract identity and metadata from a JPEG stream.

    Missing or malformed EXIF data is not an error: orientation falls back
    to no transform and the capture time falls back to ``now``.

    Args:
        stream: Seekable binary stream positioned anywhere
        now: Ingestion time used when no capture time is embedded

    Returns:
        Image record without tags

    Raises:
        DecodeError: If the stream is not a well-formed JPEG
    """
    assert stream is not None, "Image stream is required"
    assert now is not None, "Ingestion time is required"

    width, height, exif = _read_header(stream)
    image_id = compute_image_id(stream)

    orientation = NO_TRANSFORM
    created = now
    if exif is not None:
        orientation = _orientation(exif, image_id)
        created = _capture_time(exif, image_id) or now

    try:
        stream.seek(0)
    except OSError as e:
        raise DecodeError(f"Cannot rewind image stream: {e}") from e

    return Image(
        image_id=image_id,
        width=width,
        height=height,
        orientation=orientation,
        created=created,
    )


def _read_header(
    stream: BinaryIO,
) -> Tuple[int, int, Optional[PILImage.Exif]]:
    """Read dimensions and EXIF block without decoding pixel data."""
    try:
        stream.seek(0)
        with PILImage.open(stream) as img:
            if img.format != SUPPORTED_FORMAT:
                raise DecodeError(f"Unsupported image format: {img.format}")
            width, height = img.size
            try:
                exif = img.getexif()
            except Exception as e:
                logger.warning(f"Cannot extract EXIF metadata: {e}")
                exif = None
    except PILImage.DecompressionBombError as e:
        raise DecodeError(f"Image too large to decode: {e}") from e
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise DecodeError(f"Cannot decode JPEG: {e}") from e

    return width, height, exif


def _orientation(exif: PILImage.Exif, image_id: str) -> int:
    """Return the EXIF orientation code or the no-transform default."""
    raw = exif.get(ExifTags.Base.Orientation)
    if raw is None:
        logger.debug(f"No orientation in EXIF of {image_id}")
        return NO_TRANSFORM
    try:
        orientation = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Cannot format orientation {raw!r} of {image_id}")
        return NO_TRANSFORM
    if orientation not in VALID_ORIENTATIONS:
        logger.warning(f"Invalid orientation {orientation} of {image_id}")
        return NO_TRANSFORM
    return orientation


def _capture_time(exif: PILImage.Exif, image_id: str) -> Optional[datetime]:
    """Return DateTimeOriginal as UTC, or None if absent or unparsable."""
    try:
        exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
    except Exception as e:
        logger.warning(f"Cannot read EXIF sub-directory of {image_id}: {e}")
        return None

    raw = exif_ifd.get(ExifTags.Base.DateTimeOriginal)
    if raw is None:
        logger.debug(f"No capture time in EXIF of {image_id}")
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="replace")

    try:
        captured = datetime.strptime(str(raw).strip("\x00 "), EXIF_DATETIME_FORMAT)
    except ValueError as e:
        logger.warning(f"Cannot parse capture time of {image_id}: {e}")
        return None
    return captured.replace(tzinfo=timezone.utc)
