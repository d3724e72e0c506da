"""
Retrieval of stored photographs and thumbnails.

Resolves an identity through the catalog, answers conditional requests
from the creation time and opens the original, the cached thumbnail or an
on-the-fly rendition.
"""

import io
import logging
import re
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import BinaryIO, Dict, Optional, Tuple

from .blobstore import BlobStore
from .catalog import Catalog
from .errors import NotFoundError, RenderError, StoreError
from .models.schemas import Image, ServeResult
from .thumbnails import ThumbnailCache, render_thumbnail

logger = logging.getLogger(__name__)

CONTENT_TYPE = "image/jpeg"

_RESIZE_RE = re.compile(r"^\s*(\d+)\s*x\s*(\d+)\s*$", re.IGNORECASE)


def parse_resize(raw: str, max_side: Optional[int] = None) -> Tuple[int, int]:
    """
    Parse a ``WIDTHxHEIGHT`` resize target.

    Raises:
        ValueError: If the value is malformed, a dimension is zero or a
            dimension exceeds ``max_side``
    """
    match = _RESIZE_RE.match(raw or "")
    if match is None:
        raise ValueError(f"Invalid resize value: {raw!r}")
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid resize value: {raw!r}")
    if max_side is not None and max(width, height) > max_side:
        raise ValueError(f"Resize value {raw!r} exceeds {max_side} pixels per side")
    return width, height


def parse_http_date(raw: Optional[str]) -> Optional[datetime]:
    """Parse an HTTP date header, returning None when absent or invalid."""
    if not raw:
        return None
    try:
        value = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring invalid HTTP date: {raw!r}")
        return None
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def http_date(value: datetime) -> str:
    """Format a timestamp as an HTTP date."""
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def is_not_modified(created: datetime, if_modified_since: Optional[datetime]) -> bool:
    """True if the client copy is at most one second older than ``created``."""
    if if_modified_since is None:
        return False
    return created <= if_modified_since + timedelta(seconds=1)


def image_headers(image: Image) -> Dict[str, str]:
    """Response headers describing a served image."""
    return {
        "X-Image-ID": image.image_id,
        "X-Image-Width": str(image.width),
        "X-Image-Height": str(image.height),
        "X-Image-Created": image.created.isoformat(timespec="seconds"),
        "Last-Modified": http_date(image.created),
    }


class ImageServer:
    """Serves originals and renditions of catalogued images."""

    def __init__(
        self,
        catalog: Catalog,
        blob_store: BlobStore,
        thumbnails: ThumbnailCache,
        quality: int = 95,
    ):
        """
        Initialize image server.

        Args:
            catalog: Catalog resolving identities
            blob_store: Store of original bytes
            thumbnails: Cache of fixed size renditions
            quality: JPEG quality of uncached renditions
        """
        assert catalog is not None, "Catalog is required"
        assert blob_store is not None, "Blob store is required"
        assert thumbnails is not None, "Thumbnail cache is required"

        self.catalog = catalog
        self.blob_store = blob_store
        self.thumbnails = thumbnails
        self.quality = quality

    def serve(
        self,
        image_id: str,
        resize: Optional[Tuple[int, int]] = None,
        if_modified_since: Optional[datetime] = None,
    ) -> ServeResult:
        """
        Serve an image or one of its renditions.

        The thumbnail cache is used when ``resize`` equals its size, any
        other size is rendered without caching.

        Args:
            image_id: Image identity
            resize: Optional (width, height) of a rendition
            if_modified_since: Timestamp of the client copy

        Returns:
            Result with an open body, or a not-modified result

        Raises:
            NotFoundError: If the identity is not catalogued
            StoreError: If stored files cannot be read or written
            RenderError: If a rendition cannot be produced
        """
        image = self.catalog.image_by_id(image_id)

        if is_not_modified(image.created, if_modified_since):
            logger.debug(f"Not modified: {image_id}")
            return ServeResult(not_modified=True)

        body = self._open_body(image, resize)
        return ServeResult(
            body=body, content_type=CONTENT_TYPE, headers=image_headers(image)
        )

    def serve_thumbnail(
        self, image_id: str, if_modified_since: Optional[datetime] = None
    ) -> ServeResult:
        """Serve the cached fixed size thumbnail of an image."""
        return self.serve(image_id, self.thumbnails.size, if_modified_since)

    def _open_body(self, image: Image, resize: Optional[Tuple[int, int]]) -> BinaryIO:
        try:
            if resize is None:
                return self.blob_store.read(image.year, image.image_id)
            if tuple(resize) == self.thumbnails.size:
                return self.thumbnails.read_thumbnail(
                    image.year, image.orientation, image.image_id
                )
            with self.blob_store.read(image.year, image.image_id) as original:
                data = render_thumbnail(
                    original, image.orientation, resize, self.quality, image.image_id
                )
            return io.BytesIO(data)

        except NotFoundError as e:
            error_msg = f"Catalogued image {image.image_id} has no file: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e
        except RenderError as e:
            logger.error(f"Cannot render {image.image_id} at {resize}: {e}")
            raise
