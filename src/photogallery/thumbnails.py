"""
Thumbnail rendering and on-disk thumbnail cache.

Thumbnails mirror the photo layout under their own root
(``<root>/<YYYY>/<image_id>.jpg``). They are rendered on first access and
never invalidated, since the content of an identity never changes.
"""

import io
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

from PIL import ImageOps, UnidentifiedImageError
from PIL import Image as PILImage

from .blobstore import BlobStore, atomic_write, year_dir
from .errors import RenderError, StoreError

logger = logging.getLogger(__name__)

# EXIF orientation code -> transform that restores the upright picture
ORIENTATION_TRANSPOSE: Dict[int, Optional[PILImage.Transpose]] = {
    1: None,
    3: PILImage.Transpose.ROTATE_180,
    6: PILImage.Transpose.ROTATE_270,
    8: PILImage.Transpose.ROTATE_90,
}

DEFAULT_SIZE = (100, 100)
DEFAULT_QUALITY = 95


def orient(img: PILImage.Image, orientation: int, image_id: str = "") -> PILImage.Image:
    """Apply the transform selected by an orientation code."""
    if orientation not in ORIENTATION_TRANSPOSE:
        logger.warning(f"Unknown image orientation {orientation}: {image_id}")
        return img
    method = ORIENTATION_TRANSPOSE[orientation]
    if method is None:
        return img
    return img.transpose(method)


def render_thumbnail(
    content: BinaryIO,
    orientation: int,
    size: Tuple[int, int] = DEFAULT_SIZE,
    quality: int = DEFAULT_QUALITY,
    image_id: str = "",
) -> bytes:
    """
    Render an orientation corrected, size normalized JPEG.

    The picture is rotated upright, scaled to cover ``size`` and center
    cropped, so the aspect ratio is preserved.

    Args:
        content: Readable stream of the original JPEG
        orientation: EXIF orientation code of the original
        size: Output (width, height)
        quality: JPEG quality
        image_id: Identity used in log messages

    Returns:
        Encoded JPEG bytes

    Raises:
        RenderError: If decoding, transforming or encoding fails
    """
    try:
        with PILImage.open(content) as src:
            img = src.convert("RGB")
    except PILImage.DecompressionBombError as e:
        raise RenderError(f"Image {image_id} too large to render: {e}") from e
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise RenderError(f"Cannot decode image {image_id}: {e}") from e

    img = orient(img, orientation, image_id)
    img = ImageOps.fit(
        img, size, method=PILImage.Resampling.BILINEAR, centering=(0.5, 0.5)
    )

    buf = io.BytesIO()
    try:
        img.save(buf, format="JPEG", quality=quality)
    except (OSError, ValueError) as e:
        raise RenderError(f"Cannot encode thumbnail of {image_id}: {e}") from e
    return buf.getvalue()


class KeyedLock:
    """Mutual exclusion per key; locks are dropped once nobody holds them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ThumbnailCache:
    """
    Lazily rendered, persistent thumbnail cache.

    Without ``serialize_renders`` concurrent misses for one image may each
    render it; the renditions are identical and the last rename wins. With
    it, renders of one image are serialized and later callers reuse the
    stored file.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        root: Union[str, Path],
        size: Tuple[int, int] = DEFAULT_SIZE,
        quality: int = DEFAULT_QUALITY,
        serialize_renders: bool = False,
    ):
        """
        Initialize thumbnail cache.

        Args:
            blob_store: Source of original images
            root: Thumbnails root directory, created if missing
            size: Thumbnail (width, height)
            quality: JPEG quality of rendered thumbnails
            serialize_renders: Render each image at most once at a time

        Raises:
            StoreError: If the root directory cannot be created
        """
        assert blob_store is not None, "Blob store is required"
        assert size[0] > 0 and size[1] > 0, f"Invalid thumbnail size: {size}"

        self.blob_store = blob_store
        self.root = Path(root)
        self.size = tuple(size)
        self.quality = quality
        self._render_locks = KeyedLock() if serialize_renders else None

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            logger.info(f"Thumbnail storage path: {self.root}")
        except OSError as e:
            error_msg = f"Failed to setup thumbnail storage {self.root}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

    def thumbnail_path(self, year: int, image_id: str) -> Path:
        """Path of the cached thumbnail."""
        return year_dir(self.root, year) / f"{image_id}.jpg"

    def read_thumbnail(self, year: int, orientation: int, image_id: str) -> BinaryIO:
        """
        Open the thumbnail of an image, rendering it on a cache miss.

        The caller owns and must close the returned file.

        Args:
            year: Capture year of the image
            orientation: EXIF orientation code of the original
            image_id: Image identity

        Returns:
            Readable stream of the thumbnail JPEG

        Raises:
            NotFoundError: If the original image is missing
            RenderError: If the thumbnail cannot be rendered
            StoreError: If a file cannot be read or written
        """
        path = self.thumbnail_path(year, image_id)
        cached = self._open_cached(path, image_id)
        if cached is not None:
            return cached

        if self._render_locks is None:
            return self._render_and_store(path, year, orientation, image_id)

        with self._render_locks.hold(image_id):
            cached = self._open_cached(path, image_id)
            if cached is not None:
                return cached
            return self._render_and_store(path, year, orientation, image_id)

    def _open_cached(self, path: Path, image_id: str) -> Optional[BinaryIO]:
        try:
            fd = open(path, "rb")
        except FileNotFoundError:
            return None
        except OSError as e:
            error_msg = f"Cannot open thumbnail of {image_id} at {path}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e
        logger.debug(f"Thumbnail cache hit: {path}")
        return fd

    def _render_and_store(
        self, path: Path, year: int, orientation: int, image_id: str
    ) -> BinaryIO:
        with self.blob_store.read(year, image_id) as original:
            try:
                data = render_thumbnail(
                    original, orientation, self.size, self.quality, image_id
                )
            except RenderError as e:
                logger.error(f"Thumbnail render failed for {image_id}: {e}")
                raise

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(path, data, fsync=True)
            fd = open(path, "rb")
        except OSError as e:
            error_msg = f"Cannot store thumbnail of {image_id} at {path}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

        logger.info(f"Rendered thumbnail: {path}")
        return fd
