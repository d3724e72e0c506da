"""
Blob storage for original photographs and their side-records.

Files are laid out per capture year:

    <root>/<YYYY>/<image_id>.jpg    original bytes
    <root>/<YYYY>/<image_id>.json   serialized image record

The side-record carries the same fields as the catalog row so the catalog
can be rebuilt from the filesystem alone.
"""

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from pydantic import ValidationError

from .errors import DecodeError, NotFoundError, StoreError
from .models.schemas import Image

logger = logging.getLogger(__name__)

IMAGE_SUFFIX = ".jpg"
META_SUFFIX = ".json"


def year_dir(root: Path, year: int) -> Path:
    """Directory holding the files of one capture year."""
    return root / f"{year:04d}"


def atomic_write(path: Path, content: Union[bytes, BinaryIO], fsync: bool = False) -> None:
    """
    Write a file so that readers never see partial content.

    Data goes to a temporary file in the target directory which then
    replaces ``path`` in one rename.

    Args:
        path: Destination file path
        content: Bytes or a readable binary stream
        fsync: Flush file data to disk before the rename

    Raises:
        OSError: If writing or renaming fails
    """
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            if isinstance(content, bytes):
                f.write(content)
            else:
                shutil.copyfileobj(content, f)
            if fsync:
                f.flush()
                os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class BlobStore(ABC):
    """Capability interface for original image storage."""

    @abstractmethod
    def put(self, image: Image, content: BinaryIO) -> None:
        """Store original bytes and the side-record of an image."""

    @abstractmethod
    def put_meta(self, image: Image) -> None:
        """Store only the side-record of an image."""

    @abstractmethod
    def read(self, year: int, image_id: str) -> BinaryIO:
        """Open the original bytes of an image for reading."""

    @abstractmethod
    def read_meta(self, year: int, image_id: str) -> Image:
        """Load the side-record of an image."""

    @abstractmethod
    def iter_meta(self) -> Iterator[Image]:
        """Iterate over every stored side-record."""


class FileBlobStore(BlobStore):
    """
    Filesystem implementation of the blob store.

    Writes are atomic per file and rewriting identical content under the
    same identity is a no-op for readers, so concurrent uploads of the same
    photo need no locking.
    """

    def __init__(self, root: Union[str, Path]):
        """
        Initialize file blob store.

        Args:
            root: Photos root directory, created if missing

        Raises:
            StoreError: If the root directory cannot be created
        """
        assert root is not None, "Root directory is required"

        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            logger.info(f"Photo storage path: {self.root}")
        except OSError as e:
            error_msg = f"Failed to setup photo storage {self.root}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

    def image_path(self, year: int, image_id: str) -> Path:
        """Path of the original bytes."""
        return year_dir(self.root, year) / f"{image_id}{IMAGE_SUFFIX}"

    def meta_path(self, year: int, image_id: str) -> Path:
        """Path of the side-record."""
        return year_dir(self.root, year) / f"{image_id}{META_SUFFIX}"

    def _ensure_year_dir(self, image: Image) -> None:
        path = year_dir(self.root, image.year)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            error_msg = f"Cannot create {path} for {image.image_id}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

    def put(self, image: Image, content: BinaryIO) -> None:
        """
        Store original bytes and side-record.

        Args:
            image: Image record addressing the files
            content: Readable stream positioned at the first byte

        Raises:
            StoreError: If any file cannot be written
        """
        assert image is not None, "Image record is required"
        assert content is not None, "Image content is required"

        self._ensure_year_dir(image)
        path = self.image_path(image.year, image.image_id)
        try:
            atomic_write(path, content)
        except OSError as e:
            error_msg = f"Cannot write image {image.image_id} to {path}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

        self.put_meta(image)
        logger.debug(f"Stored image file: {path}")

    def put_meta(self, image: Image) -> None:
        """
        Store the side-record of an image.

        Raises:
            StoreError: If the file cannot be written
        """
        self._ensure_year_dir(image)
        path = self.meta_path(image.year, image.image_id)
        try:
            atomic_write(path, image.to_side_record().encode("utf-8"))
        except OSError as e:
            error_msg = f"Cannot write metadata of {image.image_id} to {path}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

    def read(self, year: int, image_id: str) -> BinaryIO:
        """
        Open original bytes for reading.

        The caller owns and must close the returned file.

        Raises:
            NotFoundError: If no such image file exists
            StoreError: If the file cannot be opened
        """
        path = self.image_path(year, image_id)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise NotFoundError(f"Image file not found: {path}") from e
        except OSError as e:
            error_msg = f"Cannot open image {image_id} at {path}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

    def read_meta(self, year: int, image_id: str) -> Image:
        """
        Load a side-record.

        Raises:
            NotFoundError: If no side-record exists
            DecodeError: If the side-record is malformed
            StoreError: If the file cannot be read
        """
        return self._load_meta(self.meta_path(year, image_id))

    def _load_meta(self, path: Path) -> Image:
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Metadata file not found: {path}") from e
        except OSError as e:
            error_msg = f"Cannot read metadata file {path}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

        try:
            return Image.model_validate_json(raw)
        except ValidationError as e:
            raise DecodeError(f"Cannot decode metadata file {path}: {e}") from e

    def iter_meta(self) -> Iterator[Image]:
        """
        Iterate over every side-record, oldest year first.

        Malformed side-records are logged and skipped.
        """
        for directory in sorted(self.root.iterdir()):
            if not directory.is_dir() or not directory.name.isdigit():
                continue
            for path in sorted(directory.glob(f"*{META_SUFFIX}")):
                try:
                    yield self._load_meta(path)
                except DecodeError as e:
                    logger.warning(f"Skipping metadata file: {e}")
