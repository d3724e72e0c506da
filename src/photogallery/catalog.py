"""
Relational catalog of images and their tags.

This module defines the catalog capability interface and its SQLite
implementation. Identity uniqueness is enforced by the database
constraint, never by checking for existence first.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Sequence, Union

from .errors import ConflictError, GalleryError, NotFoundError, StoreError
from .models.schemas import Image, ListImagesOptions, Tag, TagGroup, TagLabel
from .query import QueryBuilder

logger = logging.getLogger(__name__)

MAX_IMAGE_TAGS = 1000

# sqlite keeps at most 999 host parameters on older builds
_IN_CHUNK_SIZE = 500

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS images (
        image_id TEXT PRIMARY KEY,
        width INTEGER NOT NULL,
        height INTEGER NOT NULL,
        orientation INTEGER NOT NULL DEFAULT 1,
        created TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        image_id TEXT NOT NULL REFERENCES images (image_id),
        name TEXT NOT NULL,
        value TEXT NOT NULL DEFAULT '',
        created TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_images_created ON images (created)",
    "CREATE INDEX IF NOT EXISTS idx_tags_image_id ON tags (image_id)",
    "CREATE INDEX IF NOT EXISTS idx_tags_name_value ON tags (name, value)",
)


def format_timestamp(value: datetime) -> str:
    """Fixed width text form, so text order equals time order."""
    return value.isoformat(timespec="microseconds")


def cast_error(e: sqlite3.Error, context: str) -> GalleryError:
    """Replace a driver error with the matching gallery error."""
    if isinstance(e, sqlite3.IntegrityError):
        message = str(e)
        if "UNIQUE" in message or "PRIMARY KEY" in message:
            return ConflictError(f"{context}: {message}")
    return StoreError(f"{context}: {e}")


class Catalog(ABC):
    """Capability interface for the image catalog."""

    @abstractmethod
    def create_image(self, image: Image) -> Image:
        """Insert an image; ConflictError if the identity exists."""

    @abstractmethod
    def create_tag(self, tag: Tag) -> Tag:
        """Insert a tag of an existing image."""

    @abstractmethod
    def image_by_id(self, image_id: str) -> Image:
        """Load one image with its tags; NotFoundError if absent."""

    @abstractmethod
    def image_tags(self, image_id: str) -> List[Tag]:
        """Load the tags of one image."""

    @abstractmethod
    def list_images(self, opts: ListImagesOptions) -> List[Image]:
        """List images newest first, filtered and paginated."""

    @abstractmethod
    def count_images(self, opts: ListImagesOptions) -> int:
        """Count images matching the tag filter of ``opts``."""

    @abstractmethod
    def tag_groups(self) -> List[TagGroup]:
        """Distinct tag labels with their number of occurrences."""


class SQLiteCatalog(Catalog):
    """
    SQLite backed catalog.

    Every call opens its own connection, so one instance may be shared by
    concurrent request workers.
    """

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        """
        Initialize catalog and create tables if missing.

        Args:
            db_path: SQLite database file
            timeout: Seconds to wait for a locked database

        Raises:
            StoreError: If the database cannot be initialized
        """
        assert db_path is not None, "Database path is required"

        self.db_path = Path(db_path)
        self.timeout = timeout
        self._setup_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        finally:
            conn.close()

    def _setup_database(self) -> None:
        """Setup SQLite database and tables."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                for statement in SCHEMA:
                    conn.execute(statement)
            logger.info(f"Database initialized: {self.db_path}")

        except (OSError, sqlite3.Error) as e:
            error_msg = f"Failed to setup database {self.db_path}: {e}"
            logger.error(error_msg)
            raise StoreError(error_msg) from e

    @staticmethod
    def _row_to_tag(row: sqlite3.Row) -> Tag:
        return Tag(
            image_id=row["image_id"],
            name=row["name"],
            value=row["value"],
            created=datetime.fromisoformat(row["created"]),
        )

    @staticmethod
    def _row_to_image(row: sqlite3.Row, tags: Sequence[Tag] = ()) -> Image:
        return Image(
            image_id=row["image_id"],
            width=row["width"],
            height=row["height"],
            orientation=row["orientation"],
            created=datetime.fromisoformat(row["created"]),
            tags=list(tags),
        )

    def create_image(self, image: Image) -> Image:
        """
        Insert an image record.

        Args:
            image: Image to insert, tags are ignored

        Returns:
            The inserted image

        Raises:
            ConflictError: If an image with the same identity exists
            StoreError: If the insert fails for another reason
        """
        assert image is not None, "Image record is required"

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO images (image_id, width, height, orientation, created)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        image.image_id,
                        image.width,
                        image.height,
                        image.orientation,
                        format_timestamp(image.created),
                    ),
                )
        except sqlite3.Error as e:
            raise cast_error(e, f"Cannot create image {image.image_id}") from e

        logger.debug(f"Created image record: {image.image_id}")
        return image.model_copy(update={"tags": []})

    def create_tag(self, tag: Tag) -> Tag:
        """
        Insert a tag. Repeating a label on the same image is allowed.

        Raises:
            StoreError: If the insert fails, including unknown images
        """
        assert tag is not None, "Tag is required"

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO tags (image_id, name, value, created)
                    VALUES (?, ?, ?, ?)
                    """,
                    (tag.image_id, tag.name, tag.value, format_timestamp(tag.created)),
                )
        except sqlite3.Error as e:
            raise cast_error(
                e, f"Cannot create tag {tag.name}={tag.value} of {tag.image_id}"
            ) from e
        return tag

    def image_by_id(self, image_id: str) -> Image:
        """
        Load an image with its tags.

        Raises:
            NotFoundError: If no image has this identity
            StoreError: If the query fails
        """
        assert image_id is not None, "Image ID is required"

        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM images WHERE image_id = ? LIMIT 1", (image_id,)
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"Image not found: {image_id}")
                tags = self._tags_of(conn, [image_id]).get(image_id, [])
        except sqlite3.Error as e:
            raise cast_error(e, f"Cannot get image {image_id}") from e

        return self._row_to_image(row, tags)

    def image_tags(self, image_id: str) -> List[Tag]:
        """Load the tags of an image, oldest first."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM tags WHERE image_id = ?
                    ORDER BY created, rowid
                    LIMIT ?
                    """,
                    (image_id, MAX_IMAGE_TAGS),
                ).fetchall()
        except sqlite3.Error as e:
            raise cast_error(e, f"Cannot get tags of {image_id}") from e
        return [self._row_to_tag(row) for row in rows]

    def _tags_of(
        self, conn: sqlite3.Connection, image_ids: Sequence[str]
    ) -> Dict[str, List[Tag]]:
        tags: Dict[str, List[Tag]] = {}
        for start in range(0, len(image_ids), _IN_CHUNK_SIZE):
            chunk = list(image_ids[start : start + _IN_CHUNK_SIZE])
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"SELECT * FROM tags WHERE image_id IN ({placeholders}) "
                f"ORDER BY created, rowid",
                chunk,
            ).fetchall()
            for row in rows:
                tags.setdefault(row["image_id"], []).append(self._row_to_tag(row))
        return tags

    @staticmethod
    def _filtered_query(labels: Sequence[TagLabel]) -> QueryBuilder:
        q = QueryBuilder("SELECT i.* FROM images i")
        for label in labels:
            if label.value is None:
                q.where(
                    "EXISTS (SELECT 1 FROM tags t "
                    "WHERE t.image_id = i.image_id AND t.name = ?)",
                    label.name,
                )
            else:
                q.where(
                    "EXISTS (SELECT 1 FROM tags t "
                    "WHERE t.image_id = i.image_id AND t.name = ? AND t.value = ?)",
                    label.name,
                    label.value,
                )
        return q

    def list_images(self, opts: ListImagesOptions) -> List[Image]:
        """
        List images, newest first.

        An image matches the filter only if every label in ``opts.tags``
        matches at least one of its tags.

        Args:
            opts: Pagination and tag filter

        Returns:
            Images with their tags attached

        Raises:
            StoreError: If the query fails
        """
        assert opts is not None, "List options are required"

        q = self._filtered_query(opts.tags)
        q.order_by("i.created DESC", "i.image_id").limit(opts.limit, opts.offset)
        query, args = q.build()

        try:
            with self._connect() as conn:
                rows = conn.execute(query, args).fetchall()
                tags = self._tags_of(conn, [row["image_id"] for row in rows])
        except sqlite3.Error as e:
            raise cast_error(e, "Cannot list images") from e

        return [self._row_to_image(row, tags.get(row["image_id"], [])) for row in rows]

    def count_images(self, opts: ListImagesOptions) -> int:
        """Count images matching the tag filter, ignoring pagination."""
        query, args = self._filtered_query(opts.tags).build_count()
        try:
            with self._connect() as conn:
                return conn.execute(query, args).fetchone()[0]
        except sqlite3.Error as e:
            raise cast_error(e, "Cannot count images") from e

    def tag_groups(self) -> List[TagGroup]:
        """Distinct tag labels with counts, ordered by label."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT name, value, COUNT(*) AS count
                    FROM tags
                    GROUP BY name, value
                    ORDER BY name, value
                    """
                ).fetchall()
        except sqlite3.Error as e:
            raise cast_error(e, "Cannot get tag groups") from e
        return [
            TagGroup(name=row["name"], value=row["value"], count=row["count"])
            for row in rows
        ]
