"""
Ingestion pipeline for uploaded photographs.

An upload is extracted, written to the blob store, recorded in the catalog
and tagged, in that order. Uploading the same bytes again is not an error:
the existing catalog record is kept and the new tags are added to it.
"""

import logging
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Iterable, List, Optional, Sequence, Tuple, Union

from .blobstore import BlobStore
from .catalog import Catalog
from .errors import ConflictError, GalleryError, IngestError
from .extract import extract_image
from .models.schemas import Image, Tag, TagLabel, UploadResult

logger = logging.getLogger(__name__)

TagInput = Union[TagLabel, str]
UploadItem = Tuple[Optional[str], BinaryIO, Sequence[TagInput]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_tags(tags: Iterable[TagInput]) -> List[TagLabel]:
    """Parse raw labels and drop the ones without a name."""
    labels = []
    for tag in tags:
        label = TagLabel.parse(tag) if isinstance(tag, str) else tag
        if label.is_blank():
            logger.debug(f"Ignoring tag without name: {tag!r}")
            continue
        labels.append(
            TagLabel(name=label.name.strip(), value=(label.value or "").strip())
        )
    return labels


class Uploader:
    """
    Stores uploaded photographs.

    Uploader holds no per-upload state; one instance serves concurrent
    requests.
    """

    def __init__(
        self,
        catalog: Catalog,
        blob_store: BlobStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize uploader.

        Args:
            catalog: Catalog receiving image and tag records
            blob_store: Store receiving original bytes
            clock: Source of the ingestion time
        """
        assert catalog is not None, "Catalog is required"
        assert blob_store is not None, "Blob store is required"

        self.catalog = catalog
        self.blob_store = blob_store
        self.clock = clock

    def upload(self, stream: BinaryIO, tags: Iterable[TagInput] = ()) -> Image:
        """
        Ingest one photograph.

        Steps already completed are not undone when a later step fails, so
        a failed tag insert leaves a stored, partially tagged image.

        Args:
            stream: Seekable stream of JPEG bytes
            tags: Labels as TagLabel or ``name[=value]`` strings

        Returns:
            The catalog image the upload resolved to, with its tags

        Raises:
            IngestError: If any step fails
        """
        assert stream is not None, "Upload stream is required"

        now = self.clock()
        labels = normalize_tags(tags)

        try:
            image = extract_image(stream, now)
        except GalleryError as e:
            raise IngestError(f"Cannot extract metadata: {e}") from e

        try:
            stream.seek(0)
            self.blob_store.put(image, stream)
        except (OSError, GalleryError) as e:
            raise IngestError(f"Cannot store file {image.image_id}: {e}") from e

        try:
            image = self.catalog.create_image(image)
            logger.info(f"Ingested image: {image.image_id}")
        except ConflictError:
            image = self._resolve_existing(image)
        except GalleryError as e:
            raise IngestError(f"Database error for {image.image_id}: {e}") from e

        for label in labels:
            try:
                tag = self.catalog.create_tag(
                    Tag(
                        image_id=image.image_id,
                        name=label.name,
                        value=label.value,
                        created=now,
                    )
                )
            except GalleryError as e:
                raise IngestError(
                    f"Cannot tag {image.image_id} with {label.name}: {e}"
                ) from e
            image.tags.append(tag)

        return image

    def _resolve_existing(self, image: Image) -> Image:
        """Load the catalog record of an already ingested image."""
        try:
            existing = self.catalog.image_by_id(image.image_id)
        except GalleryError as e:
            raise IngestError(f"Cannot load existing {image.image_id}: {e}") from e

        logger.info(f"Image already ingested: {image.image_id}")
        if existing.created != image.created:
            if existing.year != image.year:
                logger.warning(
                    f"Duplicate upload of {image.image_id} stored under "
                    f"{image.year}, catalog has {existing.year}"
                )
            try:
                self.blob_store.put_meta(existing)
            except GalleryError as e:
                raise IngestError(
                    f"Cannot restore metadata of {image.image_id}: {e}"
                ) from e
        return existing

    def upload_batch(self, items: Iterable[UploadItem]) -> List[UploadResult]:
        """
        Ingest several photographs independently.

        A failing item is reported in its result and does not stop the
        remaining items.

        Args:
            items: (filename, stream, tags) per uploaded file

        Returns:
            One result per item, in input order
        """
        results = []
        for filename, stream, tags in items:
            try:
                image = self.upload(stream, tags)
            except IngestError as e:
                logger.error(f"Upload of {filename or 'unnamed file'} failed: {e}")
                results.append(UploadResult(filename=filename, error=str(e)))
                continue
            results.append(UploadResult(filename=filename, image=image))
        return results


def reindex(blob_store: BlobStore, catalog: Catalog) -> int:
    """
    Rebuild missing catalog records from stored side-records.

    Args:
        blob_store: Store holding the side-records
        catalog: Catalog to complete

    Returns:
        Number of image records inserted

    Raises:
        StoreError: If the catalog fails for another reason than a conflict
    """
    inserted = 0
    for image in blob_store.iter_meta():
        try:
            catalog.create_image(image)
        except ConflictError:
            continue
        inserted += 1
        logger.info(f"Restored catalog record: {image.image_id}")
    logger.info(f"Reindex finished, {inserted} records restored")
    return inserted
