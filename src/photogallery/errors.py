"""
Error types shared by the gallery components.

Storage backends translate their native failures into these so the
ingestion and retrieval layers can react without knowing the backend.
"""


class GalleryError(Exception):
    """Base class for all gallery errors."""


class DecodeError(GalleryError):
    """Input bytes or a stored record could not be decoded."""


class NotFoundError(GalleryError):
    """Requested image, record or file does not exist."""


class ConflictError(GalleryError):
    """Record with the same identity already exists."""


class StoreError(GalleryError):
    """Filesystem or database operation failed."""


class RenderError(GalleryError):
    """Image could not be decoded, transformed or encoded."""


class IngestError(GalleryError):
    """Uploaded item could not be ingested."""
