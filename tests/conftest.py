"""
Test configuration and shared fixtures for the gallery test suite.

This module provides temporary storage roots and the core components
wired against them.
"""

import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator

import pytest

from photogallery.blobstore import FileBlobStore
from photogallery.catalog import SQLiteCatalog
from photogallery.config import Settings
from photogallery.ingest import Uploader
from photogallery.retrieval import ImageServer
from photogallery.thumbnails import ThumbnailCache
from tests.helpers import INGESTION_TIME, build_jpeg


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def settings(temp_dir: Path) -> Settings:
    """Settings pointing every storage root into the temporary directory."""
    return Settings(
        photos_path=temp_dir / "photos",
        thumbnails_path=temp_dir / "thumbnails",
        database_path=temp_dir / "gallery.db",
        log_level="DEBUG",
    )


@pytest.fixture
def catalog(settings: Settings) -> SQLiteCatalog:
    return SQLiteCatalog(settings.database_path)


@pytest.fixture
def blob_store(settings: Settings) -> FileBlobStore:
    return FileBlobStore(settings.photos_path)


@pytest.fixture
def thumbnails(settings: Settings, blob_store: FileBlobStore) -> ThumbnailCache:
    return ThumbnailCache(blob_store, settings.thumbnails_path, size=(100, 100))


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at the ingestion time."""
    return lambda: INGESTION_TIME


@pytest.fixture
def uploader(catalog, blob_store, clock) -> Uploader:
    return Uploader(catalog, blob_store, clock=clock)


@pytest.fixture
def server(catalog, blob_store, thumbnails) -> ImageServer:
    return ImageServer(catalog, blob_store, thumbnails)


@pytest.fixture
def jpeg_bytes() -> bytes:
    """Plain JPEG without EXIF data."""
    return build_jpeg()
