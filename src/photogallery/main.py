"""
Main entry point for the photo gallery.

This module provides the main function for running the gallery server
and for rebuilding the catalog from stored side-records.
"""

import logging
import sys

import uvicorn

from .api import create_app
from .blobstore import FileBlobStore
from .catalog import SQLiteCatalog
from .config import Settings
from .ingest import reindex

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings."""
    level = "DEBUG" if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main():
    """Main application entry point."""
    settings = Settings()
    configure_logging(settings)

    try:
        app = create_app(settings)

        logger.info(
            f"Starting gallery server on {settings.server_host}:{settings.server_port}"
        )
        uvicorn.run(
            app,
            host=settings.server_host,
            port=settings.server_port,
            log_level=settings.log_level.lower(),
        )

    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise


def reindex_main():
    """Restore missing catalog records from the photos directory."""
    settings = Settings()
    configure_logging(settings)

    catalog = SQLiteCatalog(settings.database_path)
    blob_store = FileBlobStore(settings.photos_path)
    inserted = reindex(blob_store, catalog)
    print(f"restored {inserted} image records")
    return 0


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "reindex":
        sys.exit(reindex_main())
    main()
