"""
Photo gallery HTTP API.

Thin boundary over the core components:
- Images: batch upload, listing with tag filters, originals, metadata
- Thumbnails: cached fixed size renditions
- Tags: label groups for browsing
"""

import logging
from typing import Iterator, List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.responses import Response, StreamingResponse

from .blobstore import FileBlobStore
from .catalog import Catalog, SQLiteCatalog
from .config import Settings
from .errors import NotFoundError, RenderError, StoreError
from .ingest import Uploader
from .models.schemas import (
    HealthResponse,
    Image,
    ImageListResponse,
    ListImagesOptions,
    ServeResult,
    TagGroupsResponse,
    TagLabel,
    UploadResponse,
)
from .retrieval import ImageServer, parse_http_date, parse_resize
from .thumbnails import ThumbnailCache

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class Gallery:
    """Core components wired from settings."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.catalog = SQLiteCatalog(settings.database_path)
        self.blob_store = FileBlobStore(settings.photos_path)
        self.thumbnails = ThumbnailCache(
            self.blob_store,
            settings.thumbnails_path,
            size=settings.thumbnail_size,
            quality=settings.jpeg_quality,
            serialize_renders=settings.serialize_thumbnail_renders,
        )
        self.uploader = Uploader(self.catalog, self.blob_store)
        self.server = ImageServer(
            self.catalog,
            self.blob_store,
            self.thumbnails,
            quality=settings.jpeg_quality,
        )


def to_response(result: ServeResult) -> Response:
    """Turn a retrieval result into an HTTP response."""
    if result.not_modified:
        return Response(status_code=304)

    body = result.body

    def iterfile() -> Iterator[bytes]:
        try:
            yield from iter(lambda: body.read(_CHUNK_SIZE), b"")
        finally:
            body.close()

    return StreamingResponse(
        iterfile(), media_type=result.content_type, headers=result.headers
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create photo gallery FastAPI application."""
    if settings is None:
        settings = Settings()
    assert settings is not None, "Settings must be provided or created"

    app = FastAPI(
        title="Photo Gallery API",
        description="Content addressed photo store with cached thumbnails",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    gallery = Gallery(settings)
    app.state.gallery = gallery

    # Dependency providers
    def get_catalog() -> Catalog:
        return gallery.catalog

    def get_uploader() -> Uploader:
        return gallery.uploader

    def get_server() -> ImageServer:
        return gallery.server

    def serve(
        server: ImageServer,
        image_id: str,
        resize: Optional[str],
        if_modified_since: Optional[str],
        thumbnail: bool = False,
    ) -> Response:
        since = parse_http_date(if_modified_since)
        try:
            if thumbnail:
                result = server.serve_thumbnail(image_id, since)
            else:
                target = (
                    parse_resize(resize, settings.max_resize) if resize else None
                )
                result = server.serve(image_id, target, since)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Image not found")
        except StoreError as e:
            logger.error(f"Storage error serving {image_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Storage error: {e}")
        except RenderError as e:
            logger.error(f"Render error serving {image_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Render error: {e}")
        return to_response(result)

    # ========================================
    # IMAGES
    # ========================================

    @app.post(
        "/images",
        response_model=UploadResponse,
        tags=["Images"],
        summary="Upload photos",
        description="Upload JPEG files, each tagged with the given labels.",
    )
    def upload_images(
        photos: List[UploadFile] = File(..., description="JPEG files"),
        tags: List[str] = Form(default=[], description="Labels as name=value"),
        uploader: Uploader = Depends(get_uploader),
    ) -> UploadResponse:
        """Ingest uploaded photos one by one."""
        labels = [TagLabel.parse(raw) for raw in tags]
        results = uploader.upload_batch(
            (photo.filename, photo.file, labels) for photo in photos
        )
        uploaded = sum(1 for result in results if result.ok)
        return UploadResponse(
            results=results, uploaded=uploaded, failed=len(results) - uploaded
        )

    @app.get(
        "/images",
        response_model=ImageListResponse,
        tags=["Images"],
        summary="List images",
        description="Newest first; every tag filter must match.",
    )
    def list_images(
        limit: Optional[int] = Query(None, gt=0, description="Page size"),
        offset: int = Query(0, ge=0, description="Results offset"),
        tag: List[str] = Query(default=[], description="Filter as name[=value]"),
        catalog: Catalog = Depends(get_catalog),
    ) -> ImageListResponse:
        """List images with pagination and tag filters."""
        opts = ListImagesOptions(
            limit=limit or settings.list_page_size,
            offset=offset,
            tags=[label for label in map(TagLabel.parse, tag) if not label.is_blank()],
        )
        try:
            images = catalog.list_images(opts)
            total_count = catalog.count_images(opts)
        except StoreError as e:
            logger.error(f"Listing failed: {e}")
            raise HTTPException(status_code=500, detail=f"Storage error: {e}")

        return ImageListResponse(
            images=images,
            total_count=total_count,
            limit=opts.limit,
            offset=opts.offset,
        )

    @app.get(
        "/images/{image_id}/meta",
        response_model=Image,
        tags=["Images"],
        summary="Get image metadata",
    )
    def get_image_meta(
        image_id: str, catalog: Catalog = Depends(get_catalog)
    ) -> Image:
        """Get catalog record of an image with its tags."""
        try:
            return catalog.image_by_id(image_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Image not found")
        except StoreError as e:
            logger.error(f"Cannot get {image_id} image: {e}")
            raise HTTPException(status_code=500, detail=f"Storage error: {e}")

    @app.get(
        "/images/{image_id}",
        tags=["Images"],
        summary="Get image file",
        description="Original bytes, or a rendition when resize=WxH is given.",
    )
    def get_image_file(
        image_id: str,
        resize: Optional[str] = Query(None, description="Target size as WxH"),
        if_modified_since: Optional[str] = Header(None),
        server: ImageServer = Depends(get_server),
    ) -> Response:
        """Get image file."""
        return serve(server, image_id, resize, if_modified_since)

    # ========================================
    # THUMBNAILS
    # ========================================

    @app.get(
        "/thumbnails/{image_id}.jpg",
        tags=["Thumbnails"],
        summary="Get thumbnail",
        description="Fixed size thumbnail, rendered on first request.",
    )
    def get_thumbnail(
        image_id: str,
        if_modified_since: Optional[str] = Header(None),
        server: ImageServer = Depends(get_server),
    ) -> Response:
        """Get cached thumbnail."""
        return serve(server, image_id, None, if_modified_since, thumbnail=True)

    # ========================================
    # TAGS
    # ========================================

    @app.get(
        "/tags",
        response_model=TagGroupsResponse,
        tags=["Tags"],
        summary="List tag groups",
    )
    def list_tag_groups(catalog: Catalog = Depends(get_catalog)) -> TagGroupsResponse:
        """Distinct tag labels with counts."""
        try:
            return TagGroupsResponse(tags=catalog.tag_groups())
        except StoreError as e:
            logger.error(f"Tag groups failed: {e}")
            raise HTTPException(status_code=500, detail=f"Storage error: {e}")

    # ========================================
    # SYSTEM
    # ========================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    def health_check(catalog: Catalog = Depends(get_catalog)) -> HealthResponse:
        """Get system health status."""
        try:
            total_images = catalog.count_images(ListImagesOptions())
        except StoreError as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=500, detail="Health check failed")

        return HealthResponse(
            status="healthy",
            components={
                "catalog": {
                    "total_images": total_images,
                    "database_path": str(settings.database_path),
                },
                "storage": {
                    "photos_path": str(settings.photos_path),
                    "thumbnails_path": str(settings.thumbnails_path),
                    "thumbnail_size": list(settings.thumbnail_size),
                },
            },
        )

    return app
