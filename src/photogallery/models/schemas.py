"""
Gallery schemas.

Data models shared by the core components and the HTTP boundary:
- Catalog records: Image, Tag, TagGroup
- Caller input: TagLabel, ListImagesOptions
- Pipeline results: UploadResult, ServeResult
- API responses
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ========================================
# CATALOG RECORDS
# ========================================


class Tag(BaseModel):
    """Label attached to a single image."""

    image_id: str = Field(..., description="Identity of the tagged image")
    name: str = Field(..., description="Tag name")
    value: str = Field("", description="Tag value, empty when not given")
    created: datetime = Field(..., description="Tag creation time")

    @field_validator("created")
    @classmethod
    def validate_created(cls, v: datetime) -> datetime:
        """Normalize creation time to UTC."""
        return _as_utc(v)


class Image(BaseModel):
    """Image record as stored in the catalog and the side-record."""

    image_id: str = Field(..., description="Content hash of the original bytes")
    width: int = Field(..., description="Image width in pixels")
    height: int = Field(..., description="Image height in pixels")
    orientation: int = Field(1, description="EXIF orientation code")
    created: datetime = Field(..., description="Capture or ingestion time")
    tags: List[Tag] = Field(default_factory=list, description="Image tags")

    @field_validator("created")
    @classmethod
    def validate_created(cls, v: datetime) -> datetime:
        """Normalize creation time to UTC."""
        return _as_utc(v)

    @property
    def year(self) -> int:
        """Year used to shard the persisted files."""
        return self.created.year

    def to_side_record(self) -> str:
        """Serialize the fields persisted next to the original bytes."""
        return self.model_dump_json(exclude={"tags"}, indent=2)


class TagGroup(BaseModel):
    """Distinct tag label with its number of occurrences."""

    name: str = Field(..., description="Tag name")
    value: str = Field(..., description="Tag value")
    count: int = Field(..., description="Number of tags with this label")


# ========================================
# CALLER INPUT
# ========================================


class TagLabel(BaseModel):
    """Tag name with an optional value.

    On ingestion a missing value is stored as an empty string. As a listing
    filter a missing value matches any value of that name.
    """

    name: str = Field(..., description="Tag name")
    value: Optional[str] = Field(None, description="Tag value")

    @classmethod
    def parse(cls, raw: str) -> "TagLabel":
        """Parse ``name`` or ``name=value``."""
        name, sep, value = raw.partition("=")
        return cls(name=name.strip(), value=value.strip() if sep else None)

    def is_blank(self) -> bool:
        """True when the label carries no name."""
        return not self.name.strip()


class ListImagesOptions(BaseModel):
    """Pagination and filtering of an image listing."""

    limit: int = Field(200, gt=0, description="Maximum number of results")
    offset: int = Field(0, ge=0, description="Results offset")
    tags: List[TagLabel] = Field(
        default_factory=list,
        description="Every label must match at least one tag of an image",
    )


# ========================================
# PIPELINE RESULTS
# ========================================


class UploadResult(BaseModel):
    """Outcome of ingesting one uploaded item."""

    filename: Optional[str] = Field(None, description="Client supplied filename")
    image: Optional[Image] = Field(None, description="Ingested image")
    error: Optional[str] = Field(None, description="Failure reason")

    @property
    def ok(self) -> bool:
        return self.error is None


class ServeResult(BaseModel):
    """Outcome of a retrieval request.

    ``body`` is an open binary stream owned by the caller, or None for a
    not-modified response.
    """

    not_modified: bool = Field(False, description="Client copy is current")
    body: Optional[Any] = Field(None, description="Readable binary stream")
    content_type: Optional[str] = Field(None, description="Body content type")
    headers: Dict[str, str] = Field(default_factory=dict, description="Headers")

    def close(self) -> None:
        """Release the body stream if there is one."""
        if self.body is not None:
            self.body.close()


# ========================================
# API RESPONSES
# ========================================


class ImageListResponse(BaseModel):
    """Response for image listing."""

    images: List[Image] = Field(..., description="Images, newest first")
    total_count: int = Field(..., description="Number of matching images")
    limit: int = Field(..., description="Query limit")
    offset: int = Field(..., description="Query offset")


class UploadResponse(BaseModel):
    """Response for a batch upload."""

    results: List[UploadResult] = Field(..., description="Per item outcome")
    uploaded: int = Field(..., description="Number of ingested items")
    failed: int = Field(..., description="Number of rejected items")


class TagGroupsResponse(BaseModel):
    """Response for tag group listing."""

    tags: List[TagGroup] = Field(..., description="Distinct tag labels")


class HealthResponse(BaseModel):
    """Response for health check."""

    status: str = Field(..., description="Overall status")
    components: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Component status"
    )
