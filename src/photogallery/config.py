"""
Configuration management for the photo gallery.

This module handles loading and validation of configuration settings
from environment variables and provides type-safe configuration objects.
"""

from pathlib import Path
from typing import Tuple

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings."""

    # Storage settings
    photos_path: Path = Field(
        default=Path("/tmp/gallery/photos"),
        description="Root directory for original photos and side-records",
    )
    thumbnails_path: Path = Field(
        default=Path("/tmp/gallery/thumbnails"),
        description="Root directory for rendered thumbnails",
    )
    database_path: Path = Field(
        default=Path("/tmp/gallery/db.sqlite3"), description="SQLite database path"
    )

    # Thumbnail settings
    thumbnail_width: int = Field(default=100, gt=0, description="Thumbnail width")
    thumbnail_height: int = Field(default=100, gt=0, description="Thumbnail height")
    serialize_thumbnail_renders: bool = Field(
        default=False,
        description="Render each missing thumbnail at most once at a time",
    )
    jpeg_quality: int = Field(
        default=95, ge=1, le=100, description="JPEG quality of rendered images"
    )
    max_resize: int = Field(
        default=4096, gt=0, description="Largest side of an on-the-fly rendition"
    )

    # Listing settings
    list_page_size: int = Field(
        default=200, gt=0, description="Default number of images per page"
    )

    # Server settings
    server_host: str = Field(default="localhost", description="Server host")
    server_port: int = Field(default=5000, description="Server port")

    # Logging settings
    log_level: str = Field(default="INFO", description="Log level")
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def thumbnail_size(self) -> Tuple[int, int]:
        """Thumbnail dimensions as (width, height)."""
        return (self.thumbnail_width, self.thumbnail_height)

    class Config:
        """Pydantic configuration."""

        env_prefix = "GALLERY_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()
