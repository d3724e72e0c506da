"""
Photogallery: content-addressed photo store with cached thumbnails.

This package provides ingestion of JPEG photographs keyed by their content
hash, EXIF-aware metadata extraction, a year-sharded filesystem layout with
a relational catalog, and conditional retrieval of originals and thumbnails.
"""

__version__ = "0.1.0"
__author__ = "Development Team"
__email__ = "dev@example.com"
