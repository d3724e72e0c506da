"""Data models for the photo gallery."""
