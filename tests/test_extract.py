"""
Tests for identity and metadata extraction.
"""

import base64
import hashlib
import io
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from photogallery.errors import DecodeError
from photogallery.extract import compute_image_id, extract_image
from tests.helpers import INGESTION_TIME, build_jpeg


@pytest.mark.unit
class TestIdentity:
    """Content hash identity."""

    def test_identity_is_unpadded_urlsafe_sha256(self, jpeg_bytes):
        expected = (
            base64.urlsafe_b64encode(hashlib.sha256(jpeg_bytes).digest())
            .decode()
            .rstrip("=")
        )

        assert compute_image_id(io.BytesIO(jpeg_bytes)) == expected
        assert len(expected) == 43

    def test_identity_hashes_whole_stream_regardless_of_position(self, jpeg_bytes):
        stream = io.BytesIO(jpeg_bytes)
        stream.seek(100)

        assert compute_image_id(stream) == compute_image_id(io.BytesIO(jpeg_bytes))

    def test_identical_bytes_give_identical_identity(self, jpeg_bytes):
        first = extract_image(io.BytesIO(jpeg_bytes), INGESTION_TIME)
        second = extract_image(io.BytesIO(bytes(jpeg_bytes)), INGESTION_TIME)

        assert first.image_id == second.image_id

    def test_metadata_only_difference_changes_identity(self):
        plain = build_jpeg()
        tagged = build_jpeg(orientation=1)

        plain_id = extract_image(io.BytesIO(plain), INGESTION_TIME).image_id
        tagged_id = extract_image(io.BytesIO(tagged), INGESTION_TIME).image_id

        assert plain_id != tagged_id


@pytest.mark.unit
class TestMetadata:
    """Dimensions, orientation and capture time."""

    def test_dimensions_from_header(self):
        image = extract_image(io.BytesIO(build_jpeg(size=(120, 80))), INGESTION_TIME)

        assert (image.width, image.height) == (120, 80)

    def test_missing_exif_falls_back(self, jpeg_bytes):
        image = extract_image(io.BytesIO(jpeg_bytes), INGESTION_TIME)

        assert image.orientation == 1
        assert image.created == INGESTION_TIME

    @pytest.mark.parametrize("code", [1, 3, 6, 8])
    def test_orientation_from_exif(self, code):
        image = extract_image(io.BytesIO(build_jpeg(orientation=code)), INGESTION_TIME)

        assert image.orientation == code

    def test_capture_time_from_exif(self):
        data = build_jpeg(captured="2019:05:04 10:11:12")

        image = extract_image(io.BytesIO(data), INGESTION_TIME)

        assert image.created == datetime(2019, 5, 4, 10, 11, 12, tzinfo=timezone.utc)
        assert image.year == 2019

    def test_unparsable_capture_time_falls_back(self):
        data = build_jpeg(orientation=6, captured="yesterday at noon")

        image = extract_image(io.BytesIO(data), INGESTION_TIME)

        assert image.created == INGESTION_TIME
        assert image.orientation == 6

    def test_out_of_range_orientation_falls_back(self):
        image = extract_image(io.BytesIO(build_jpeg(orientation=42)), INGESTION_TIME)

        assert image.orientation == 1

    def test_stream_is_rewound(self, jpeg_bytes):
        stream = io.BytesIO(jpeg_bytes)

        extract_image(stream, INGESTION_TIME)

        assert stream.tell() == 0


@pytest.mark.unit
class TestDecodeErrors:
    """Rejected input."""

    def test_garbage_is_rejected(self):
        with pytest.raises(DecodeError):
            extract_image(io.BytesIO(b"definitely not an image"), INGESTION_TIME)

    def test_png_is_rejected(self):
        from PIL import Image

        buf = io.BytesIO()
        Image.new("RGB", (10, 10), color="red").save(buf, format="PNG")

        with pytest.raises(DecodeError, match="Unsupported image format"):
            extract_image(io.BytesIO(buf.getvalue()), INGESTION_TIME)

    def test_oversized_picture_is_rejected(self):
        data = build_jpeg(size=(400, 300))

        with patch("PIL.Image.MAX_IMAGE_PIXELS", 1000):
            with pytest.raises(DecodeError, match="too large"):
                extract_image(io.BytesIO(data), INGESTION_TIME)
