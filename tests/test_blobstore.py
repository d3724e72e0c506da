"""
Tests for the filesystem blob store.
"""

import io
import json
import threading
from datetime import datetime, timezone

import pytest

from photogallery.blobstore import FileBlobStore, atomic_write
from photogallery.errors import DecodeError, NotFoundError
from photogallery.models.schemas import Image


@pytest.fixture
def image() -> Image:
    return Image(
        image_id="abcDEF123_-xyz",
        width=64,
        height=48,
        orientation=6,
        created=datetime(2018, 3, 1, 8, 0, 0, tzinfo=timezone.utc),
    )


@pytest.mark.unit
class TestLayout:
    """Persisted file layout."""

    def test_put_writes_bytes_and_side_record(self, blob_store, image, temp_dir):
        blob_store.put(image, io.BytesIO(b"jpeg bytes"))

        year_dir = temp_dir / "photos" / "2018"
        assert (year_dir / f"{image.image_id}.jpg").read_bytes() == b"jpeg bytes"

        record = json.loads((year_dir / f"{image.image_id}.json").read_text())
        assert record["image_id"] == image.image_id
        assert record["width"] == 64
        assert record["height"] == 48
        assert record["orientation"] == 6
        assert record["created"].startswith("2018-03-01T08:00:00")
        assert "tags" not in record

    def test_no_temporary_files_left_behind(self, blob_store, image, temp_dir):
        blob_store.put(image, io.BytesIO(b"jpeg bytes"))

        names = sorted(p.name for p in (temp_dir / "photos" / "2018").iterdir())
        assert names == [f"{image.image_id}.jpg", f"{image.image_id}.json"]

    def test_put_is_idempotent(self, blob_store, image):
        blob_store.put(image, io.BytesIO(b"same bytes"))
        blob_store.put(image, io.BytesIO(b"same bytes"))

        with blob_store.read(2018, image.image_id) as fd:
            assert fd.read() == b"same bytes"

    def test_concurrent_puts_of_same_identity(self, blob_store, image):
        errors = []

        def put():
            try:
                blob_store.put(image, io.BytesIO(b"x" * 100000))
            except Exception as e:
                errors.append(e)

        workers = [threading.Thread(target=put) for _ in range(8)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert errors == []
        with blob_store.read(2018, image.image_id) as fd:
            assert fd.read() == b"x" * 100000


@pytest.mark.unit
class TestRead:
    """Reading stored files."""

    def test_read_missing_image(self, blob_store):
        with pytest.raises(NotFoundError):
            blob_store.read(2018, "missing")

    def test_read_meta_round_trip(self, blob_store, image):
        blob_store.put(image, io.BytesIO(b"jpeg bytes"))

        assert blob_store.read_meta(2018, image.image_id) == image

    def test_read_meta_missing(self, blob_store):
        with pytest.raises(NotFoundError):
            blob_store.read_meta(2018, "missing")

    def test_read_meta_malformed(self, blob_store, image, temp_dir):
        blob_store.put(image, io.BytesIO(b"jpeg bytes"))
        (temp_dir / "photos" / "2018" / f"{image.image_id}.json").write_text("{oops")

        with pytest.raises(DecodeError):
            blob_store.read_meta(2018, image.image_id)

    def test_iter_meta_skips_malformed_records(self, blob_store, image, temp_dir):
        other = image.model_copy(
            update={
                "image_id": "other",
                "created": datetime(2020, 1, 1, tzinfo=timezone.utc),
            }
        )
        blob_store.put(image, io.BytesIO(b"a"))
        blob_store.put(other, io.BytesIO(b"b"))
        (temp_dir / "photos" / "2020" / "broken.json").write_text("[]")
        (temp_dir / "photos" / "notes").mkdir()

        assert [img.image_id for img in blob_store.iter_meta()] == [
            image.image_id,
            "other",
        ]


@pytest.mark.unit
class TestAtomicWrite:
    """Temp file and rename writes."""

    def test_failed_write_keeps_previous_content(self, temp_dir):
        target = temp_dir / "file.bin"
        target.write_bytes(b"previous")

        class Exploding(io.BytesIO):
            def read(self, *args):
                raise OSError("disk full")

        with pytest.raises(OSError):
            atomic_write(target, Exploding())

        assert target.read_bytes() == b"previous"
        assert [p.name for p in temp_dir.iterdir()] == ["file.bin"]

    def test_root_is_created(self, temp_dir):
        FileBlobStore(temp_dir / "nested" / "photos")

        assert (temp_dir / "nested" / "photos").is_dir()
