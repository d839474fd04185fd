"""Tests for storage key generation, upload validation and MIME detection."""

import re
from datetime import datetime, timezone

import pytest

from media_pipeline.core.exceptions import ValidationError
from media_pipeline.core.keys import (
    derived_key,
    generate_storage_key,
    sanitize_file_name,
    validate_file,
)
from media_pipeline.core.mime import detect_magic_type, detect_mime_type, get_extension
from media_pipeline.testing.fakes import (
    create_test_docx,
    create_test_image,
    create_test_pdf,
    create_test_png,
    create_test_tar,
    create_test_zip,
)


class TestStorageKeys:
    """Tests for generate_storage_key and friends."""

    def test_key_layout(self):
        now = datetime(2024, 3, 7, 12, 0, tzinfo=timezone.utc)
        key = generate_storage_key("My Photo.JPG", prefix="uploads", now=now)
        assert re.fullmatch(r"uploads/2024/03/07/\d+_[a-z0-9]{8}_my_photo\.jpg", key)
        assert f"/{int(now.timestamp() * 1000)}_" in key

    def test_same_name_same_instant_gives_distinct_keys(self):
        now = datetime(2024, 3, 7, tzinfo=timezone.utc)
        keys = {generate_storage_key("a.jpg", now=now) for _ in range(50)}
        assert len(keys) == 50

    def test_empty_prefix(self):
        key = generate_storage_key("a.txt", prefix="")
        assert not key.startswith("/")

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Report Final.PDF", "report_final.pdf"),
            ("a<b>c.txt", "a_b_c.txt"),
            ("..", "file"),
            ("dir/evil.txt", "dir_evil.txt"),
        ],
    )
    def test_sanitize_file_name(self, name, expected):
        assert sanitize_file_name(name) == expected

    def test_derived_key(self):
        assert derived_key("uploads/x.jpg", "000_thumbnail_150", "jpeg") == (
            "uploads/x.jpg.derived/000_thumbnail_150.jpeg"
        )


class TestValidateFile:
    """Tests for validate_file."""

    def test_valid(self):
        validate_file(b"data", "a.txt", "text/plain", max_file_size=10, allowed_mime_types=["text/plain"])

    @pytest.mark.parametrize(
        "data, name, field",
        [
            (b"", "a.txt", "size"),
            (b"x", "", "file_name"),
            (b"x", "a" * 256, "file_name"),
            (b"x", "a/b.txt", "file_name"),
            (b"x" * 11, "a.txt", "size"),
        ],
    )
    def test_invalid(self, data, name, field):
        with pytest.raises(ValidationError) as excinfo:
            validate_file(data, name, "text/plain", max_file_size=10)
        assert excinfo.value.field == field

    def test_disallowed_mime_type(self):
        with pytest.raises(ValidationError, match="not allowed"):
            validate_file(b"x", "a.exe", "application/x-msdownload", allowed_mime_types=["image/png"])


class TestMimeDetection:
    """Tests for detect_mime_type."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("a.tar.gz", ".tar.gz"),
            ("A.TAR.BZ2", ".tar.bz2"),
            ("photo.JPG", ".jpg"),
            ("noext", ""),
        ],
    )
    def test_get_extension(self, name, expected):
        assert get_extension(name) == expected

    def test_magic_bytes(self):
        assert detect_magic_type(create_test_image()) == "image/jpeg"
        assert detect_magic_type(create_test_png()) == "image/png"
        assert detect_magic_type(create_test_pdf()) == "application/pdf"
        assert detect_magic_type(create_test_zip({"a.txt": b"a"})) == "application/zip"
        assert detect_magic_type(create_test_tar({"a.txt": b"a"})) == "application/x-tar"
        assert detect_magic_type(b"plain") is None

    def test_magic_overrides_extension(self):
        assert detect_mime_type("disguised.txt", create_test_png()) == "image/png"

    def test_office_documents_keep_extension_type(self):
        mime = detect_mime_type("letter.docx", create_test_docx(["Hi"]))
        assert mime == "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

    def test_extension_fallback(self):
        assert detect_mime_type("song.mp3") == "audio/mpeg"
        assert detect_mime_type("unknown.zzzq") == "application/octet-stream"
