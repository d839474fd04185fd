"""Tests for content-type routing."""

import pytest

from media_pipeline.core.exceptions import UnsupportedTypeError
from media_pipeline.core.models import ProcessorType
from media_pipeline.core.routing import ContentTypeRouter
from media_pipeline.processors import (
    ArchiveProcessor,
    AudioProcessor,
    DocumentProcessor,
    ImageProcessor,
    VideoProcessor,
)
from media_pipeline.testing.fakes import FakeMediaToolkit


@pytest.fixture
def router():
    toolkit = FakeMediaToolkit()
    return ContentTypeRouter(
        {
            ProcessorType.IMAGE: ImageProcessor(),
            ProcessorType.VIDEO: VideoProcessor(toolkit=toolkit),
            ProcessorType.AUDIO: AudioProcessor(toolkit=toolkit),
            ProcessorType.DOCUMENT: DocumentProcessor(),
            ProcessorType.ARCHIVE: ArchiveProcessor(),
        }
    )


class TestContentTypeRouter:
    """Tests for ContentTypeRouter."""

    @pytest.mark.parametrize(
        "mime_type, file_name, expected",
        [
            ("image/jpeg", "a.jpg", ProcessorType.IMAGE),
            ("IMAGE/PNG; charset=binary", "a.png", ProcessorType.IMAGE),
            ("video/quicktime", "a.mov", ProcessorType.VIDEO),
            ("audio/mpeg", "a.mp3", ProcessorType.AUDIO),
            ("application/pdf", "a.pdf", ProcessorType.DOCUMENT),
            ("text/csv", "a.csv", ProcessorType.DOCUMENT),
            ("application/zip", "a.zip", ProcessorType.ARCHIVE),
            ("application/x-7z-compressed", "a.7z", ProcessorType.ARCHIVE),
        ],
    )
    def test_explicit_table(self, router, mime_type, file_name, expected):
        assert router.resolve_type(mime_type, file_name) == expected

    @pytest.mark.parametrize(
        "mime_type, file_name, expected",
        [
            ("image/heic", "a.heic", ProcessorType.IMAGE),
            ("application/octet-stream", "clip.mkv", ProcessorType.VIDEO),
            ("application/octet-stream", "song.flac", ProcessorType.AUDIO),
            ("application/octet-stream", "notes.md", ProcessorType.DOCUMENT),
            ("application/octet-stream", "bundle.tgz", ProcessorType.ARCHIVE),
        ],
    )
    def test_predicate_fallback(self, router, mime_type, file_name, expected):
        assert router.resolve_type(mime_type, file_name) == expected

    def test_routing_is_deterministic(self, router):
        first = router.route("application/octet-stream", "clip.mkv")
        for _ in range(20):
            assert router.route("application/octet-stream", "clip.mkv") is first

    def test_unsupported_type(self, router):
        with pytest.raises(UnsupportedTypeError) as excinfo:
            router.route("application/x-msdownload", "setup.exe")
        assert excinfo.value.mime_type == "application/x-msdownload"
        assert excinfo.value.file_name == "setup.exe"

    def test_table_entry_for_missing_processor_falls_back(self):
        router = ContentTypeRouter({ProcessorType.DOCUMENT: DocumentProcessor()})
        with pytest.raises(UnsupportedTypeError):
            router.route("image/png", "a.png")
        assert router.resolve_type("text/plain", "a.txt") == ProcessorType.DOCUMENT

    def test_supported_types(self, router):
        supported = router.supported_types()
        assert "image/jpeg" in supported
        assert supported == sorted(supported)
