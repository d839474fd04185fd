"""Tests for core data models."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from media_pipeline.core.models import (
    ArtifactType,
    DerivedArtifact,
    ExtractedFile,
    FileInfo,
    FileInput,
    HealthStatus,
    ListOptions,
    ProcessorType,
    ProcessStatus,
    ProcessTrackerEntry,
    ProviderHealth,
    UploadOptions,
)


class TestFileModels:
    """Tests for FileInfo and FileInput."""

    def test_file_info_defaults(self):
        info = FileInfo(file_name="a.bin")
        assert info.mime_type == "application/octet-stream"
        assert info.size is None

    def test_declared_size_falls_back_to_payload(self):
        assert FileInput(data=b"abcd", info=FileInfo(file_name="a")).declared_size == 4
        assert FileInput(data=b"abcd", info=FileInfo(file_name="a", size=10)).declared_size == 10


class TestArtifacts:
    """Tests for DerivedArtifact and ExtractedFile."""

    def test_size_filled_from_data(self):
        artifact = DerivedArtifact(artifact_type=ArtifactType.THUMBNAIL, data=b"12345", format="png")
        assert artifact.size == 5
        assert artifact.process_id == ""

    def test_explicit_size_kept(self):
        artifact = DerivedArtifact(artifact_type=ArtifactType.MANIFEST, data=b"12", size=99)
        assert artifact.size == 99

    def test_extracted_file_size(self):
        assert ExtractedFile(path="a/b.txt", data=b"xyz").size == 3

    def test_enums_are_strings(self):
        assert ProcessorType("document") is ProcessorType.DOCUMENT
        assert ArtifactType.WAVEFORM.value == "waveform"


class TestTrackerEntry:
    """Tests for ProcessTrackerEntry."""

    @pytest.mark.parametrize(
        "status, terminal",
        [
            (ProcessStatus.PROCESSING.value, False),
            ("retry_1", False),
            (ProcessStatus.COMPLETED.value, True),
            (ProcessStatus.FAILED.value, True),
            (ProcessStatus.CANCELLED.value, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        entry = ProcessTrackerEntry(
            process_id="p", file_name="a", mime_type="image/png", size=1, start_time=0.0, status=status
        )
        assert entry.is_terminal is terminal


class TestStorageModels:
    """Tests for storage-facing models."""

    def test_upload_options_defaults(self):
        options = UploadOptions()
        assert options.overwrite is True
        assert options.compress is None
        assert options.encrypt is None
        assert options.metadata == {}

    @pytest.mark.parametrize("limit", [0, 1001])
    def test_list_limit_bounds(self, limit):
        with pytest.raises(PydanticValidationError):
            ListOptions(limit=limit)

    def test_provider_health(self):
        assert ProviderHealth(provider="s3", status=HealthStatus.HEALTHY).healthy
        unhealthy = ProviderHealth(provider="s3", status=HealthStatus.UNHEALTHY, error="down")
        assert not unhealthy.healthy
        assert unhealthy.last_check.tzinfo is not None
