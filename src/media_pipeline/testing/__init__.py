"""Testing utilities and fakes for the media pipeline."""

from .fakes import (
    FakeLogger,
    FakeMediaToolkit,
    FakeProcessor,
    FakeS3Client,
    FlakyStorageAdapter,
    InMemoryMetadataStore,
    RecordingEventNotifier,
    S3Bucket,
    S3Object,
    audio_probe,
    create_test_docx,
    create_test_image,
    create_test_pdf,
    create_test_png,
    create_test_pptx,
    create_test_tar,
    create_test_xlsx,
    create_test_zip,
    setup_test_s3_environment,
    video_probe,
)

__all__ = [
    "FakeS3Client",
    "FakeLogger",
    "FakeMediaToolkit",
    "FakeProcessor",
    "FlakyStorageAdapter",
    "InMemoryMetadataStore",
    "RecordingEventNotifier",
    "S3Object",
    "S3Bucket",
    "audio_probe",
    "video_probe",
    "create_test_image",
    "create_test_png",
    "create_test_pdf",
    "create_test_zip",
    "create_test_tar",
    "create_test_docx",
    "create_test_pptx",
    "create_test_xlsx",
    "setup_test_s3_environment",
]
