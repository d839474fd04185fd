"""Tests for the exception hierarchy."""

import pytest

from media_pipeline.core.exceptions import (
    ArchiveLimitExceededError,
    ConfigurationError,
    MediaPipelineError,
    NotImplementedFormatError,
    ObjectNotFoundError,
    PipelineTimeoutError,
    ProcessingError,
    ProcessingFailedError,
    SecurityError,
    StorageError,
    StorageUnavailableError,
    UnsupportedTypeError,
    ValidationError,
    batch_error_handler,
    with_error_handling,
)


class TestExceptionHierarchy:
    """Tests for exception classes."""

    @pytest.mark.parametrize(
        "error",
        [
            ConfigurationError("bad"),
            ValidationError("bad", field="size"),
            UnsupportedTypeError("x/y", "f.bin"),
            ProcessingError("bad"),
            NotImplementedFormatError("rar"),
            PipelineTimeoutError("slow"),
            SecurityError("bad"),
            ArchiveLimitExceededError("big"),
            StorageError("bad"),
            StorageUnavailableError("down"),
            ObjectNotFoundError("k"),
        ],
    )
    def test_all_errors_share_base(self, error):
        assert isinstance(error, MediaPipelineError)

    def test_timeout_is_builtin_timeout(self):
        assert isinstance(PipelineTimeoutError("slow"), TimeoutError)

    def test_not_implemented_format_is_processing_error(self):
        error = NotImplementedFormatError("7z")
        assert isinstance(error, ProcessingError)
        assert error.format_name == "7z"
        assert "7z" in str(error)

    def test_archive_limit_is_archive_wide(self):
        error = ArchiveLimitExceededError("too many entries")
        assert isinstance(error, SecurityError)
        assert error.archive_wide is True

    def test_object_not_found_code(self):
        error = ObjectNotFoundError("uploads/a.jpg")
        assert error.code == "NoSuchKey"
        assert error.key == "uploads/a.jpg"
        assert error.transient is False

    def test_processing_failed_carries_context(self):
        error = ProcessingFailedError("failed", "proc_1", "image", 12.5, attempts=3)
        assert error.process_id == "proc_1"
        assert error.processor_type == "image"
        assert error.duration_ms == 12.5
        assert error.attempts == 3

    def test_unsupported_type_message(self):
        error = UnsupportedTypeError("application/x-foo", "thing.foo")
        assert "application/x-foo" in str(error)
        assert error.file_name == "thing.foo"


class TestErrorHandlingDecorators:
    """Tests for with_error_handling and batch_error_handler."""

    def test_with_error_handling_wraps_unknown_errors(self):
        @with_error_handling
        def broken():
            raise KeyError("missing")

        with pytest.raises(ProcessingError) as excinfo:
            broken()
        assert isinstance(excinfo.value.__cause__, KeyError)

    def test_with_error_handling_passes_pipeline_errors(self):
        @with_error_handling
        def invalid():
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            invalid()

    def test_with_error_handling_returns_value(self):
        @with_error_handling
        def ok(x):
            return x * 2

        assert ok(4) == 8

    def test_batch_error_handler(self):
        with pytest.raises(ProcessingError):
            with batch_error_handler():
                raise RuntimeError("boom")
        with pytest.raises(StorageError):
            with batch_error_handler():
                raise StorageError("down")
