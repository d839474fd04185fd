"""Custom exceptions and error handling utilities for the media pipeline."""

from __future__ import annotations

from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from .logging_config import get_logger


class MediaPipelineError(Exception):
    """Base exception for all media pipeline errors."""

    # Filled in by the orchestrator when the error leaves a processing job.
    process_id: Optional[str] = None
    processor_type: Optional[str] = None
    duration_ms: Optional[float] = None


class ConfigurationError(MediaPipelineError):
    """Error raised for invalid configuration options."""


class ValidationError(MediaPipelineError):
    """Payload rejected before any transformation ran. Never retried."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnsupportedTypeError(MediaPipelineError):
    """No processor claims the declared MIME type / file name pair."""

    def __init__(self, mime_type: str, file_name: str = ""):
        super().__init__(f"Unsupported file type: {mime_type} ({file_name})")
        self.mime_type = mime_type
        self.file_name = file_name


class ProcessingError(MediaPipelineError):
    """Error raised when a transformation stage fails."""


class NotImplementedFormatError(ProcessingError):
    """Format is recognized but deliberately not supported."""

    def __init__(self, format_name: str):
        super().__init__(f"{format_name} format is not supported")
        self.format_name = format_name


class PipelineTimeoutError(MediaPipelineError, TimeoutError):
    """A processing attempt exceeded its time budget."""


class ProcessingFailedError(MediaPipelineError):
    """Terminal failure of a processing job after all attempts."""

    def __init__(
        self,
        message: str,
        process_id: str,
        processor_type: Optional[str] = None,
        duration_ms: float = 0.0,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.process_id = process_id
        self.processor_type = processor_type
        self.duration_ms = duration_ms
        self.attempts = attempts


class SecurityError(MediaPipelineError):
    """Untrusted content violated a safety rule."""

    def __init__(self, message: str, archive_wide: bool = False):
        super().__init__(message)
        self.archive_wide = archive_wide


class ArchiveLimitExceededError(SecurityError):
    """Archive exceeds entry-count or total-size limits."""

    def __init__(self, message: str):
        super().__init__(message, archive_wide=True)


class StorageError(MediaPipelineError):
    """Error raised for storage backend failures."""

    def __init__(
        self, message: str, code: Optional[str] = None, transient: bool = False
    ):
        super().__init__(message)
        self.code = code
        self.transient = transient


class StorageUnavailableError(StorageError):
    """No storage adapter could be connected."""


class ObjectNotFoundError(StorageError):
    """Requested key does not exist in the backend."""

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}", code="NoSuchKey")
        self.key = key


class ProcessNotFoundError(MediaPipelineError):
    """No tracked process with the given id."""


class ProcessCancelledError(MediaPipelineError):
    """Job was cancelled before its next attempt started."""


class ProcessAlreadyFinishedError(MediaPipelineError):
    """Process already reached a terminal status."""


F = TypeVar("F", bound=Callable[..., Any])


def with_error_handling(func: F) -> F:
    """Wrap a function with standardized error handling."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:  # type: ignore[override]
        logger = get_logger("processor")
        try:
            return func(*args, **kwargs)
        except MediaPipelineError:
            logger.debug(f"Pipeline error in {func.__name__}", exc_info=True)
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Unhandled error in {func.__name__}: {exc}", exc_info=True)
            raise ProcessingError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


@contextmanager
def batch_error_handler() -> Any:
    """Context manager to wrap batch operations with error handling."""
    try:
        yield
    except MediaPipelineError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise ProcessingError(str(exc)) from exc
