"""Core utilities and shared components for the media pipeline."""

from .config import PipelineSettings, get_settings
from .exceptions import (
    ArchiveLimitExceededError,
    ConfigurationError,
    MediaPipelineError,
    NotImplementedFormatError,
    ObjectNotFoundError,
    PipelineTimeoutError,
    ProcessAlreadyFinishedError,
    ProcessCancelledError,
    ProcessingError,
    ProcessingFailedError,
    ProcessNotFoundError,
    SecurityError,
    StorageError,
    StorageUnavailableError,
    UnsupportedTypeError,
    ValidationError,
    batch_error_handler,
    with_error_handling,
)
from .logging_config import get_logger, setup_logger
from .models import (
    ArtifactType,
    BatchResult,
    DerivedArtifact,
    FileInfo,
    FileInput,
    ProcessingResult,
    ProcessorType,
    StorageObject,
)

__all__ = [
    "PipelineSettings",
    "get_settings",
    "setup_logger",
    "get_logger",
    "MediaPipelineError",
    "ConfigurationError",
    "ValidationError",
    "UnsupportedTypeError",
    "ProcessingError",
    "NotImplementedFormatError",
    "ProcessingFailedError",
    "PipelineTimeoutError",
    "SecurityError",
    "ArchiveLimitExceededError",
    "StorageError",
    "StorageUnavailableError",
    "ObjectNotFoundError",
    "ProcessNotFoundError",
    "ProcessCancelledError",
    "ProcessAlreadyFinishedError",
    "with_error_handling",
    "batch_error_handler",
    "ArtifactType",
    "BatchResult",
    "DerivedArtifact",
    "FileInfo",
    "FileInput",
    "ProcessingResult",
    "ProcessorType",
    "StorageObject",
]
