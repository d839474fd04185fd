"""Protocol definitions for dependency injection and testability."""

from enum import Enum
from typing import Any, Dict, List, Protocol, runtime_checkable

from .models import LockGrant, StorageObject, TranscodeSpec


class PipelineEvent(str, Enum):
    """Event names emitted to the notifier."""

    FILE_PROCESSED = "FILE_PROCESSED"
    FILE_PROCESSING_FAILED = "FILE_PROCESSING_FAILED"
    BATCH_COMPLETED = "BATCH_COMPLETED"
    FILE_STORED = "FILE_STORED"
    FAILOVER_OCCURRED = "FAILOVER_OCCURRED"
    PROVIDER_UNHEALTHY = "PROVIDER_UNHEALTHY"
    DUPLICATE_UPLOAD_SKIPPED = "DUPLICATE_UPLOAD_SKIPPED"


@runtime_checkable
class EventNotifier(Protocol):
    """Fire-and-forget event sink."""

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver one event."""
        ...


@runtime_checkable
class MetadataStore(Protocol):
    """Persistence for stored-object descriptors, owned elsewhere."""

    def save(self, key: str, descriptors: List[StorageObject]) -> None:
        """Record the original and derived objects for a key."""
        ...


@runtime_checkable
class DedupLockService(Protocol):
    """Short-lived lock keyed by content hash."""

    def acquire(self, key: str, ttl: float) -> LockGrant:
        """Try to take the lock; ``acquired`` is False when someone else holds it."""
        ...

    def release(self, key: str, token: str) -> bool:
        """Release the lock only if ``token`` still owns it."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...


@runtime_checkable
class MediaToolkit(Protocol):
    """Probe and transcode audio/video payloads."""

    def probe(self, data: bytes, suffix: str = "") -> Dict[str, Any]:
        """Return ``{"format": {...}, "streams": [...]}`` in ffprobe's JSON shape."""
        ...

    def extract_frame(
        self, data: bytes, timestamp: float, width: int, height: int, suffix: str = ""
    ) -> bytes:
        """Grab one JPEG frame at ``timestamp`` seconds."""
        ...

    def transcode(self, data: bytes, spec: TranscodeSpec, suffix: str = "") -> bytes:
        """Encode the payload according to ``spec``."""
        ...

    def extract_pcm(self, data: bytes, sample_rate: int = 8000, suffix: str = "") -> bytes:
        """Decode to mono signed 16-bit little-endian PCM."""
        ...

    def render_spectrogram(
        self, data: bytes, width: int, height: int, suffix: str = ""
    ) -> bytes:
        """Render a PNG spectrogram."""
        ...
