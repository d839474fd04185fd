"""Shared data models for the media pipeline."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class ProcessorType(str, Enum):
    """Processor categories a file can be routed to."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    ARCHIVE = "archive"


class ArtifactType(str, Enum):
    """Kinds of derived artifacts processors produce."""

    OPTIMIZED = "optimized"
    THUMBNAIL = "thumbnail"
    PREVIEW = "preview"
    WEBP = "webp"
    COMPRESSED = "compressed"
    TRANSCODED = "transcoded"
    WAVEFORM = "waveform"
    SPECTROGRAM = "spectrogram"
    NORMALIZED = "normalized"
    EXTRACTED = "extracted"
    MANIFEST = "manifest"


class ProcessStatus(str, Enum):
    """Terminal and non-terminal tracker states. Retries use ``retry_N``."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {ProcessStatus.COMPLETED.value, ProcessStatus.FAILED.value, ProcessStatus.CANCELLED.value}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileInfo(BaseModel):
    """Declared attributes of an uploaded payload."""

    file_name: str
    mime_type: str = "application/octet-stream"
    size: Optional[int] = None


class FileInput(BaseModel):
    """One payload handed to the pipeline."""

    data: bytes
    info: FileInfo

    @property
    def declared_size(self) -> int:
        return self.info.size if self.info.size is not None else len(self.data)


class ProcessOptions(BaseModel):
    """Per-call options passed to a processor."""

    file_name: str = ""
    mime_type: str = ""
    process_id: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)


class DerivedArtifact(BaseModel):
    """A rendition or extract produced from an original payload."""

    artifact_type: ArtifactType
    data: bytes = b""
    format: str = ""
    size: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    page_count: Optional[int] = None
    timestamp: Optional[float] = None
    quality: Optional[str] = None
    bitrate: Optional[str] = None
    label: Optional[str] = None
    process_id: str = ""
    extra: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_size(self) -> "DerivedArtifact":
        if not self.size and self.data:
            self.size = len(self.data)
        return self


class ProcessorOutput(BaseModel):
    """Metadata, artifacts and text returned by a processor."""

    metadata: Dict[str, Any] = Field(default_factory=dict)
    artifacts: List[DerivedArtifact] = Field(default_factory=list)
    text: Optional[str] = None


class ProcessingResult(BaseModel):
    """Result of processing a single file."""

    process_id: str
    processor_type: ProcessorType
    file_name: str
    mime_type: str
    size: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    artifacts: List[DerivedArtifact] = Field(default_factory=list)
    text: Optional[str] = None
    processing_time_ms: float = 0.0
    attempts: int = 1


class BatchError(BaseModel):
    """One failed file inside a batch."""

    file_name: str
    error: str
    error_type: str = ""
    process_id: Optional[str] = None


class BatchResult(BaseModel):
    """Outcome of a batch call: successes and failures side by side."""

    batch_id: str
    total_files: int
    success_count: int = 0
    error_count: int = 0
    results: List[ProcessingResult] = Field(default_factory=list)
    errors: List[BatchError] = Field(default_factory=list)
    processing_time_ms: float = 0.0


class ArchiveEntry(BaseModel):
    """Manifest row for one archive member."""

    path: str
    size: int = 0
    compressed_size: int = 0
    is_directory: bool = False
    is_file: bool = True
    is_symlink: bool = False
    last_modified: Optional[datetime] = None
    extracted: bool = False
    skipped_reason: Optional[str] = None


class ExtractedFile(BaseModel):
    """An in-memory file, either pulled out of an archive or going into one."""

    path: str
    data: bytes
    size: int = 0

    @model_validator(mode="after")
    def _fill_size(self) -> "ExtractedFile":
        if not self.size:
            self.size = len(self.data)
        return self


class ArchiveCreationResult(BaseModel):
    """Bytes and statistics of a freshly built archive."""

    data: bytes
    size: int
    archive_type: str
    files_count: int
    uncompressed_size: int
    compression_ratio: float = 0.0


class UploadOptions(BaseModel):
    """Per-upload options for a storage adapter."""

    content_type: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    compress: Optional[bool] = None
    encrypt: Optional[bool] = None
    overwrite: bool = True


class UploadResult(BaseModel):
    """What an adapter reports after persisting bytes."""

    key: str
    location: str
    etag: str
    size: int
    stored_size: int = 0
    content_type: str = "application/octet-stream"
    metadata: Dict[str, str] = Field(default_factory=dict)


class StorageObject(BaseModel):
    """Manager-level record of a stored object."""

    key: str
    size: int
    content_hash: str
    etag: str
    location: str
    provider: str
    content_type: str = "application/octet-stream"
    metadata: Dict[str, str] = Field(default_factory=dict)
    uploaded_at: datetime = Field(default_factory=utcnow)


class ObjectDescriptor(BaseModel):
    """Metadata of an object already in storage."""

    key: str
    size: int
    etag: str = ""
    content_type: str = "application/octet-stream"
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class ListOptions(BaseModel):
    """Pagination options for listing."""

    limit: int = Field(default=100, ge=1, le=1000)
    continuation_token: Optional[str] = None


class ListPage(BaseModel):
    """One page of a listing."""

    items: List[ObjectDescriptor] = Field(default_factory=list)
    total_count: Optional[int] = None
    has_more: bool = False
    next_token: Optional[str] = None


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class ProviderHealth(BaseModel):
    """Result of a provider health probe."""

    provider: str
    status: HealthStatus
    last_check: datetime = Field(default_factory=utcnow)
    latency_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


class ProcessTrackerEntry(BaseModel):
    """In-flight bookkeeping for one processing job."""

    process_id: str
    file_name: str
    mime_type: str
    size: int
    start_time: float
    status: str = ProcessStatus.PROCESSING.value
    processor_type: Optional[ProcessorType] = None
    attempts: int = 0
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    finished_at: Optional[float] = None
    cancelled_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class LockGrant(BaseModel):
    """Outcome of a dedup lock attempt; the token is needed to release it."""

    acquired: bool
    token: Optional[str] = None


class IngestionResult(BaseModel):
    """Everything written for one ingested file."""

    processing: Optional[ProcessingResult] = None
    original: Optional[StorageObject] = None
    derived: List[StorageObject] = Field(default_factory=list)
    duplicate: bool = False
    content_hash: str = ""


class TranscodeSpec(BaseModel):
    """Parameters of one media toolkit encode."""

    output_format: str
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    video_bitrate: Optional[str] = None
    audio_bitrate: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    start: Optional[float] = None
    duration: Optional[float] = None
    audio_filter: Optional[str] = None
    no_video: bool = False
    no_audio: bool = False
