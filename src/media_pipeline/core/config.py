"""Configuration models for processors, orchestration and storage."""

from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024


class ImageOptions(BaseModel):
    """Limits and renditions for the image processor."""

    max_file_size: int = 50 * MB
    max_width: int = 4096
    max_height: int = 4096
    supported_formats: List[str] = Field(
        default_factory=lambda: ["jpeg", "jpg", "png", "webp", "gif", "tiff", "bmp"]
    )
    thumbnail_sizes: List[int] = Field(default_factory=lambda: [150, 300, 600])
    preview_max_size: int = 800
    preview_quality: int = 80
    jpeg_quality: int = 85
    webp_quality: int = 80
    png_compress_level: int = 6
    generate_webp: bool = True
    dominant_color_clusters: int = 3


class VideoQualityTier(BaseModel):
    """One compressed rendition target."""

    name: str
    video_bitrate: str
    audio_bitrate: str
    width: Optional[int] = None
    height: Optional[int] = None


def default_video_tiers() -> List[VideoQualityTier]:
    return [
        VideoQualityTier(name="low", video_bitrate="500k", audio_bitrate="64k", width=640, height=360),
        VideoQualityTier(name="medium", video_bitrate="1000k", audio_bitrate="128k", width=1280, height=720),
        VideoQualityTier(name="high", video_bitrate="2000k", audio_bitrate="192k"),
    ]


class VideoOptions(BaseModel):
    """Limits and renditions for the video processor."""

    max_file_size: int = 500 * MB
    max_duration: float = 3600.0
    max_width: int = 7680
    max_height: int = 4320
    thumbnail_count: int = 3
    thumbnail_size: Tuple[int, int] = (300, 200)
    preview_duration: float = 30.0
    preview_size: Tuple[int, int] = (640, 360)
    preview_bitrate: str = "500k"
    quality_tiers: List[VideoQualityTier] = Field(default_factory=default_video_tiers)
    output_format: str = "mp4"


class AudioQualityTier(BaseModel):
    """One compressed audio rendition target."""

    name: str
    bitrate: str
    sample_rate: int


def default_audio_tiers() -> List[AudioQualityTier]:
    return [
        AudioQualityTier(name="low", bitrate="64k", sample_rate=22050),
        AudioQualityTier(name="medium", bitrate="128k", sample_rate=44100),
        AudioQualityTier(name="high", bitrate="320k", sample_rate=48000),
    ]


class AudioOptions(BaseModel):
    """Limits and renditions for the audio processor."""

    max_file_size: int = 100 * MB
    max_duration: float = 7200.0
    min_sample_rate: int = 8000
    max_channels: int = 8
    quality_tiers: List[AudioQualityTier] = Field(default_factory=default_audio_tiers)
    output_formats: List[str] = Field(default_factory=lambda: ["mp3", "ogg", "wav"])
    generate_waveform: bool = True
    waveform_size: Tuple[int, int] = (800, 200)
    waveform_samples: int = 1000
    waveform_color: Tuple[int, int, int] = (52, 152, 219)
    generate_spectrogram: bool = False
    spectrogram_size: Tuple[int, int] = (800, 600)
    normalize: bool = False
    target_loudness: float = -23.0


class DocumentOptions(BaseModel):
    """Limits for the document processor."""

    max_file_size: int = 50 * MB
    max_pages: int = 1000
    thumbnail_size: Tuple[int, int] = (300, 400)
    preview_size: Tuple[int, int] = (800, 600)
    preview_pages: int = 5
    text_extraction_limit: int = 1_000_000


class ArchiveOptions(BaseModel):
    """Limits for archive inspection, extraction and creation."""

    max_file_size: int = 500 * MB
    max_files: int = 10_000
    max_depth: int = 20
    max_entry_size: int = 50 * MB
    max_total_size: int = 1024 * MB
    allowed_extensions: Optional[List[str]] = None
    compression_level: int = 6
    extract: bool = True

    @field_validator("allowed_extensions")
    @classmethod
    def _normalize_extensions(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]


class OrchestratorOptions(BaseModel):
    """Concurrency, timeout and retry settings for the orchestrator."""

    enable_parallel_processing: bool = True
    max_concurrent_processes: int = Field(default=3, ge=1)
    processing_timeout: float = Field(default=300.0, gt=0)
    retry_attempts: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    tracker_retention: float = Field(default=60.0, ge=0)


class StorageManagerOptions(BaseModel):
    """Failover and retry settings for the storage manager."""

    default_provider: Optional[str] = None
    enable_failover: bool = True
    health_check_interval: float = Field(default=30.0, ge=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0)
    key_prefix: str = "uploads"


class AdapterConfig(BaseModel):
    """Settings shared by every storage adapter."""

    max_file_size: int = 100 * MB
    allowed_mime_types: Optional[List[str]] = None
    enable_compression: bool = False
    enable_encryption: bool = False
    encryption_key: Optional[str] = None
    compression_level: int = 6
    presign_secret: Optional[str] = None


class PipelineSettings(BaseSettings):
    """
    Environment-driven settings for assembling a pipeline.

    Configuration precedence:
    1. Environment variables (MEDIA_PIPELINE_ prefix)
    2. .env file (if exists)
    3. Default values in this class
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDIA_PIPELINE_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    storage_provider: str = Field(default="local", description="local, s3 or memory")
    failover_providers: List[str] = Field(default_factory=list)
    local_storage_path: str = Field(default="./storage")
    s3_bucket: Optional[str] = None
    s3_region: str = Field(default="us-east-1")
    s3_endpoint_url: Optional[str] = None

    encryption_key: Optional[str] = Field(default=None, alias="FILE_ENCRYPTION_KEY")
    enable_encryption: bool = False
    enable_compression: bool = False
    max_upload_size: int = 100 * MB

    enable_failover: bool = True
    health_check_interval: float = 30.0
    storage_retry_attempts: int = 3
    storage_retry_delay: float = 1.0
    key_prefix: str = "uploads"

    enable_parallel_processing: bool = True
    max_concurrent_processes: int = 3
    processing_timeout: float = 300.0
    processing_retry_attempts: int = 2
    processing_retry_delay: float = 1.0

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    def adapter_config(self) -> AdapterConfig:
        return AdapterConfig(
            max_file_size=self.max_upload_size,
            enable_compression=self.enable_compression,
            enable_encryption=self.enable_encryption,
            encryption_key=self.encryption_key,
            presign_secret=self.encryption_key,
        )

    def orchestrator_options(self) -> OrchestratorOptions:
        return OrchestratorOptions(
            enable_parallel_processing=self.enable_parallel_processing,
            max_concurrent_processes=self.max_concurrent_processes,
            processing_timeout=self.processing_timeout,
            retry_attempts=self.processing_retry_attempts,
            retry_delay=self.processing_retry_delay,
        )

    def storage_manager_options(self) -> StorageManagerOptions:
        return StorageManagerOptions(
            default_provider=self.storage_provider,
            enable_failover=self.enable_failover,
            health_check_interval=self.health_check_interval,
            retry_attempts=self.storage_retry_attempts,
            retry_delay=self.storage_retry_delay,
            key_prefix=self.key_prefix,
        )

    def adapter_kwargs(self, provider: str) -> Dict[str, object]:
        """Constructor arguments for a named adapter."""
        if provider == "local":
            return {"base_path": self.local_storage_path}
        if provider == "s3":
            return {
                "bucket": self.s3_bucket,
                "region": self.s3_region,
                "endpoint_url": self.s3_endpoint_url,
            }
        return {}


@lru_cache()
def get_settings() -> PipelineSettings:
    """Cached settings instance."""
    return PipelineSettings()
