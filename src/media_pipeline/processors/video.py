"""Video processor: probe, thumbnails, preview clip and quality tiers."""

from typing import Any, Dict, List, Optional

from ..core.config import VideoOptions, VideoQualityTier
from ..core.exceptions import ValidationError
from ..core.mime import get_extension
from ..core.models import (
    ArtifactType,
    DerivedArtifact,
    ProcessOptions,
    ProcessorOutput,
    ProcessorType,
    TranscodeSpec,
)
from ..core.protocols import MediaToolkit
from .base import Processor
from .media_toolkit import FFmpegToolkit, find_stream, parse_bitrate, parse_frame_rate, probe_format

VIDEO_EXTENSIONS = {".mp4", ".webm", ".mov", ".avi", ".mkv", ".mpeg", ".mpg", ".m4v", ".wmv", ".flv"}


def thumbnail_timestamps(duration: float, count: int) -> List[float]:
    """``count`` evenly spaced instants strictly inside ``(0, duration)``."""
    if count <= 0:
        return []
    if duration <= 0:
        return [0.0]
    step = duration / (count + 1)
    return [round(step * i, 3) for i in range(1, count + 1)]


def preview_window(duration: float, preview_duration: float) -> Optional[tuple]:
    """``(start, length)`` of the preview clip, starting 10% in."""
    if duration <= 0:
        return None
    length = min(preview_duration, duration * 0.8)
    return round(duration * 0.1, 3), round(length, 3)


def tier_applies(
    tier: VideoQualityTier,
    source_bitrate: int,
    source_width: Optional[int],
    source_height: Optional[int],
) -> bool:
    """A tier is produced only when it is strictly smaller than the source."""
    target = parse_bitrate(tier.video_bitrate)
    if source_bitrate > 0 and target >= source_bitrate:
        return False
    if tier.width and tier.height and source_width and source_height:
        if tier.width >= source_width and tier.height >= source_height:
            return False
    return True


class VideoProcessor(Processor):
    """Video stage backed by a media toolkit."""

    processor_type = ProcessorType.VIDEO

    def __init__(
        self,
        options: Optional[VideoOptions] = None,
        toolkit: Optional[MediaToolkit] = None,
    ):
        self.options = options or VideoOptions()
        self.toolkit = toolkit or FFmpegToolkit()
        super().__init__()

    def supports(self, mime_type: str, file_name: str = "") -> bool:
        if mime_type and mime_type.lower().startswith("video/"):
            return True
        return get_extension(file_name) in VIDEO_EXTENSIONS

    def probe(self, data: bytes, file_name: str = "") -> Dict[str, Any]:
        """Normalized video metadata."""
        raw = self.toolkit.probe(data, get_extension(file_name))
        metadata = probe_format(raw)
        video = find_stream(raw, "video")
        audio = find_stream(raw, "audio")

        if video is not None:
            metadata["video"] = {
                "codec": video.get("codec_name"),
                "width": int(video.get("width") or 0),
                "height": int(video.get("height") or 0),
                "fps": parse_frame_rate(video.get("avg_frame_rate") or video.get("r_frame_rate")),
                "bitrate": parse_bitrate(video.get("bit_rate")),
                "pixel_format": video.get("pix_fmt"),
            }
        if audio is not None:
            metadata["audio"] = {
                "codec": audio.get("codec_name"),
                "sample_rate": int(audio.get("sample_rate") or 0),
                "channels": int(audio.get("channels") or 0),
                "bitrate": parse_bitrate(audio.get("bit_rate")),
            }
        return metadata

    def validate(self, data: bytes, options: ProcessOptions) -> None:
        self.check_size(data, self.options.max_file_size, "Video")
        metadata = self.probe(data, options.file_name)

        if "video" not in metadata:
            raise ValidationError("No video stream found", field="streams")
        if metadata["duration"] > self.options.max_duration:
            raise ValidationError(
                f"Video duration {metadata['duration']:.1f}s exceeds maximum {self.options.max_duration:.0f}s",
                field="duration",
            )
        video = metadata["video"]
        if video["width"] > self.options.max_width or video["height"] > self.options.max_height:
            raise ValidationError(
                f"Video resolution {video['width']}x{video['height']} exceeds maximum "
                f"{self.options.max_width}x{self.options.max_height}",
                field="resolution",
            )

    def _process(self, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        suffix = get_extension(options.file_name)
        metadata = self.probe(data, options.file_name)
        duration = metadata["duration"]

        artifacts = self.generate_thumbnails(data, duration, suffix)

        preview = self.generate_preview(data, duration, suffix)
        if preview is not None:
            artifacts.append(preview)

        artifacts.extend(self.generate_quality_tiers(data, metadata, suffix))

        self.logger.debug(
            f"Processed video {options.file_name}: {duration:.1f}s, {len(artifacts)} artifacts"
        )
        return ProcessorOutput(metadata=metadata, artifacts=artifacts)

    def generate_thumbnails(self, data: bytes, duration: float, suffix: str = "") -> List[DerivedArtifact]:
        width, height = self.options.thumbnail_size
        thumbnails = []
        for index, timestamp in enumerate(thumbnail_timestamps(duration, self.options.thumbnail_count)):
            frame = self.toolkit.extract_frame(data, timestamp, width, height, suffix)
            thumbnails.append(
                DerivedArtifact(
                    artifact_type=ArtifactType.THUMBNAIL,
                    data=frame,
                    format="jpeg",
                    width=width,
                    height=height,
                    timestamp=timestamp,
                    label=f"thumbnail_{index + 1}",
                )
            )
        return thumbnails

    def generate_preview(self, data: bytes, duration: float, suffix: str = "") -> Optional[DerivedArtifact]:
        window = preview_window(duration, self.options.preview_duration)
        if window is None:
            return None
        start, length = window
        width, height = self.options.preview_size
        clip = self.toolkit.transcode(
            data,
            TranscodeSpec(
                output_format="mp4",
                start=start,
                duration=length,
                width=width,
                height=height,
                video_bitrate=self.options.preview_bitrate,
                audio_bitrate="64k",
            ),
            suffix,
        )
        return DerivedArtifact(
            artifact_type=ArtifactType.PREVIEW,
            data=clip,
            format="mp4",
            width=width,
            height=height,
            duration=length,
            timestamp=start,
            bitrate=self.options.preview_bitrate,
            label="preview",
        )

    def generate_quality_tiers(
        self, data: bytes, metadata: Dict[str, Any], suffix: str = ""
    ) -> List[DerivedArtifact]:
        video = metadata.get("video", {})
        source_bitrate = video.get("bitrate") or metadata.get("bitrate", 0)
        renditions = []
        for tier in self.options.quality_tiers:
            if not tier_applies(tier, source_bitrate, video.get("width"), video.get("height")):
                self.logger.debug(f"Skipping {tier.name} tier: not smaller than source")
                continue
            encoded = self.toolkit.transcode(
                data,
                TranscodeSpec(
                    output_format=self.options.output_format,
                    video_bitrate=tier.video_bitrate,
                    audio_bitrate=tier.audio_bitrate,
                    width=tier.width,
                    height=tier.height,
                ),
                suffix,
            )
            renditions.append(
                DerivedArtifact(
                    artifact_type=ArtifactType.COMPRESSED,
                    data=encoded,
                    format=self.options.output_format,
                    width=tier.width or video.get("width"),
                    height=tier.height or video.get("height"),
                    duration=metadata.get("duration"),
                    quality=tier.name,
                    bitrate=tier.video_bitrate,
                    label=f"compressed_{tier.name}",
                )
            )
        return renditions

    def extract_frame(self, data: bytes, timestamp: float, file_name: str = "") -> bytes:
        width, height = self.options.thumbnail_size
        return self.toolkit.extract_frame(data, timestamp, width, height, get_extension(file_name))

    def convert_format(self, data: bytes, output_format: str, file_name: str = "") -> bytes:
        """Re-encode into ``mp4`` or ``webm`` with the format's default codecs."""
        if output_format not in ("mp4", "webm"):
            raise ValidationError(f"Unsupported output format: {output_format}", field="format")
        return self.toolkit.transcode(
            data, TranscodeSpec(output_format=output_format), get_extension(file_name)
        )
