"""Audio processor: probe, waveform, spectrogram, quality tiers, transcodes."""

import io
from typing import Any, Dict, List, Optional

import numpy as np
from PIL import Image, ImageDraw

from ..core.config import AudioOptions
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
from .media_toolkit import FFmpegToolkit, find_stream, parse_bitrate, probe_format

AUDIO_EXTENSIONS = {".mp3", ".wav", ".ogg", ".oga", ".aac", ".flac", ".m4a", ".opus", ".wma"}
WAVEFORM_SAMPLE_RATE = 8000

# ffprobe format names that count as "already in" an output format.
FORMAT_ALIASES = {
    "mp3": ("mp3",),
    "ogg": ("ogg",),
    "wav": ("wav",),
    "aac": ("aac", "adts"),
    "flac": ("flac",),
}


def waveform_peaks(pcm: bytes, samples: int) -> List[float]:
    """Peak absolute amplitude (0..1) for ``samples`` equal windows of PCM."""
    if samples <= 0:
        return []
    usable = len(pcm) - (len(pcm) % 2)
    audio = np.frombuffer(pcm[:usable], dtype="<i2").astype(np.float32) / 32768.0
    if audio.size == 0:
        return [0.0] * samples
    windows = np.array_split(np.abs(audio), min(samples, audio.size))
    peaks = [float(window.max()) if window.size else 0.0 for window in windows]
    if len(peaks) < samples:
        peaks.extend([0.0] * (samples - len(peaks)))
    return [round(min(peak, 1.0), 4) for peak in peaks]


def render_waveform(peaks: List[float], size: tuple, color: tuple) -> bytes:
    """Mirror-bar PNG of the peaks on a transparent background."""
    width, height = size
    image = Image.new("RGBA", (width, height), (255, 255, 255, 0))
    draw = ImageDraw.Draw(image)
    middle = height / 2
    if peaks:
        bar_width = width / len(peaks)
        for index, peak in enumerate(peaks):
            x = int(index * bar_width)
            half = max(1.0, peak * middle)
            draw.line([(x, middle - half), (x, middle + half)], fill=color + (255,), width=max(1, int(bar_width)))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def matches_format(format_name: str, output_format: str) -> bool:
    names = {name.strip() for name in format_name.lower().split(",") if name.strip()}
    return any(alias in names for alias in FORMAT_ALIASES.get(output_format, (output_format,)))


class AudioProcessor(Processor):
    """Audio stage backed by a media toolkit."""

    processor_type = ProcessorType.AUDIO

    def __init__(
        self,
        options: Optional[AudioOptions] = None,
        toolkit: Optional[MediaToolkit] = None,
    ):
        self.options = options or AudioOptions()
        self.toolkit = toolkit or FFmpegToolkit()
        super().__init__()

    def supports(self, mime_type: str, file_name: str = "") -> bool:
        if mime_type and mime_type.lower().startswith("audio/"):
            return True
        return get_extension(file_name) in AUDIO_EXTENSIONS

    def probe(self, data: bytes, file_name: str = "") -> Dict[str, Any]:
        raw = self.toolkit.probe(data, get_extension(file_name))
        metadata = probe_format(raw)
        stream = find_stream(raw, "audio")
        if stream is not None:
            metadata.update(
                {
                    "codec": stream.get("codec_name"),
                    "sample_rate": int(stream.get("sample_rate") or 0),
                    "channels": int(stream.get("channels") or 0),
                    "channel_layout": stream.get("channel_layout"),
                    "stream_bitrate": parse_bitrate(stream.get("bit_rate")),
                }
            )
            if not metadata["bitrate"]:
                metadata["bitrate"] = metadata["stream_bitrate"]
        metadata["has_audio"] = stream is not None
        return metadata

    def validate(self, data: bytes, options: ProcessOptions) -> None:
        self.check_size(data, self.options.max_file_size, "Audio")
        metadata = self.probe(data, options.file_name)

        if not metadata["has_audio"]:
            raise ValidationError("No audio stream found", field="streams")
        if metadata["duration"] > self.options.max_duration:
            raise ValidationError(
                f"Audio duration {metadata['duration']:.1f}s exceeds maximum {self.options.max_duration:.0f}s",
                field="duration",
            )
        if metadata["sample_rate"] < self.options.min_sample_rate:
            raise ValidationError(
                f"Sample rate {metadata['sample_rate']}Hz below minimum {self.options.min_sample_rate}Hz",
                field="sample_rate",
            )
        if not 1 <= metadata["channels"] <= self.options.max_channels:
            raise ValidationError(
                f"Channel count {metadata['channels']} outside 1..{self.options.max_channels}",
                field="channels",
            )

    def _process(self, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        suffix = get_extension(options.file_name)
        metadata = self.probe(data, options.file_name)
        artifacts: List[DerivedArtifact] = []

        if self.options.generate_waveform:
            waveform = self.generate_waveform(data, suffix)
            metadata["waveform"] = waveform.extra["samples"]
            artifacts.append(waveform)
        if self.options.generate_spectrogram:
            artifacts.append(self.generate_spectrogram(data, suffix))

        artifacts.extend(self.generate_quality_tiers(data, metadata, suffix))
        artifacts.extend(self.generate_transcodes(data, metadata, suffix))

        if self.options.normalize:
            artifacts.append(
                DerivedArtifact(
                    artifact_type=ArtifactType.NORMALIZED,
                    data=self.normalize_volume(data, self.options.target_loudness, options.file_name),
                    format="mp3",
                    duration=metadata["duration"],
                    label="normalized",
                    extra={"target_lufs": self.options.target_loudness},
                )
            )

        self.logger.debug(
            f"Processed audio {options.file_name}: {metadata['duration']:.1f}s, {len(artifacts)} artifacts"
        )
        return ProcessorOutput(metadata=metadata, artifacts=artifacts)

    def generate_waveform(self, data: bytes, suffix: str = "") -> DerivedArtifact:
        pcm = self.toolkit.extract_pcm(data, WAVEFORM_SAMPLE_RATE, suffix)
        peaks = waveform_peaks(pcm, self.options.waveform_samples)
        width, height = self.options.waveform_size
        return DerivedArtifact(
            artifact_type=ArtifactType.WAVEFORM,
            data=render_waveform(peaks, (width, height), self.options.waveform_color),
            format="png",
            width=width,
            height=height,
            label="waveform",
            extra={"samples": peaks},
        )

    def generate_spectrogram(self, data: bytes, suffix: str = "") -> DerivedArtifact:
        width, height = self.options.spectrogram_size
        return DerivedArtifact(
            artifact_type=ArtifactType.SPECTROGRAM,
            data=self.toolkit.render_spectrogram(data, width, height, suffix),
            format="png",
            width=width,
            height=height,
            label="spectrogram",
        )

    def generate_quality_tiers(
        self, data: bytes, metadata: Dict[str, Any], suffix: str = ""
    ) -> List[DerivedArtifact]:
        source_bitrate = metadata.get("bitrate", 0)
        renditions = []
        for tier in self.options.quality_tiers:
            target = parse_bitrate(tier.bitrate)
            if source_bitrate > 0 and target >= source_bitrate:
                self.logger.debug(f"Skipping {tier.name} tier: {target} >= source {source_bitrate}")
                continue
            encoded = self.toolkit.transcode(
                data,
                TranscodeSpec(
                    output_format="mp3",
                    audio_bitrate=tier.bitrate,
                    sample_rate=tier.sample_rate,
                    no_video=True,
                ),
                suffix,
            )
            renditions.append(
                DerivedArtifact(
                    artifact_type=ArtifactType.COMPRESSED,
                    data=encoded,
                    format="mp3",
                    duration=metadata.get("duration"),
                    quality=tier.name,
                    bitrate=tier.bitrate,
                    label=f"compressed_{tier.name}",
                    extra={"sample_rate": tier.sample_rate},
                )
            )
        return renditions

    def generate_transcodes(
        self, data: bytes, metadata: Dict[str, Any], suffix: str = ""
    ) -> List[DerivedArtifact]:
        format_name = metadata.get("format_name", "")
        transcodes = []
        for output_format in self.options.output_formats:
            if matches_format(format_name, output_format):
                continue
            encoded = self.toolkit.transcode(
                data, TranscodeSpec(output_format=output_format, no_video=True), suffix
            )
            transcodes.append(
                DerivedArtifact(
                    artifact_type=ArtifactType.TRANSCODED,
                    data=encoded,
                    format=output_format,
                    duration=metadata.get("duration"),
                    label=f"transcoded_{output_format}",
                )
            )
        return transcodes

    def extract_segment(
        self, data: bytes, start: float, duration: float, file_name: str = ""
    ) -> bytes:
        """Cut ``duration`` seconds starting at ``start`` into an mp3."""
        if start < 0 or duration <= 0:
            raise ValidationError("Segment start must be >= 0 and duration > 0", field="segment")
        return self.toolkit.transcode(
            data,
            TranscodeSpec(output_format="mp3", start=start, duration=duration, no_video=True),
            get_extension(file_name),
        )

    def normalize_volume(
        self, data: bytes, target_lufs: float = -23.0, file_name: str = ""
    ) -> bytes:
        """EBU R128 loudness normalization into an mp3."""
        return self.toolkit.transcode(
            data,
            TranscodeSpec(
                output_format="mp3",
                audio_filter=f"loudnorm=I={target_lufs}:TP=-1.5:LRA=11",
                no_video=True,
            ),
            get_extension(file_name),
        )
