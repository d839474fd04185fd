"""ffprobe/ffmpeg wrapper operating on in-memory payloads."""

import json
import os
import subprocess
import tempfile
from typing import Any, Dict, List, Optional

from ..core.exceptions import ConfigurationError, ProcessingError
from ..core.logging_config import get_logger
from ..core.models import TranscodeSpec

# Encoder used when a TranscodeSpec leaves the codec open.
DEFAULT_AUDIO_CODECS = {
    "mp3": "libmp3lame",
    "ogg": "libvorbis",
    "wav": "pcm_s16le",
    "aac": "aac",
    "m4a": "aac",
    "flac": "flac",
}
DEFAULT_VIDEO_CODECS = {
    "mp4": ("libx264", "aac"),
    "webm": ("libvpx-vp9", "libvorbis"),
}


def parse_frame_rate(value: Optional[str]) -> Optional[float]:
    """``"30000/1001"`` -> 29.97; ``None`` for missing or zero denominators."""
    if not value:
        return None
    if "/" in value:
        numerator, denominator = value.split("/", 1)
        try:
            num, den = float(numerator), float(denominator)
        except ValueError:
            return None
        return round(num / den, 3) if den else None
    try:
        return float(value)
    except ValueError:
        return None


class FFmpegToolkit:
    """Runs ffprobe/ffmpeg on temporary files."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self.logger = get_logger("media_toolkit")

    def _run(self, args: List[str]) -> bytes:
        self.logger.debug(f"Running: {' '.join(args)}")
        try:
            completed = subprocess.run(
                args,
                check=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise ConfigurationError(f"Media tool not found: {args[0]}") from exc
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.decode("utf-8", errors="replace")[-500:] if exc.stderr else ""
            raise ProcessingError(f"{os.path.basename(args[0])} failed: {stderr.strip()}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ProcessingError(f"{os.path.basename(args[0])} timed out") from exc
        return completed.stdout

    def _with_files(self, data: bytes, suffix: str, output_name: Optional[str], build_args) -> bytes:
        with tempfile.TemporaryDirectory(prefix="media-pipeline-") as workdir:
            input_path = os.path.join(workdir, f"input{suffix}")
            with open(input_path, "wb") as handle:
                handle.write(data)
            output_path = os.path.join(workdir, output_name) if output_name else None
            stdout = self._run(build_args(input_path, output_path))
            if output_path is None:
                return stdout
            if not os.path.exists(output_path):
                raise ProcessingError("Media tool produced no output")
            with open(output_path, "rb") as handle:
                return handle.read()

    def probe(self, data: bytes, suffix: str = "") -> Dict[str, Any]:
        raw = self._with_files(
            data,
            suffix,
            None,
            lambda src, _: [
                self.ffprobe_path,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                src,
            ],
        )
        try:
            return json.loads(raw or b"{}")
        except json.JSONDecodeError as exc:
            raise ProcessingError(f"Unreadable probe output: {exc}") from exc

    def extract_frame(
        self, data: bytes, timestamp: float, width: int, height: int, suffix: str = ""
    ) -> bytes:
        return self._with_files(
            data,
            suffix,
            "frame.jpg",
            lambda src, dst: [
                self.ffmpeg_path, "-y",
                "-ss", f"{timestamp:.3f}",
                "-i", src,
                "-frames:v", "1",
                "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease",
                "-q:v", "2",
                dst,
            ],
        )

    def transcode(self, data: bytes, spec: TranscodeSpec, suffix: str = "") -> bytes:
        return self._with_files(
            data,
            suffix,
            f"output.{spec.output_format}",
            lambda src, dst: self._transcode_args(src, dst, spec),
        )

    def _transcode_args(self, src: str, dst: str, spec: TranscodeSpec) -> List[str]:
        args = [self.ffmpeg_path, "-y"]
        if spec.start is not None:
            args += ["-ss", f"{spec.start:.3f}"]
        args += ["-i", src]
        if spec.duration is not None:
            args += ["-t", f"{spec.duration:.3f}"]

        video_codec, audio_codec = spec.video_codec, spec.audio_codec
        if spec.output_format in DEFAULT_VIDEO_CODECS and not spec.no_video:
            default_video, default_audio = DEFAULT_VIDEO_CODECS[spec.output_format]
            video_codec = video_codec or default_video
            audio_codec = audio_codec or default_audio
        elif spec.output_format in DEFAULT_AUDIO_CODECS:
            audio_codec = audio_codec or DEFAULT_AUDIO_CODECS[spec.output_format]

        if spec.no_video:
            args.append("-vn")
        elif video_codec:
            args += ["-c:v", video_codec]
            if spec.video_bitrate:
                args += ["-b:v", spec.video_bitrate]
            if spec.width and spec.height:
                args += ["-vf", f"scale={spec.width}:{spec.height}:force_original_aspect_ratio=decrease,pad=ceil(iw/2)*2:ceil(ih/2)*2"]
        if spec.no_audio:
            args.append("-an")
        elif audio_codec:
            args += ["-c:a", audio_codec]
            if spec.audio_bitrate:
                args += ["-b:a", spec.audio_bitrate]
            if spec.sample_rate:
                args += ["-ar", str(spec.sample_rate)]
            if spec.channels:
                args += ["-ac", str(spec.channels)]
            if spec.audio_filter:
                args += ["-af", spec.audio_filter]
        if spec.output_format == "mp4":
            args += ["-movflags", "+faststart"]
        args.append(dst)
        return args

    def extract_pcm(self, data: bytes, sample_rate: int = 8000, suffix: str = "") -> bytes:
        return self._with_files(
            data,
            suffix,
            None,
            lambda src, _: [
                self.ffmpeg_path,
                "-v", "quiet",
                "-i", src,
                "-f", "s16le",
                "-acodec", "pcm_s16le",
                "-ac", "1",
                "-ar", str(sample_rate),
                "-",
            ],
        )

    def render_spectrogram(
        self, data: bytes, width: int, height: int, suffix: str = ""
    ) -> bytes:
        return self._with_files(
            data,
            suffix,
            "spectrogram.png",
            lambda src, dst: [
                self.ffmpeg_path, "-y",
                "-i", src,
                "-lavfi", f"showspectrumpic=s={width}x{height}",
                dst,
            ],
        )


def parse_bitrate(value: Any) -> int:
    """``"500k"`` -> 500000, ``"2M"`` -> 2000000, ``"128000"`` -> 128000."""
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower()
    multiplier = 1
    if text.endswith("k"):
        multiplier, text = 1000, text[:-1]
    elif text.endswith("m"):
        multiplier, text = 1_000_000, text[:-1]
    try:
        return int(float(text) * multiplier)
    except ValueError:
        return 0


def find_stream(probe: Dict[str, Any], codec_type: str) -> Optional[Dict[str, Any]]:
    for stream in probe.get("streams", []):
        if stream.get("codec_type") == codec_type:
            return stream
    return None


def probe_format(probe: Dict[str, Any]) -> Dict[str, Any]:
    """Container-level facts: duration, size, bitrate, format name, tags."""
    fmt = probe.get("format", {})
    try:
        duration = float(fmt.get("duration") or 0.0)
    except (TypeError, ValueError):
        duration = 0.0
    return {
        "duration": duration,
        "size": int(fmt.get("size") or 0),
        "bitrate": parse_bitrate(fmt.get("bit_rate")),
        "format_name": fmt.get("format_name", ""),
        "format_long_name": fmt.get("format_long_name", ""),
        "tags": dict(fmt.get("tags", {}) or {}),
    }
