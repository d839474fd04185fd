"""Unit tests for the audio processor."""

import io

import numpy as np
import pytest
from PIL import Image

from media_pipeline.core.config import AudioOptions
from media_pipeline.core.exceptions import ValidationError
from media_pipeline.core.models import ArtifactType, ProcessOptions
from media_pipeline.processors.audio import (
    AudioProcessor,
    matches_format,
    render_waveform,
    waveform_peaks,
)
from media_pipeline.testing.fakes import FakeMediaToolkit, audio_probe, video_probe

AUDIO = b"ID3" + b"\x00" * 128


def options(file_name="song.mp3"):
    return ProcessOptions(file_name=file_name, mime_type="audio/mpeg", process_id="proc_audio")


def by_type(output, artifact_type):
    return [a for a in output.artifacts if a.artifact_type == artifact_type]


class TestWaveformHelpers:
    """Tests for waveform_peaks and render_waveform."""

    def test_peaks_normalized(self):
        pcm = (np.array([0, 16384, -32768, 8192], dtype="<i2")).tobytes()
        assert waveform_peaks(pcm, 2) == [0.5, 1.0]

    def test_peaks_padded_for_short_input(self):
        pcm = np.array([16384], dtype="<i2").tobytes()
        assert waveform_peaks(pcm, 3) == [0.5, 0.0, 0.0]

    def test_empty_pcm(self):
        assert waveform_peaks(b"", 4) == [0.0, 0.0, 0.0, 0.0]

    def test_render_size(self):
        png = render_waveform([0.1, 0.9, 0.5], (90, 40), (0, 0, 255))
        assert Image.open(io.BytesIO(png)).size == (90, 40)

    @pytest.mark.parametrize(
        "format_name, output_format, expected",
        [
            ("mp3", "mp3", True),
            ("ogg", "mp3", False),
            ("aac,adts", "aac", True),
            ("wav", "wav", True),
        ],
    )
    def test_matches_format(self, format_name, output_format, expected):
        assert matches_format(format_name, output_format) is expected


class TestAudioProcessor:
    """Tests for AudioProcessor with a fake toolkit."""

    def test_probe(self):
        metadata = AudioProcessor(toolkit=FakeMediaToolkit(audio_probe())).probe(AUDIO, "song.mp3")
        assert metadata["duration"] == 180.0
        assert metadata["codec"] == "mp3"
        assert metadata["sample_rate"] == 44100
        assert metadata["channels"] == 2
        assert metadata["bitrate"] == 320_000
        assert metadata["tags"] == {"title": "Test Tone"}
        assert metadata["has_audio"] is True

    def test_process_default_artifacts(self):
        toolkit = FakeMediaToolkit(audio_probe(bitrate=320_000, format_name="mp3"))
        output = AudioProcessor(toolkit=toolkit).process(AUDIO, options())

        (waveform,) = by_type(output, ArtifactType.WAVEFORM)
        assert len(waveform.extra["samples"]) == 1000
        assert output.metadata["waveform"] == waveform.extra["samples"]

        # 320k tier is not below the 320k source
        assert [a.quality for a in by_type(output, ArtifactType.COMPRESSED)] == ["low", "medium"]
        # Source already mp3
        assert [a.format for a in by_type(output, ArtifactType.TRANSCODED)] == ["ogg", "wav"]

    def test_low_bitrate_source_gets_fewer_tiers(self):
        toolkit = FakeMediaToolkit(audio_probe(bitrate=96_000))
        output = AudioProcessor(toolkit=toolkit).process(AUDIO, options())
        assert [a.quality for a in by_type(output, ArtifactType.COMPRESSED)] == ["low"]

    def test_optional_spectrogram_and_normalization(self):
        toolkit = FakeMediaToolkit(audio_probe())
        processor = AudioProcessor(
            AudioOptions(generate_spectrogram=True, normalize=True, generate_waveform=False, output_formats=[]),
            toolkit,
        )
        output = processor.process(AUDIO, options())
        assert len(by_type(output, ArtifactType.SPECTROGRAM)) == 1
        assert toolkit.calls_named("render_spectrogram")
        (normalized,) = by_type(output, ArtifactType.NORMALIZED)
        assert normalized.extra["target_lufs"] == -23.0
        spec = [call[1] for call in toolkit.calls_named("transcode") if call[1].audio_filter]
        assert spec[0].audio_filter.startswith("loudnorm=I=-23.0")

    def test_validate_rejects_missing_audio_stream(self):
        toolkit = FakeMediaToolkit(video_probe(with_audio=False))
        with pytest.raises(ValidationError, match="No audio stream"):
            AudioProcessor(toolkit=toolkit).validate(AUDIO, options())

    @pytest.mark.parametrize(
        "probe, field",
        [
            (audio_probe(duration=8000), "duration"),
            (audio_probe(sample_rate=4000), "sample_rate"),
            (audio_probe(channels=10), "channels"),
        ],
    )
    def test_validate_limits(self, probe, field):
        with pytest.raises(ValidationError) as excinfo:
            AudioProcessor(toolkit=FakeMediaToolkit(probe)).validate(AUDIO, options())
        assert excinfo.value.field == field

    def test_extract_segment(self):
        toolkit = FakeMediaToolkit(audio_probe())
        processor = AudioProcessor(toolkit=toolkit)
        processor.extract_segment(AUDIO, 10.0, 5.0, "song.mp3")
        spec = toolkit.calls_named("transcode")[0][1]
        assert (spec.start, spec.duration, spec.output_format) == (10.0, 5.0, "mp3")
        with pytest.raises(ValidationError):
            processor.extract_segment(AUDIO, -1.0, 5.0)

    def test_normalize_volume(self):
        toolkit = FakeMediaToolkit(audio_probe())
        AudioProcessor(toolkit=toolkit).normalize_volume(AUDIO, -16.0, "song.mp3")
        spec = toolkit.calls_named("transcode")[0][1]
        assert spec.audio_filter.startswith("loudnorm=I=-16.0")
        assert spec.no_video is True
