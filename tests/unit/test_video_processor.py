"""Unit tests for the video processor."""

import pytest

from media_pipeline.core.config import VideoOptions
from media_pipeline.core.exceptions import ValidationError
from media_pipeline.core.models import ArtifactType, ProcessOptions
from media_pipeline.processors.video import (
    VideoProcessor,
    preview_window,
    thumbnail_timestamps,
    tier_applies,
)
from media_pipeline.core.config import VideoQualityTier
from media_pipeline.testing.fakes import FakeMediaToolkit, video_probe

VIDEO = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64


def options(file_name="clip.mp4"):
    return ProcessOptions(file_name=file_name, mime_type="video/mp4", process_id="proc_video")


def artifacts_of(output, artifact_type):
    return [a for a in output.artifacts if a.artifact_type == artifact_type]


class TestTimingHelpers:
    """Tests for thumbnail and preview timing."""

    def test_thumbnails_evenly_spaced(self):
        assert thumbnail_timestamps(120.0, 3) == [30.0, 60.0, 90.0]

    def test_zero_duration_single_thumbnail(self):
        assert thumbnail_timestamps(0.0, 3) == [0.0]

    def test_no_thumbnails_requested(self):
        assert thumbnail_timestamps(120.0, 0) == []

    def test_preview_window(self):
        assert preview_window(120.0, 30.0) == (12.0, 30.0)

    def test_preview_window_short_video(self):
        """Preview never exceeds 80% of the source."""
        assert preview_window(10.0, 30.0) == (1.0, 8.0)

    def test_no_preview_without_duration(self):
        assert preview_window(0.0, 30.0) is None


class TestTierSelection:
    """Tests for tier_applies."""

    def test_tier_below_source_applies(self):
        tier = VideoQualityTier(name="low", video_bitrate="500k", audio_bitrate="64k", width=640, height=360)
        assert tier_applies(tier, 5_000_000, 1920, 1080)

    def test_tier_at_or_above_source_bitrate_skipped(self):
        tier = VideoQualityTier(name="medium", video_bitrate="1000k", audio_bitrate="128k")
        assert not tier_applies(tier, 1_000_000, 1920, 1080)
        assert not tier_applies(tier, 800_000, 1920, 1080)

    def test_tier_not_smaller_than_source_resolution_skipped(self):
        tier = VideoQualityTier(name="low", video_bitrate="500k", audio_bitrate="64k", width=640, height=360)
        assert not tier_applies(tier, 5_000_000, 640, 360)

    def test_unknown_source_bitrate(self):
        tier = VideoQualityTier(name="high", video_bitrate="2000k", audio_bitrate="192k")
        assert tier_applies(tier, 0, None, None)


class TestVideoProcessor:
    """Tests for VideoProcessor with a fake toolkit."""

    def test_probe_metadata(self):
        processor = VideoProcessor(toolkit=FakeMediaToolkit(video_probe()))
        metadata = processor.probe(VIDEO, "clip.mp4")
        assert metadata["duration"] == 120.0
        assert metadata["video"]["width"] == 1920
        assert metadata["video"]["fps"] == 30.0
        assert metadata["video"]["bitrate"] == 5_000_000
        assert metadata["audio"]["sample_rate"] == 48000

    def test_two_minute_video(self):
        """Thumbnails at 30/60/90s and a 30s preview starting 10% in."""
        toolkit = FakeMediaToolkit(video_probe(duration=120.0))
        output = VideoProcessor(toolkit=toolkit).process(VIDEO, options())

        thumbnails = artifacts_of(output, ArtifactType.THUMBNAIL)
        assert [t.timestamp for t in thumbnails] == [30.0, 60.0, 90.0]
        assert [call[1] for call in toolkit.calls_named("extract_frame")] == [30.0, 60.0, 90.0]

        (preview,) = artifacts_of(output, ArtifactType.PREVIEW)
        assert preview.duration == 30.0
        assert preview.timestamp == 12.0
        assert preview.format == "mp4"

    def test_all_tiers_for_high_bitrate_source(self):
        output = VideoProcessor(toolkit=FakeMediaToolkit(video_probe())).process(VIDEO, options())
        assert [a.quality for a in artifacts_of(output, ArtifactType.COMPRESSED)] == ["low", "medium", "high"]

    def test_tiers_skipped_for_low_bitrate_source(self):
        toolkit = FakeMediaToolkit(video_probe(video_bitrate=800_000, width=1280, height=720))
        output = VideoProcessor(toolkit=toolkit).process(VIDEO, options())
        assert [a.quality for a in artifacts_of(output, ArtifactType.COMPRESSED)] == ["low"]

    def test_tiers_skipped_for_small_source(self):
        toolkit = FakeMediaToolkit(video_probe(width=640, height=360))
        output = VideoProcessor(toolkit=toolkit).process(VIDEO, options())
        assert [a.quality for a in artifacts_of(output, ArtifactType.COMPRESSED)] == ["high"]

    def test_zero_duration_video(self):
        toolkit = FakeMediaToolkit(video_probe(duration=0.0))
        output = VideoProcessor(toolkit=toolkit).process(VIDEO, options())
        thumbnails = artifacts_of(output, ArtifactType.THUMBNAIL)
        assert [t.timestamp for t in thumbnails] == [0.0]
        assert artifacts_of(output, ArtifactType.PREVIEW) == []

    def test_validate_rejects_audio_only(self):
        toolkit = FakeMediaToolkit({"format": {"duration": "10"}, "streams": [{"codec_type": "audio"}]})
        with pytest.raises(ValidationError, match="No video stream"):
            VideoProcessor(toolkit=toolkit).validate(VIDEO, options())

    def test_validate_rejects_long_video(self):
        processor = VideoProcessor(VideoOptions(max_duration=60), FakeMediaToolkit(video_probe(duration=61)))
        with pytest.raises(ValidationError) as excinfo:
            processor.validate(VIDEO, options())
        assert excinfo.value.field == "duration"

    def test_validate_rejects_large_resolution(self):
        processor = VideoProcessor(VideoOptions(max_width=1280, max_height=720), FakeMediaToolkit(video_probe()))
        with pytest.raises(ValidationError, match="resolution"):
            processor.validate(VIDEO, options())

    def test_convert_format(self):
        toolkit = FakeMediaToolkit()
        processor = VideoProcessor(toolkit=toolkit)
        assert processor.convert_format(VIDEO, "webm").startswith(b"webm")
        with pytest.raises(ValidationError):
            processor.convert_format(VIDEO, "gif")

    def test_extract_frame_uses_thumbnail_size(self):
        toolkit = FakeMediaToolkit()
        VideoProcessor(VideoOptions(thumbnail_size=(160, 90)), toolkit).extract_frame(VIDEO, 5.0, "clip.mp4")
        assert toolkit.calls_named("extract_frame") == [("extract_frame", 5.0, 160, 90)]
