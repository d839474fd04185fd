"""Tests for processor options and environment-driven settings."""

import os

import pytest
from pydantic import ValidationError as PydanticValidationError

from media_pipeline.core.config import (
    ArchiveOptions,
    AudioOptions,
    OrchestratorOptions,
    PipelineSettings,
    VideoOptions,
    get_settings,
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No MEDIA_PIPELINE_ variables and no .env file in the working directory."""
    for name in list(os.environ):
        if name.startswith("MEDIA_PIPELINE_") or name == "FILE_ENCRYPTION_KEY":
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestProcessorOptions:
    """Defaults of the per-processor option models."""

    def test_video_tiers(self):
        tiers = VideoOptions().quality_tiers
        assert [(t.name, t.video_bitrate, t.height) for t in tiers] == [
            ("low", "500k", 360),
            ("medium", "1000k", 720),
            ("high", "2000k", None),
        ]

    def test_audio_tiers(self):
        tiers = AudioOptions().quality_tiers
        assert [(t.name, t.bitrate, t.sample_rate) for t in tiers] == [
            ("low", "64k", 22050),
            ("medium", "128k", 44100),
            ("high", "320k", 48000),
        ]

    def test_archive_extensions_normalized(self):
        options = ArchiveOptions(allowed_extensions=["TXT", ".Pdf"])
        assert options.allowed_extensions == [".txt", ".pdf"]
        assert ArchiveOptions().max_files == 10_000

    def test_orchestrator_bounds(self):
        with pytest.raises(PydanticValidationError):
            OrchestratorOptions(max_concurrent_processes=0)
        with pytest.raises(PydanticValidationError):
            OrchestratorOptions(processing_timeout=0)


class TestPipelineSettings:
    """Tests for PipelineSettings."""

    def test_defaults(self, clean_env):
        settings = PipelineSettings()
        assert settings.storage_provider == "local"
        assert settings.failover_providers == []
        assert settings.encryption_key is None
        assert settings.max_concurrent_processes == 3

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("MEDIA_PIPELINE_STORAGE_PROVIDER", "s3")
        clean_env.setenv("MEDIA_PIPELINE_S3_BUCKET", "media-bucket")
        clean_env.setenv("MEDIA_PIPELINE_FAILOVER_PROVIDERS", '["local", "memory"]')
        clean_env.setenv("MEDIA_PIPELINE_MAX_CONCURRENT_PROCESSES", "5")
        clean_env.setenv("FILE_ENCRYPTION_KEY", "top-secret")

        settings = PipelineSettings()

        assert settings.storage_provider == "s3"
        assert settings.failover_providers == ["local", "memory"]
        assert settings.max_concurrent_processes == 5
        assert settings.encryption_key == "top-secret"
        assert settings.adapter_kwargs("s3")["bucket"] == "media-bucket"

    def test_dotenv_file(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("MEDIA_PIPELINE_KEY_PREFIX=ingest\n")
        assert PipelineSettings().key_prefix == "ingest"

    def test_derived_option_models(self, clean_env):
        settings = PipelineSettings(
            processing_retry_attempts=4,
            storage_retry_attempts=6,
            enable_compression=True,
            FILE_ENCRYPTION_KEY="k",
        )
        assert settings.orchestrator_options().retry_attempts == 4
        manager_options = settings.storage_manager_options()
        assert manager_options.retry_attempts == 6
        assert manager_options.default_provider == "local"
        adapter_config = settings.adapter_config()
        assert adapter_config.enable_compression is True
        assert adapter_config.encryption_key == "k"
        assert settings.adapter_kwargs("local") == {"base_path": "./storage"}
        assert settings.adapter_kwargs("memory") == {}

    def test_get_settings_cached(self, clean_env):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
