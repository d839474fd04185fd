"""Tests for logging_config.py and observability helpers."""

import os
import sys
import logging
from unittest.mock import patch

from media_pipeline.core.logging_config import (
    ROOT_LOGGER_NAME,
    get_logger,
    resolve_level,
    set_log_level,
    setup_logger,
)
from media_pipeline.core.observability import (
    LogContext,
    MetricsCollector,
    OperationCounters,
    PerformanceMetrics,
    StructuredLogger,
    log_operation_end,
    log_operation_start,
    render_message,
)
from media_pipeline.testing.fakes import FakeLogger


class TestSetupLogger:
    """Tests for setup_logger function."""

    def test_setup_logger_default_parameters(self):
        """Test setup_logger with default parameters."""
        with patch.dict(os.environ, {"LOG_LEVEL": "INFO"}):
            test_logger = setup_logger()
        assert test_logger.name == "media-pipeline"
        assert test_logger.level == logging.INFO
        assert len(test_logger.handlers) == 1
        assert not test_logger.propagate

    def test_setup_logger_custom_level_by_parameter(self):
        """Test setup_logger with custom level via parameter."""
        test_logger = setup_logger(name="test-level-param", level="DEBUG")
        assert test_logger.level == logging.DEBUG

    def test_setup_logger_custom_level_by_env_var(self):
        """Test setup_logger with custom level via environment variable."""
        with patch.dict(os.environ, {"LOG_LEVEL": "WARNING"}):
            test_logger = setup_logger(name="test-env-level")
            assert test_logger.level == logging.WARNING

    def test_setup_logger_invalid_level_defaults_to_info(self):
        """Test setup_logger with invalid level defaults to INFO."""
        test_logger = setup_logger(name="test-invalid-level", level="INVALID_LEVEL")
        assert test_logger.level == logging.INFO

    def test_setup_logger_structured_format(self):
        """Test setup_logger with structured format."""
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("LOG_FORMAT", None)
            test_logger = setup_logger(name="test-structured", format_type="structured")
        format_string = test_logger.handlers[0].formatter._fmt
        assert "%(asctime)s" in format_string
        assert "%(filename)s" in format_string
        assert "%(lineno)d" in format_string
        assert "%(funcName)s" in format_string

    def test_setup_logger_env_format_override(self):
        """Test setup_logger format override via environment variable."""
        with patch.dict(os.environ, {"LOG_FORMAT": "simple"}):
            test_logger = setup_logger(name="test-env-format", format_type="structured")
            format_string = test_logger.handlers[0].formatter._fmt
            assert "%(filename)s" not in format_string

    def test_setup_logger_no_duplicate_handlers(self):
        """Test that setup_logger doesn't add duplicate handlers."""
        test_logger1 = setup_logger(name="test-no-duplicates")
        test_logger2 = setup_logger(name="test-no-duplicates")
        assert test_logger1 is test_logger2
        assert len(test_logger1.handlers) == 1

    def test_setup_logger_handler_uses_stdout(self):
        """Test that logger handler uses stdout."""
        test_logger = setup_logger(name="test-stdout")
        assert test_logger.handlers[0].stream is sys.stdout


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_default_name(self):
        assert get_logger().name == ROOT_LOGGER_NAME

    def test_get_logger_component_is_namespaced(self):
        """Component loggers live under the pipeline root."""
        assert get_logger("storage.local").name == "media-pipeline.storage.local"

    def test_get_logger_already_namespaced(self):
        assert get_logger("media-pipeline.cli").name == "media-pipeline.cli"

    def test_get_logger_returns_configured_logger(self):
        test_logger = get_logger("test-configured")
        assert len(test_logger.handlers) == 1
        assert not test_logger.propagate


class TestLogLevels:
    """Tests for level resolution and process-wide overrides."""

    def test_resolve_level_order(self):
        assert resolve_level(logging.ERROR) == logging.ERROR
        assert resolve_level("warning") == logging.WARNING
        with patch.dict(os.environ, {"LOG_LEVEL": "ERROR"}):
            assert resolve_level() == logging.ERROR

    def test_set_log_level_reaches_existing_and_new_loggers(self):
        existing = get_logger("test-override-existing")
        try:
            set_log_level("DEBUG")
            assert existing.level == logging.DEBUG
            assert get_logger("test-override-new").level == logging.DEBUG
        finally:
            set_log_level(None)
        assert existing.level == resolve_level()

    def test_existing_logger_keeps_level_without_explicit_override(self):
        first = setup_logger(name="test-keep-level", level="ERROR")
        again = setup_logger(name="test-keep-level")
        assert again is first
        assert again.level == logging.ERROR


class TestLogContext:
    """Tests for LogContext."""

    def test_with_operation_keeps_correlation_id(self):
        context = LogContext(correlation_id="proc_1", component="orchestrator")
        derived = context.with_operation("process_file")
        assert derived.correlation_id == "proc_1"
        assert derived.operation == "process_file"
        assert derived.component == "orchestrator"

    def test_with_metadata_does_not_mutate_original(self):
        context = LogContext(metadata={"a": 1})
        derived = context.with_metadata(b=2)
        assert context.metadata == {"a": 1}
        assert derived.metadata == {"a": 1, "b": 2}


class TestStructuredLogger:
    """Tests for StructuredLogger formatting."""

    def test_message_includes_context(self):
        logger = StructuredLogger("test-structured-logger")
        context = LogContext(correlation_id="proc_42", operation="upload", metadata={"key": "a/b"})
        with patch.object(logger._logger, "info") as mock_info:
            logger.info("Stored", context, size=10)
        message = mock_info.call_args[0][0]
        assert message.startswith("[upload] [proc_42] Stored")
        assert "key=a/b" in message
        assert "size=10" in message

    def test_render_message_without_context(self):
        assert render_message("Stored", None, {"size": 3}) == "Stored (size=3)"
        assert render_message("Stored", None, {}) == "Stored"

    def test_message_without_context(self):
        logger = StructuredLogger("test-structured-plain")
        with patch.object(logger._logger, "warning") as mock_warning:
            logger.warning("Plain")
        mock_warning.assert_called_once_with("Plain")

    def test_operation_start_and_end(self):
        logger = StructuredLogger("test-operation-log")
        with patch.object(logger._logger, "info") as mock_info, patch.object(logger._logger, "error") as mock_error:
            context = log_operation_start("process_file", logger, LogContext(correlation_id="p1"), file="a.jpg")
            log_operation_end("process_file", logger, context, success=False, error_message="boom")
        assert context.operation == "process_file"
        assert "Starting process_file" in mock_info.call_args[0][0]
        assert "Failed process_file: boom" in mock_error.call_args[0][0]


class TestMetrics:
    """Tests for MetricsCollector and OperationCounters."""

    def test_summary(self):
        collector = MetricsCollector()
        collector.record_metric(PerformanceMetrics("process", 0.0, 1.0, True, processor_type="image", size=10))
        collector.record_metric(PerformanceMetrics("process", 0.0, 3.0, False, "boom", processor_type="video", size=5))
        collector.record_metric(PerformanceMetrics("upload", 0.0, 1.0, True))

        summary = collector.get_summary("process")

        assert summary["total_operations"] == 2
        assert summary["failed_operations"] == 1
        assert summary["success_rate"] == 0.5
        assert summary["avg_duration"] == 2.0
        assert summary["total_bytes"] == 15
        assert summary["by_processor"] == {"image": 1, "video": 1}
        assert collector.get_summary()["total_operations"] == 3
        assert collector.get_summary("missing") == {}

    def test_collector_caps_records(self):
        collector = MetricsCollector(max_records=3)
        for i in range(5):
            collector.record_metric(PerformanceMetrics(f"op{i}", 0.0, 1.0, True))
        assert [m.operation for m in collector.get_metrics()] == ["op2", "op3", "op4"]
        collector.clear_metrics()
        assert collector.get_metrics() == []

    def test_operation_counters(self):
        counters = OperationCounters()
        counters.record("upload", duration=0.5, size=100)
        counters.record("upload", duration=1.5, size=50, success=False)

        stats = counters.get("upload")
        assert stats.count == 2
        assert stats.total_size == 150
        assert stats.errors == 1
        assert stats.avg_duration == 1.0
        assert counters.snapshot()["upload"]["count"] == 2

        counters.reset()
        assert counters.get("upload").count == 0


class TestFakeLoggerContext:
    """FakeLogger records LogContext fields."""

    def test_context_fields_recorded(self):
        logger = FakeLogger()
        logger.info("hello", LogContext(correlation_id="c1", operation="op", metadata={"k": "v"}))
        entry = logger.get_logs("INFO")[0]
        assert entry["correlation_id"] == "c1"
        assert entry["operation"] == "op"
        assert entry["k"] == "v"
        assert entry["rendered"] == "[op] [c1] hello (k=v)"
