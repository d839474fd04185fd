"""Structured log contexts and in-process metrics for the media pipeline."""

import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .logging_config import get_logger


@dataclass(frozen=True)
class LogContext:
    """
    Correlation data attached to a log line.

    ``correlation_id`` is the process id for orchestrator work and the storage
    key for storage work, so one grep follows a file through the pipeline.
    """

    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    operation: str = ""
    component: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_operation(self, operation: str) -> "LogContext":
        return replace(self, operation=operation, metadata=dict(self.metadata))

    def with_metadata(self, **kwargs) -> "LogContext":
        return replace(self, metadata={**self.metadata, **kwargs})


def render_message(message: str, context: Optional[LogContext], extra: Dict[str, Any]) -> str:
    """``[operation] [correlation] message (k=v, ...)``"""
    fields = dict(context.metadata) if context else {}
    fields.update(extra)
    prefix = ""
    if context is not None:
        prefix = f"[{context.correlation_id}] "
        if context.operation:
            prefix = f"[{context.operation}] {prefix}"
    suffix = ""
    if fields:
        suffix = " (" + ", ".join(f"{k}={v}" for k, v in fields.items()) + ")"
    return f"{prefix}{message}{suffix}"


class StructuredLogger:
    """Pipeline logger that folds a LogContext and keyword fields into the message."""

    def __init__(self, name: str, level: Optional[int] = None):
        self._logger = get_logger(name)
        if level is not None:
            self._logger.setLevel(level)

    @property
    def name(self) -> str:
        return self._logger.name

    def _emit(self, method: str, message: str, context: Optional[LogContext], **kwargs) -> None:
        getattr(self._logger, method)(render_message(message, context, kwargs))

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._emit("debug", message, context, **kwargs)

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._emit("info", message, context, **kwargs)

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._emit("warning", message, context, **kwargs)

    def error(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._emit("error", message, context, **kwargs)


@dataclass
class PerformanceMetrics:
    """Timing record for one pipeline operation."""

    operation: str
    start_time: float
    end_time: float
    success: bool
    error_message: Optional[str] = None
    processor_type: Optional[str] = None
    size: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000


class MetricsCollector:
    """Bounded, thread-safe history of PerformanceMetrics."""

    def __init__(self, max_records: int = 10000):
        self._metrics: List[PerformanceMetrics] = []
        self._max_records = max_records
        self._lock = threading.Lock()

    def record_metric(self, metric: PerformanceMetrics) -> None:
        with self._lock:
            self._metrics.append(metric)
            overflow = len(self._metrics) - self._max_records
            if overflow > 0:
                del self._metrics[:overflow]

    def get_metrics(self, operation: Optional[str] = None) -> List[PerformanceMetrics]:
        with self._lock:
            return [m for m in self._metrics if operation is None or m.operation == operation]

    def get_summary(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """
        Aggregate the recorded history.

        Returns an empty dict when nothing matches. Durations are in seconds;
        ``by_processor`` counts records per processor type.
        """
        metrics = self.get_metrics(operation)
        if not metrics:
            return {}

        durations = [m.duration for m in metrics]
        succeeded = sum(1 for m in metrics if m.success)
        return {
            "total_operations": len(metrics),
            "successful_operations": succeeded,
            "failed_operations": len(metrics) - succeeded,
            "success_rate": succeeded / len(metrics),
            "avg_duration": sum(durations) / len(durations),
            "min_duration": min(durations),
            "max_duration": max(durations),
            "total_duration": sum(durations),
            "total_bytes": sum(m.size for m in metrics),
            "by_processor": dict(Counter(m.processor_type for m in metrics if m.processor_type)),
        }

    def clear_metrics(self) -> None:
        with self._lock:
            self._metrics.clear()


@dataclass
class OperationStats:
    """Running totals for one named operation."""

    count: int = 0
    total_size: int = 0
    total_duration: float = 0.0
    errors: int = 0

    @property
    def avg_duration(self) -> float:
        return self.total_duration / self.count if self.count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "total_size": self.total_size,
            "total_duration": self.total_duration,
            "avg_duration": self.avg_duration,
            "errors": self.errors,
        }


class OperationCounters:
    """Per-operation counters (count, bytes, duration, errors) under a lock."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = threading.Lock()

    def record(
        self,
        operation: str,
        duration: float,
        size: int = 0,
        success: bool = True,
    ) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.count += 1
            stats.total_duration += duration
            stats.total_size += size
            if not success:
                stats.errors += 1

    def get(self, operation: str) -> OperationStats:
        with self._lock:
            stats = self._stats.get(operation, OperationStats())
            return OperationStats(
                count=stats.count,
                total_size=stats.total_size,
                total_duration=stats.total_duration,
                errors=stats.errors,
            )

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: stats.to_dict() for name, stats in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


def log_operation_start(
    operation: str,
    logger: StructuredLogger,
    context: Optional[LogContext] = None,
    **metadata,
) -> LogContext:
    """Log ``Starting <operation>`` and return the context for the matching end call."""
    started = (context or LogContext()).with_operation(operation).with_metadata(**metadata)
    logger.info(f"Starting {operation}", started)
    return started


def log_operation_end(
    operation: str,
    logger: StructuredLogger,
    context: LogContext,
    success: bool = True,
    error_message: Optional[str] = None,
    **metadata,
) -> None:
    finished = context.with_metadata(**metadata) if metadata else context
    if success:
        logger.info(f"Completed {operation}", finished)
    else:
        logger.error(f"Failed {operation}: {error_message}", finished)
