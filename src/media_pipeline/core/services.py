"""Processing orchestration: single files, batches, tracking and cancellation."""

import secrets
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from typing import Any, Callable, Dict, List, Optional, Sequence

from .collaborators import NullEventNotifier, safe_emit
from .config import OrchestratorOptions
from .error_handling import (
    BatchOperationContextManager,
    RetryPolicy,
    call_with_retry,
    is_retryable_error,
)
from .exceptions import (
    MediaPipelineError,
    PipelineTimeoutError,
    ProcessAlreadyFinishedError,
    ProcessCancelledError,
    ProcessingFailedError,
    ProcessNotFoundError,
    SecurityError,
    UnsupportedTypeError,
    ValidationError,
    with_error_handling,
)
from .models import (
    ArchiveCreationResult,
    BatchError,
    BatchResult,
    ExtractedFile,
    FileInfo,
    FileInput,
    ProcessingResult,
    ProcessOptions,
    ProcessorOutput,
    ProcessorType,
    ProcessStatus,
    ProcessTrackerEntry,
)
from .observability import (
    LogContext,
    MetricsCollector,
    PerformanceMetrics,
    StructuredLogger,
    log_operation_end,
    log_operation_start,
)
from .protocols import EventNotifier, LoggerProtocol, PipelineEvent
from .routing import ContentTypeRouter

# Errors that leave process_file with their own type instead of being wrapped.
PASSTHROUGH_ERRORS = (
    ValidationError,
    UnsupportedTypeError,
    SecurityError,
    ProcessCancelledError,
)


def generate_process_id() -> str:
    return f"proc_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def generate_batch_id() -> str:
    return f"batch_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class ProcessTracker:
    """
    Lock-guarded table of in-flight and recently finished jobs.

    Terminal entries are dropped ``retention`` seconds after they finish; the
    pruning happens lazily on every access.
    """

    def __init__(self, retention: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self._retention = retention
        self._clock = clock
        self._entries: Dict[str, ProcessTrackerEntry] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def _prune(self) -> None:
        now = self._clock()
        expired = [
            process_id
            for process_id, entry in self._entries.items()
            if entry.is_terminal
            and entry.finished_at is not None
            and now - entry.finished_at >= self._retention
        ]
        for process_id in expired:
            del self._entries[process_id]

    def register(self, entry: ProcessTrackerEntry) -> None:
        with self._lock:
            self._prune()
            self._entries[entry.process_id] = entry

    def get(self, process_id: str) -> Optional[ProcessTrackerEntry]:
        with self._lock:
            self._prune()
            entry = self._entries.get(process_id)
            return entry.model_copy() if entry is not None else None

    def active(self) -> List[ProcessTrackerEntry]:
        with self._lock:
            self._prune()
            return [entry.model_copy() for entry in self._entries.values() if not entry.is_terminal]

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._entries)

    def update(self, process_id: str, **changes: Any) -> None:
        with self._lock:
            entry = self._entries.get(process_id)
            if entry is None or entry.is_terminal:
                return
            for field_name, value in changes.items():
                setattr(entry, field_name, value)

    def finish(self, process_id: str, status: ProcessStatus, duration_ms: float, error: Optional[str] = None) -> None:
        with self._lock:
            entry = self._entries.get(process_id)
            if entry is None:
                return
            if entry.status != ProcessStatus.CANCELLED.value:
                entry.status = status.value
            entry.duration_ms = duration_ms
            entry.error = error
            entry.finished_at = self._clock()

    def is_cancelled(self, process_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(process_id)
            return entry is not None and entry.status == ProcessStatus.CANCELLED.value

    def cancel(self, process_id: str) -> ProcessTrackerEntry:
        with self._lock:
            self._prune()
            entry = self._entries.get(process_id)
            if entry is None:
                raise ProcessNotFoundError(f"Process not found: {process_id}")
            if entry.is_terminal:
                raise ProcessAlreadyFinishedError(
                    f"Process {process_id} already finished with status {entry.status}"
                )
            now = self._clock()
            entry.status = ProcessStatus.CANCELLED.value
            entry.cancelled_at = now
            entry.finished_at = now
            return entry.model_copy()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class ProcessingOrchestrator:
    """
    Routes payloads to processors with timeouts, retries and batch limits.

    Every attempt runs ``validate`` then ``process`` in a dedicated worker
    thread so a hung processor is abandoned after ``processing_timeout``.
    Cancellation is cooperative: it is observed before the next attempt.
    """

    def __init__(
        self,
        router: ContentTypeRouter,
        options: Optional[OrchestratorOptions] = None,
        notifier: Optional[EventNotifier] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[LoggerProtocol] = None,
    ):
        self.router = router
        self.options = options or OrchestratorOptions()
        self.notifier = notifier or NullEventNotifier()
        self.tracker = ProcessTracker(self.options.tracker_retention, clock)
        self.metrics = MetricsCollector()
        self.logger = logger or StructuredLogger("orchestrator")
        self._sleep = sleep
        self._shutdown = False

    # --- single file -------------------------------------------------------

    def process_file(
        self,
        data: bytes,
        file_info: FileInfo,
        params: Optional[Dict[str, Any]] = None,
    ) -> ProcessingResult:
        """
        Route, validate and transform one payload.

        Raises:
            ValidationError, UnsupportedTypeError, SecurityError: rejected
                payloads, annotated with ``process_id`` and ``duration_ms``.
            ProcessingFailedError: every attempt failed; the last error is
                the ``__cause__``.
        """
        if self._shutdown:
            raise MediaPipelineError("Orchestrator has been shut down")

        process_id = generate_process_id()
        size = file_info.size if file_info.size is not None else len(data)
        start = time.perf_counter()
        self.tracker.register(
            ProcessTrackerEntry(
                process_id=process_id,
                file_name=file_info.file_name,
                mime_type=file_info.mime_type,
                size=size,
                start_time=self.tracker.now(),
            )
        )
        context = log_operation_start(
            "process_file",
            self.logger,
            LogContext(correlation_id=process_id, component="orchestrator"),
            file_name=file_info.file_name,
            mime_type=file_info.mime_type,
            size=size,
        )

        processor_type: Optional[ProcessorType] = None
        attempts = 0
        try:
            processor = self.router.route(file_info.mime_type, file_info.file_name)
            processor_type = processor.processor_type
            self.tracker.update(process_id, processor_type=processor_type)
            options = ProcessOptions(
                file_name=file_info.file_name,
                mime_type=file_info.mime_type,
                process_id=process_id,
                params=dict(params or {}),
            )

            def attempt() -> ProcessorOutput:
                nonlocal attempts
                if self.tracker.is_cancelled(process_id):
                    raise ProcessCancelledError(f"Process {process_id} was cancelled")
                attempts += 1
                self.tracker.update(process_id, attempts=attempts)
                return self._run_with_timeout(processor, data, options)

            def on_retry(attempt_number: int, error: BaseException, wait: float) -> None:
                self.tracker.update(process_id, status=f"retry_{attempt_number}")
                self.logger.warning(
                    f"Attempt {attempt_number} failed, retrying in {wait:.2f}s: {error}",
                    context,
                )

            output = call_with_retry(
                attempt,
                RetryPolicy.fixed(self.options.retry_attempts, self.options.retry_delay),
                should_retry=is_retryable_error,
                on_retry=on_retry,
                sleep=self._sleep,
                operation_name=f"process {file_info.file_name}",
            )
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            self.tracker.finish(process_id, ProcessStatus.FAILED, duration_ms, error=str(exc))
            self._record(process_id, start, False, processor_type, size, str(exc))
            log_operation_end(
                "process_file", self.logger, context, success=False, error_message=str(exc)
            )
            safe_emit(
                self.notifier,
                PipelineEvent.FILE_PROCESSING_FAILED,
                {
                    "process_id": process_id,
                    "file_name": file_info.file_name,
                    "processor_type": processor_type.value if processor_type else None,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "attempts": attempts,
                },
            )
            if isinstance(exc, PASSTHROUGH_ERRORS):
                exc.process_id = process_id
                exc.processor_type = processor_type.value if processor_type else None
                exc.duration_ms = duration_ms
                raise
            raise ProcessingFailedError(
                f"Processing failed for {file_info.file_name}: {exc}",
                process_id=process_id,
                processor_type=processor_type.value if processor_type else None,
                duration_ms=duration_ms,
                attempts=attempts,
            ) from exc

        duration_ms = (time.perf_counter() - start) * 1000
        self.tracker.finish(process_id, ProcessStatus.COMPLETED, duration_ms)
        self._record(process_id, start, True, processor_type, size)
        log_operation_end(
            "process_file",
            self.logger,
            context,
            artifacts=len(output.artifacts),
            duration_ms=round(duration_ms, 2),
        )

        result = ProcessingResult(
            process_id=process_id,
            processor_type=processor_type,
            file_name=file_info.file_name,
            mime_type=file_info.mime_type,
            size=size,
            metadata=output.metadata,
            artifacts=output.artifacts,
            text=output.text,
            processing_time_ms=duration_ms,
            attempts=attempts,
        )
        safe_emit(
            self.notifier,
            PipelineEvent.FILE_PROCESSED,
            {
                "process_id": process_id,
                "file_name": file_info.file_name,
                "processor_type": processor_type.value,
                "artifacts": len(result.artifacts),
                "processing_time_ms": duration_ms,
            },
        )
        return result

    def _run_with_timeout(self, processor, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        timeout = self.options.processing_timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"worker-{options.process_id}")
        try:
            future = executor.submit(self._execute, processor, data, options)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                if future.done():
                    raise
                future.cancel()
                raise PipelineTimeoutError(
                    f"Processing of {options.file_name} timed out after {timeout}s"
                ) from None
        finally:
            # A timed-out worker is abandoned, not joined.
            executor.shutdown(wait=False)

    @staticmethod
    @with_error_handling
    def _execute(processor, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        processor.validate(data, options)
        return processor.process(data, options)

    def _record(
        self,
        process_id: str,
        start: float,
        success: bool,
        processor_type: Optional[ProcessorType],
        size: int,
        error: Optional[str] = None,
    ) -> None:
        self.metrics.record_metric(
            PerformanceMetrics(
                operation="process_file",
                start_time=start,
                end_time=time.perf_counter(),
                success=success,
                error_message=error,
                processor_type=processor_type.value if processor_type else None,
                size=size,
                metadata={"process_id": process_id},
            )
        )

    # --- batches -----------------------------------------------------------

    def process_batch(
        self,
        files: Sequence[FileInput],
        params: Optional[Dict[str, Any]] = None,
    ) -> BatchResult:
        """
        Process many files, at most ``max_concurrent_processes`` at a time.

        Files are handled in chunks of that size; a failing file is recorded
        in ``errors`` and never affects its neighbours.
        """
        batch_id = generate_batch_id()
        start = time.perf_counter()
        chunk_size = self.options.max_concurrent_processes
        results: Dict[int, ProcessingResult] = {}
        errors: Dict[int, BatchError] = {}

        def run_one(index: int, item: FileInput) -> None:
            try:
                results[index] = self.process_file(item.data, item.info, params)
            except Exception as exc:  # noqa: BLE001
                errors[index] = BatchError(
                    file_name=item.info.file_name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    process_id=getattr(exc, "process_id", None),
                )
                batch.add_error(str(exc), item.info.file_name)

        with BatchOperationContextManager(f"Batch {batch_id}") as batch:
            for offset in range(0, len(files), chunk_size):
                chunk = list(enumerate(files[offset:offset + chunk_size], start=offset))
                if self.options.enable_parallel_processing and len(chunk) > 1:
                    with ThreadPoolExecutor(
                        max_workers=len(chunk), thread_name_prefix=f"{batch_id}-chunk"
                    ) as executor:
                        futures = [executor.submit(run_one, index, item) for index, item in chunk]
                        for future in as_completed(futures):
                            future.result()
                else:
                    for index, item in chunk:
                        run_one(index, item)

        result = BatchResult(
            batch_id=batch_id,
            total_files=len(files),
            success_count=len(results),
            error_count=len(errors),
            results=[results[index] for index in sorted(results)],
            errors=[errors[index] for index in sorted(errors)],
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )
        self.logger.info(
            f"Batch {batch_id} finished",
            total=result.total_files,
            succeeded=result.success_count,
            failed=result.error_count,
        )
        safe_emit(
            self.notifier,
            PipelineEvent.BATCH_COMPLETED,
            {
                "batch_id": batch_id,
                "total_files": result.total_files,
                "success_count": result.success_count,
                "error_count": result.error_count,
                "processing_time_ms": result.processing_time_ms,
            },
        )
        return result

    # --- archives ----------------------------------------------------------

    def create_archive(self, files: Sequence[ExtractedFile], archive_type: str = "zip") -> ArchiveCreationResult:
        processor = self.router.get(ProcessorType.ARCHIVE)
        if processor is None:
            raise UnsupportedTypeError(f"archive/{archive_type}")
        return processor.create_archive(list(files), archive_type)

    # --- tracking ----------------------------------------------------------

    def cancel_process(self, process_id: str) -> ProcessTrackerEntry:
        entry = self.tracker.cancel(process_id)
        self.logger.info(f"Process {process_id} cancelled", file_name=entry.file_name)
        return entry

    def get_process_info(self, process_id: str) -> Optional[ProcessTrackerEntry]:
        return self.tracker.get(process_id)

    def get_active_processes(self) -> List[ProcessTrackerEntry]:
        return self.tracker.active()

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "overview": self.metrics.get_summary("process_file"),
            "processors": {
                processor_type.value: processor.get_metrics()
                for processor_type, processor in self.router.processors.items()
            },
            "active_processes": len(self.tracker.active()),
        }

    def shutdown(self) -> None:
        self._shutdown = True
        active = self.tracker.active()
        for entry in active:
            try:
                self.tracker.cancel(entry.process_id)
            except (ProcessNotFoundError, ProcessAlreadyFinishedError):
                continue
        self.logger.info(f"Orchestrator shut down, {len(active)} active process(es) cancelled")
