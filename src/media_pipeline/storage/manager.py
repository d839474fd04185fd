"""
Storage manager: adapter registry, retries, failover and health monitoring.

Every public operation goes through ``execute_with_retry``: the active
adapter is tried with exponential backoff; when the final error is transient
the manager fails over to the next connected adapter and tries exactly once
more, reverting to the original adapter if that also fails.
"""

import threading
import time
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from ..core.collaborators import NullEventNotifier, safe_emit
from ..core.config import StorageManagerOptions
from ..core.crypto import compute_content_hash
from ..core.error_handling import (
    RetryPolicy,
    call_with_retry,
    is_retryable_error,
    is_transient_error,
)
from ..core.exceptions import (
    ConfigurationError,
    ObjectNotFoundError,
    StorageError,
    StorageUnavailableError,
)
from ..core.keys import generate_storage_key
from ..core.logging_config import get_logger
from ..core.models import (
    ListOptions,
    ListPage,
    ObjectDescriptor,
    ProviderHealth,
    StorageObject,
    UploadOptions,
    UploadResult,
)
from ..core.observability import OperationCounters
from ..core.protocols import EventNotifier, PipelineEvent
from .base import StorageAdapter

T = TypeVar("T")

# Storage error codes another attempt cannot fix.
PERMANENT_STORAGE_CODES = frozenset({"AlreadyExists", "IntegrityError", "InvalidOperation", "NotConnected"})


class AdapterState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def is_retryable_storage_error(error: BaseException) -> bool:
    if isinstance(error, (ObjectNotFoundError, ConfigurationError)):
        return False
    if isinstance(error, StorageError) and error.code in PERMANENT_STORAGE_CODES:
        return False
    return is_retryable_error(error)


class StorageManager:
    """Fault-tolerant front for one or more storage adapters."""

    def __init__(
        self,
        adapters: Iterable[StorageAdapter] = (),
        options: Optional[StorageManagerOptions] = None,
        notifier: Optional[EventNotifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.options = options or StorageManagerOptions()
        self.notifier = notifier or NullEventNotifier()
        self.logger = get_logger("storage.manager")
        self._sleep = sleep
        self._adapters: "OrderedDict[str, StorageAdapter]" = OrderedDict()
        self._states: Dict[str, AdapterState] = {}
        self._health: Dict[str, ProviderHealth] = {}
        self._active: Optional[str] = None
        self._lock = threading.RLock()
        self._counters = OperationCounters()
        self._failovers = 0
        self._stop_event = threading.Event()
        self._monitor: Optional[threading.Thread] = None
        for adapter in adapters:
            self.register_adapter(adapter)

    # --- registry and lifecycle ---------------------------------------------

    def register_adapter(self, adapter: StorageAdapter) -> None:
        with self._lock:
            if adapter.name in self._adapters:
                raise ConfigurationError(f"Storage adapter already registered: {adapter.name}")
            self._adapters[adapter.name] = adapter
            self._states[adapter.name] = AdapterState.DISCONNECTED

    def get_adapter(self, name: str) -> StorageAdapter:
        try:
            return self._adapters[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown storage adapter: {name}") from exc

    def get_adapter_state(self, name: str) -> AdapterState:
        with self._lock:
            return self._states[name]

    def _connection_order(self) -> List[str]:
        names = list(self._adapters)
        preferred = self.options.default_provider
        if preferred in self._adapters:
            names.remove(preferred)
            names.insert(0, preferred)
        return names

    def _connect(self, name: str) -> bool:
        adapter = self._adapters[name]
        with self._lock:
            self._states[name] = AdapterState.CONNECTING
        try:
            adapter.connect()
        except Exception as exc:  # noqa: BLE001
            with self._lock:
                self._states[name] = AdapterState.FAILED
            self.logger.warning(f"Failed to connect storage adapter {name}: {exc}")
            return False
        with self._lock:
            self._states[name] = AdapterState.CONNECTED
        return True

    def initialize(self, start_monitoring: bool = True) -> None:
        """
        Connect the preferred adapter, falling back to the others in
        registration order until one connects. The rest stay disconnected
        until failover needs them.

        Raises:
            StorageUnavailableError: no adapter could be connected.
        """
        if not self._adapters:
            raise StorageUnavailableError("No storage adapters registered")

        active = next((name for name in self._connection_order() if self._connect(name)), None)
        if active is None:
            raise StorageUnavailableError("No storage adapter could be connected")

        with self._lock:
            self._active = active
        self.logger.info(f"Storage manager initialized: active={active}")
        if start_monitoring and self.options.health_check_interval > 0:
            self.start_health_monitoring()

    @property
    def active_adapter(self) -> StorageAdapter:
        with self._lock:
            if self._active is None:
                raise StorageUnavailableError("No active storage adapter")
            return self._adapters[self._active]

    def get_active_provider_name(self) -> Optional[str]:
        with self._lock:
            return self._active

    def _set_active(self, name: Optional[str]) -> None:
        with self._lock:
            self._active = name

    def shutdown(self) -> None:
        self.stop_health_monitoring()
        with self._lock:
            for name, adapter in self._adapters.items():
                if self._states[name] == AdapterState.CONNECTED:
                    try:
                        adapter.disconnect()
                    except Exception as exc:  # noqa: BLE001
                        self.logger.warning(f"Error disconnecting {name}: {exc}")
                self._states[name] = AdapterState.DISCONNECTED
            self._active = None
        self.logger.info("Storage manager shut down")

    # --- retry and failover -------------------------------------------------

    def perform_failover(self, reason: str = "") -> bool:
        """
        Switch to the next healthy adapter. Returns False when there is none.

        Adapters whose last health check failed are skipped.
        """
        with self._lock:
            current = self._active
            candidates = [
                name
                for name in self._adapters
                if name != current and (name not in self._health or self._health[name].healthy)
            ]

        for name in candidates:
            state = self.get_adapter_state(name)
            if state != AdapterState.CONNECTED and not self._connect(name):
                continue
            with self._lock:
                self._active = name
                self._failovers += 1
            self.logger.warning(f"Storage failover: {current} -> {name} ({reason})")
            safe_emit(
                self.notifier,
                PipelineEvent.FAILOVER_OCCURRED,
                {"from": current, "to": name, "reason": reason},
                self.logger,
            )
            return True

        self.logger.error(f"Storage failover from {current} failed: no usable adapter")
        return False

    def execute_with_retry(self, operation: Callable[[StorageAdapter], T], operation_name: str) -> T:
        """
        Run ``operation`` against the active adapter.

        The final error is re-raised unless it is transient and failover is
        enabled, in which case one attempt is made on the failover target.
        """
        original = self.get_active_provider_name()
        policy = RetryPolicy(
            max_attempts=self.options.retry_attempts,
            delay=self.options.retry_delay,
            backoff_factor=2.0,
        )
        try:
            return call_with_retry(
                lambda: operation(self.active_adapter),
                policy,
                should_retry=is_retryable_storage_error,
                sleep=self._sleep,
                operation_name=operation_name,
                logger=self.logger,
            )
        except Exception as exc:
            if not (self.options.enable_failover and is_transient_error(exc)):
                raise
            if not self.perform_failover(reason=f"{operation_name}: {exc}"):
                raise
            try:
                return operation(self.active_adapter)
            except Exception as failover_error:
                self.logger.error(
                    f"Operation '{operation_name}' failed after failover, reverting to {original}: "
                    f"{failover_error}"
                )
                self._set_active(original)
                raise failover_error from exc

    def _run(
        self,
        operation_name: str,
        operation: Callable[[StorageAdapter], T],
        size: int = 0,
        measure_result: bool = False,
    ) -> T:
        start = time.perf_counter()
        success = False
        try:
            result = self.execute_with_retry(operation, operation_name)
            success = True
            if measure_result:
                size = len(result)  # type: ignore[arg-type]
            return result
        finally:
            self._counters.record(
                operation_name, time.perf_counter() - start, size=size, success=success
            )

    # --- public operations --------------------------------------------------

    def upload(
        self,
        data: bytes,
        file_name: str,
        options: Optional[UploadOptions] = None,
        key: Optional[str] = None,
    ) -> StorageObject:
        """
        Store ``data`` and describe where it went.

        The key is generated once, before the first attempt, so retries and
        failover write to the same key.
        """
        options = options or UploadOptions()
        key = key or generate_storage_key(file_name, prefix=self.options.key_prefix)
        content_hash = compute_content_hash(data)
        used: Dict[str, str] = {}

        def attempt(adapter: StorageAdapter) -> UploadResult:
            used["provider"] = adapter.name
            return adapter.upload(data, key, options)

        result = self._run("upload", attempt, size=len(data))
        stored = StorageObject(
            key=result.key,
            size=len(data),
            content_hash=content_hash,
            etag=result.etag,
            location=result.location,
            provider=used["provider"],
            content_type=result.content_type,
            metadata=result.metadata,
        )
        self.logger.info(f"Stored {key} on {stored.provider} ({len(data)} bytes)")
        return stored

    def download(self, key: str) -> bytes:
        def attempt(adapter: StorageAdapter) -> bytes:
            return adapter.download(key)

        return self._run("download", attempt, measure_result=True)

    def delete(self, key: str) -> bool:
        return self._run("delete", lambda adapter: adapter.delete(key))

    def exists(self, key: str) -> bool:
        return self._run("exists", lambda adapter: adapter.exists(key))

    def get_metadata(self, key: str) -> ObjectDescriptor:
        return self._run("get_metadata", lambda adapter: adapter.get_metadata(key))

    def generate_presigned_url(self, key: str, operation: str = "get", expires_in: int = 3600) -> str:
        return self._run(
            "generate_presigned_url",
            lambda adapter: adapter.generate_presigned_url(key, operation, expires_in),
        )

    def copy(self, source_key: str, destination_key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        return self._run("copy", lambda adapter: adapter.copy(source_key, destination_key, options))

    def list(self, prefix: str = "", options: Optional[ListOptions] = None) -> ListPage:
        return self._run("list", lambda adapter: adapter.list(prefix, options))

    # --- health -------------------------------------------------------------

    def run_health_checks(self) -> Dict[str, ProviderHealth]:
        """Probe every connected adapter; fail over away from an unhealthy active one."""
        with self._lock:
            connected = [
                name for name, state in self._states.items() if state == AdapterState.CONNECTED
            ]
        results: Dict[str, ProviderHealth] = {}
        for name in connected:
            health = self._adapters[name].health_check()
            results[name] = health
            if not health.healthy:
                self.logger.warning(f"Storage provider {name} is unhealthy: {health.error}")
                safe_emit(
                    self.notifier,
                    PipelineEvent.PROVIDER_UNHEALTHY,
                    {"provider": name, "error": health.error},
                    self.logger,
                )

        with self._lock:
            self._health.update(results)
            active = self._active

        if active in results and not results[active].healthy and self.options.enable_failover:
            self.perform_failover(reason=f"health check: {results[active].error}")
        return results

    def _monitor_loop(self) -> None:
        while not self._stop_event.wait(self.options.health_check_interval):
            try:
                self.run_health_checks()
            except Exception as exc:  # noqa: BLE001
                self.logger.error(f"Health monitor iteration failed: {exc}")

    def start_health_monitoring(self) -> None:
        if self._monitor is not None and self._monitor.is_alive():
            return
        self._stop_event.clear()
        self._monitor = threading.Thread(
            target=self._monitor_loop, name="storage-health-monitor", daemon=True
        )
        self._monitor.start()

    def stop_health_monitoring(self) -> None:
        self._stop_event.set()
        if self._monitor is not None:
            self._monitor.join(timeout=5)
            self._monitor = None

    def health_check(self) -> Dict[str, Any]:
        results = self.run_health_checks()
        with self._lock:
            providers = {
                name: {
                    "state": self._states[name].value,
                    "status": results[name].status.value if name in results else None,
                    "latency_ms": results[name].latency_ms if name in results else None,
                    "error": results[name].error if name in results else None,
                }
                for name in self._adapters
            }
            active = self._active
        return {
            "active_provider": active,
            "healthy": active is not None and active in results and results[active].healthy,
            "providers": providers,
        }

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            failovers = self._failovers
            active = self._active
        return {
            "active_provider": active,
            "failovers": failovers,
            "operations": self._counters.snapshot(),
            "adapters": {name: adapter.get_metrics() for name, adapter in self._adapters.items()},
        }
