"""Default implementations of the external collaborator protocols."""

import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from .logging_config import get_logger
from .models import LockGrant, StorageObject
from .protocols import EventNotifier


class NullEventNotifier:
    """Discards every event."""

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        return None


class LoggingEventNotifier:
    """Writes events to the log instead of a bus."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or get_logger("events")

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self._logger.info(f"event={event} payload={payload}")


def safe_emit(
    notifier: EventNotifier,
    event: str,
    payload: Dict[str, Any],
    logger: Optional[logging.Logger] = None,
) -> None:
    """Emit an event; delivery failures are logged and never propagate."""
    try:
        notifier.emit(str(event.value) if hasattr(event, "value") else event, payload)
    except Exception as exc:  # noqa: BLE001
        (logger or get_logger("events")).warning(
            f"Failed to deliver event {event}: {exc}"
        )


class NullMetadataStore:
    """Accepts descriptors and keeps nothing."""

    def save(self, key: str, descriptors: List[StorageObject]) -> None:
        return None


class NullDedupLock:
    """Always grants the lock."""

    def acquire(self, key: str, ttl: float) -> LockGrant:
        return LockGrant(acquired=True, token=uuid.uuid4().hex)

    def release(self, key: str, token: str) -> bool:
        return True


class InMemoryDedupLock:
    """Process-local lock table with TTL expiry and owner tokens."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._holders: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def acquire(self, key: str, ttl: float) -> LockGrant:
        now = self._clock()
        with self._lock:
            holder = self._holders.get(key)
            if holder is not None and holder[1] > now:
                return LockGrant(acquired=False)
            token = uuid.uuid4().hex
            self._holders[key] = (token, now + ttl)
            return LockGrant(acquired=True, token=token)

    def release(self, key: str, token: str) -> bool:
        with self._lock:
            holder = self._holders.get(key)
            if holder is None or holder[0] != token:
                return False
            del self._holders[key]
            return True

    def is_locked(self, key: str) -> bool:
        with self._lock:
            holder = self._holders.get(key)
            return holder is not None and holder[1] > self._clock()
