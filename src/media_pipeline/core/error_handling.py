# src/media_pipeline/core/error_handling.py

import logging
import socket
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

from botocore.exceptions import (
    ClientError as BotocoreClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from .exceptions import (
    NotImplementedFormatError,
    ProcessCancelledError,
    SecurityError,
    StorageError,
    UnsupportedTypeError,
    ValidationError,
)

T = TypeVar("T")

RETRYABLE_S3_ERROR_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "ServiceUnavailable",
    "InternalError",
)

# Network-level markers that make an error eligible for failover.
TRANSIENT_ERROR_MARKERS = (
    "ENOTFOUND",
    "ECONNREFUSED",
    "ECONNRESET",
    "ETIMEDOUT",
    "NetworkingError",
    "CredentialsError",
)

NON_RETRYABLE_ERRORS = (
    ValidationError,
    UnsupportedTypeError,
    SecurityError,
    NotImplementedFormatError,
    ProcessCancelledError,
)


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether a failure is a network/availability problem.

    Transient errors are the ones a different storage provider might not have:
    connection refusal, DNS failure, timeouts, throttling and credential
    problems.
    """
    if isinstance(error, StorageError):
        if error.transient:
            return True
        if error.code and (
            error.code in RETRYABLE_S3_ERROR_CODES
            or error.code in TRANSIENT_ERROR_MARKERS
        ):
            return True
        if error.__cause__ is not None and error.__cause__ is not error:
            return is_transient_error(error.__cause__)
        return False

    if isinstance(
        error,
        (
            EndpointConnectionError,
            ConnectTimeoutError,
            ReadTimeoutError,
            NoCredentialsError,
            ConnectionError,
            TimeoutError,
            socket.gaierror,
        ),
    ):
        return True

    if isinstance(error, BotocoreClientError):
        code = error.response.get("Error", {}).get("Code")
        return code in RETRYABLE_S3_ERROR_CODES

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in TRANSIENT_ERROR_MARKERS:
        return True
    return type(error).__name__ in TRANSIENT_ERROR_MARKERS


def is_retryable_error(error: BaseException) -> bool:
    """Errors that another attempt could plausibly fix."""
    return not isinstance(error, NON_RETRYABLE_ERRORS)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try an operation and how long to wait in between.

    ``max_attempts`` counts every call, the first one included. The wait
    before attempt ``n + 1`` is ``delay * backoff_factor ** (n - 1)``, capped
    at ``max_delay`` when set.
    """

    max_attempts: int = 3
    delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        wait = self.delay * (self.backoff_factor ** (attempt - 1))
        if self.max_delay is not None:
            wait = min(wait, self.max_delay)
        return wait

    @classmethod
    def fixed(cls, retries: int, delay: float) -> "RetryPolicy":
        """Policy with ``retries`` extra attempts and a constant delay."""
        return cls(max_attempts=retries + 1, delay=delay, backoff_factor=1.0)


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    operation_name: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Call ``func`` until it succeeds or the policy is exhausted.

    Args:
        func: Zero-argument callable performing one attempt.
        policy: Attempt count and delay schedule.
        should_retry: Predicate deciding whether an error may be retried.
        on_retry: Called as ``on_retry(attempt, error, delay)`` before sleeping.
        sleep: Sleep function, injectable for tests.
        operation_name: Name used in log messages.
        logger: Logger for retry messages.

    Returns:
        Whatever ``func`` returns on its first successful attempt.

    Raises:
        The last error raised by ``func`` once attempts are exhausted, or the
        first error ``should_retry`` rejects.
    """
    logger = logger or logging.getLogger(__name__)
    name = operation_name or getattr(func, "__name__", "operation")
    attempt = 0

    while True:
        attempt += 1
        try:
            return func()
        except Exception as exc:
            if not should_retry(exc):
                logger.debug(f"Operation '{name}' failed with non-retryable error: {exc}")
                raise
            if attempt >= policy.max_attempts:
                logger.error(
                    f"Operation '{name}' failed after {policy.max_attempts} attempts. Error: {exc}"
                )
                raise

            wait = policy.delay_for(attempt)
            logger.warning(
                f"Operation '{name}' failed. Attempt {attempt}/{policy.max_attempts}. "
                f"Retrying in {wait:.2f}s. Error: {exc}"
            )
            if on_retry is not None:
                on_retry(attempt, exc, wait)
            if wait > 0:
                sleep(wait)


class BatchOperationContextManager:
    """
    Context manager for batch operations to collect and summarize errors.
    """

    def __init__(self, operation_name: str = "Batch Operation"):
        self.operation_name = operation_name
        self.errors: List[Dict[str, Any]] = []
        self.logger = logging.getLogger(
            self.__class__.__module__ + "." + self.__class__.__name__
        )

    def __enter__(self) -> "BatchOperationContextManager":
        self.logger.info(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                item_identifier = error_detail.get("item", "Unknown item")
                error_message = error_detail.get("error", "Unknown error")
                self.logger.error(
                    f"  Error {i+1}/{len(self.errors)} for item '{item_identifier}': {error_message}"
                )
        elif exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )
        else:
            self.logger.info(f"{self.operation_name} completed successfully.")

        # Exceptions not reported through add_error propagate.
        return False

    def add_error(self, error_message: str, item_identifier: str = "Unknown item") -> None:
        """
        Report an error for a specific item from within the 'with' block.

        Args:
            error_message: The error message or exception string.
            item_identifier: A string identifying the item that failed (e.g., file name, key).
        """
        self.errors.append({"item": item_identifier, "error": str(error_message)})
        self.logger.debug(
            f"Error added for item '{item_identifier}' in {self.operation_name}: {error_message}"
        )
