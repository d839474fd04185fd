# tests/core/test_error_handling.py

import socket

import pytest
from unittest import mock

from botocore.exceptions import ClientError as BotocoreClientError, EndpointConnectionError

from media_pipeline.core.exceptions import (
    NotImplementedFormatError,
    ObjectNotFoundError,
    PipelineTimeoutError,
    ProcessCancelledError,
    ProcessingError,
    SecurityError,
    StorageError,
    UnsupportedTypeError,
    ValidationError,
)
from media_pipeline.core.error_handling import (
    BatchOperationContextManager,
    RetryPolicy,
    call_with_retry,
    is_retryable_error,
    is_transient_error,
)


def client_error(code):
    return BotocoreClientError({"Error": {"Code": code, "Message": "x"}}, "PutObject")


# --- Transient error classification ---

@pytest.mark.parametrize(
    "error",
    [
        StorageError("refused", code="ECONNREFUSED"),
        StorageError("dns", code="ENOTFOUND"),
        StorageError("flagged", transient=True),
        StorageError("throttled", code="SlowDown"),
        EndpointConnectionError(endpoint_url="https://s3.example.com"),
        ConnectionRefusedError("refused"),
        socket.gaierror("dns"),
        PipelineTimeoutError("slow"),
        client_error("ServiceUnavailable"),
    ],
)
def test_transient_errors(error):
    assert is_transient_error(error) is True


@pytest.mark.parametrize(
    "error",
    [
        ObjectNotFoundError("missing"),
        StorageError("denied", code="AccessDenied"),
        ValidationError("bad"),
        ValueError("bad"),
        client_error("NoSuchBucket"),
    ],
)
def test_non_transient_errors(error):
    assert is_transient_error(error) is False


def test_transient_detection_follows_cause():
    """A wrapped network error keeps its transient nature."""
    try:
        try:
            raise ConnectionResetError("reset")
        except ConnectionResetError as exc:
            raise StorageError("upload failed") from exc
    except StorageError as wrapped:
        assert is_transient_error(wrapped) is True


@pytest.mark.parametrize(
    "error, expected",
    [
        (ValidationError("bad"), False),
        (UnsupportedTypeError("x/y"), False),
        (SecurityError("traversal"), False),
        (NotImplementedFormatError("rar"), False),
        (ProcessCancelledError("cancelled"), False),
        (ProcessingError("decoder hiccup"), True),
        (PipelineTimeoutError("slow"), True),
        (RuntimeError("unexpected"), True),
    ],
)
def test_is_retryable_error(error, expected):
    assert is_retryable_error(error) is expected


# --- RetryPolicy ---

def test_retry_policy_exponential_delays():
    policy = RetryPolicy(max_attempts=4, delay=1.0, backoff_factor=2.0)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_retry_policy_caps_delay():
    policy = RetryPolicy(max_attempts=5, delay=1.0, backoff_factor=10.0, max_delay=5.0)
    assert policy.delay_for(3) == 5.0


def test_retry_policy_fixed():
    policy = RetryPolicy.fixed(retries=2, delay=0.5)
    assert policy.max_attempts == 3
    assert policy.delay_for(1) == policy.delay_for(2) == 0.5


def test_retry_policy_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


# --- call_with_retry ---

def test_call_with_retry_succeeds_after_failures():
    sleep = mock.Mock()
    func = mock.Mock(side_effect=[ProcessingError("1"), ProcessingError("2"), "ok"])
    retries = []

    result = call_with_retry(
        func,
        RetryPolicy(max_attempts=3, delay=0.1, backoff_factor=2.0),
        on_retry=lambda attempt, exc, wait: retries.append((attempt, wait)),
        sleep=sleep,
    )

    assert result == "ok"
    assert func.call_count == 3
    assert retries == [(1, 0.1), (2, 0.2)]
    assert sleep.call_args_list == [mock.call(0.1), mock.call(0.2)]


def test_call_with_retry_gives_up_after_max_attempts():
    func = mock.Mock(side_effect=ProcessingError("always"))
    with pytest.raises(ProcessingError, match="always"):
        call_with_retry(func, RetryPolicy(max_attempts=3, delay=0), sleep=mock.Mock())
    assert func.call_count == 3


def test_call_with_retry_does_not_retry_validation_errors():
    func = mock.Mock(side_effect=ValidationError("bad"))
    with pytest.raises(ValidationError):
        call_with_retry(func, RetryPolicy(max_attempts=5, delay=0), sleep=mock.Mock())
    assert func.call_count == 1


def test_call_with_retry_custom_predicate():
    func = mock.Mock(side_effect=StorageError("denied", code="AccessDenied"))
    with pytest.raises(StorageError):
        call_with_retry(
            func,
            RetryPolicy(max_attempts=3, delay=0),
            should_retry=is_transient_error,
            sleep=mock.Mock(),
        )
    assert func.call_count == 1


def test_call_with_retry_logs_warnings():
    logger = mock.Mock()
    func = mock.Mock(side_effect=[ProcessingError("once"), 1])
    call_with_retry(func, RetryPolicy(max_attempts=2, delay=0), sleep=mock.Mock(), operation_name="probe", logger=logger)
    assert "probe" in logger.warning.call_args[0][0]


# --- BatchOperationContextManager ---

def test_batch_context_manager_collects_errors():
    with mock.patch("logging.Logger.error") as mock_error:
        with BatchOperationContextManager("Batch processing") as batch:
            batch.add_error("boom", "a.jpg")
            batch.add_error("bang", "b.jpg")
    assert len(batch.errors) == 2
    assert batch.errors[0] == {"item": "a.jpg", "error": "boom"}
    assert mock_error.call_count == 2


def test_batch_context_manager_propagates_unhandled():
    with pytest.raises(RuntimeError):
        with BatchOperationContextManager("Batch processing"):
            raise RuntimeError("unexpected")
