# tests/core/test_error_handling.py

import pytest
from unittest import mock

from botocore.exceptions import ClientError, EndpointConnectionError

from item_images.core.exceptions import StorageError
from item_images.core.error_handling import (
    translate_storage_errors,
    retry_storage_operation,
    BatchOperationContextManager,
    RETRYABLE_STORAGE_ERROR_CODES,
)


def client_error(code, operation="PutObject"):
    return ClientError(
        error_response={"Error": {"Code": code, "Message": "Details"}},
        operation_name=operation,
    )


@pytest.fixture
def mock_logger():
    """Fixture to mock the logger used by the decorators."""
    # The decorators use logging.getLogger(func.__module__ + '.' + func.__name__)
    with mock.patch('logging.getLogger') as mock_get_logger:
        mock_log_instance = mock.Mock()
        mock_get_logger.return_value = mock_log_instance
        yield mock_log_instance


# --- Tests for @translate_storage_errors ---

def test_translate_storage_errors_wraps_client_error(mock_logger):
    """Test a botocore ClientError surfaces as StorageError."""
    @translate_storage_errors
    def put():
        raise client_error("AccessDenied")

    with pytest.raises(StorageError) as excinfo:
        put()

    assert "Storage operation failed in put" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, ClientError)
    mock_logger.error.assert_called_once()
    args, kwargs = mock_logger.error.call_args
    assert kwargs.get('exc_info') is True


def test_translate_storage_errors_wraps_botocore_error(mock_logger):
    """Test connection-level botocore errors are translated too."""
    @translate_storage_errors
    def put():
        raise EndpointConnectionError(endpoint_url="https://s3.test")

    with pytest.raises(StorageError):
        put()


def test_translate_storage_errors_passes_other_exceptions(mock_logger):
    """Test unrelated exceptions are not swallowed or wrapped."""
    @translate_storage_errors
    def put():
        raise KeyError("missing")

    with pytest.raises(KeyError):
        put()
    mock_logger.error.assert_not_called()


def test_translate_storage_errors_returns_value(mock_logger):
    """Test successful calls pass their result through."""
    @translate_storage_errors
    def put():
        return {"ETag": "x"}

    assert put() == {"ETag": "x"}


# --- Tests for @retry_storage_operation decorator ---

def test_retry_success_on_first_attempt(mock_logger):
    """Test @retry_storage_operation succeeds immediately if no error."""
    @retry_storage_operation(max_attempts=3, initial_delay=0.01)
    def func_succeeds():
        return "success"

    assert func_succeeds() == "success"
    mock_logger.info.assert_not_called()
    mock_logger.error.assert_not_called()


@mock.patch('time.sleep', return_value=None)
def test_retry_success_after_throttling(mock_time_sleep, mock_logger):
    """Test throttled operations are retried with exponential backoff."""
    op = mock.Mock(side_effect=[client_error("SlowDown"), client_error("ServiceUnavailable"), "success"])

    @retry_storage_operation(max_attempts=3, initial_delay=0.5, backoff_factor=2)
    @translate_storage_errors
    def func_to_retry():
        return op()

    assert func_to_retry() == "success"
    assert op.call_count == 3
    assert [c.args[0] for c in mock_time_sleep.call_args_list] == [0.5, 1.0]
    assert mock_logger.info.call_count == 2


@mock.patch('time.sleep', return_value=None)
def test_retry_gives_up_after_max_attempts(mock_time_sleep, mock_logger):
    """Test the last StorageError is raised once attempts run out."""
    op = mock.Mock(side_effect=client_error("ThrottlingException"))

    @retry_storage_operation(max_attempts=2, initial_delay=0.01)
    @translate_storage_errors
    def func_to_retry():
        return op()

    with pytest.raises(StorageError):
        func_to_retry()

    assert op.call_count == 2
    assert mock_time_sleep.call_count == 1


@mock.patch('time.sleep', return_value=None)
def test_retry_skips_non_retryable_errors(mock_time_sleep, mock_logger):
    """Test errors outside the throttling codes fail on the first attempt."""
    op = mock.Mock(side_effect=client_error("AccessDenied"))

    @retry_storage_operation(max_attempts=3)
    @translate_storage_errors
    def func_to_retry():
        return op()

    with pytest.raises(StorageError):
        func_to_retry()

    assert op.call_count == 1
    mock_time_sleep.assert_not_called()


def test_retryable_codes():
    """Test the throttling codes that trigger a retry."""
    assert "SlowDown" in RETRYABLE_STORAGE_ERROR_CODES
    assert "AccessDenied" not in RETRYABLE_STORAGE_ERROR_CODES


# --- Tests for BatchOperationContextManager ---

def test_batch_context_collects_errors(mock_logger):
    """Test per-item errors are collected and summarised on exit."""
    with BatchOperationContextManager("Per-item thumbnails") as batch:
        batch.add_error(ValueError("bad box"), item_identifier="0:Mug")
        batch.add_error("upload failed", item_identifier="2:Lamp")

    assert batch.error_count == 2
    assert batch.errors[0] == {"item": "0:Mug", "error": "bad box"}
    # one summary line plus one line per error
    assert mock_logger.warning.call_count == 3


def test_batch_context_does_not_suppress(mock_logger):
    """Test exceptions raised inside the block propagate."""
    with pytest.raises(RuntimeError):
        with BatchOperationContextManager("Batch"):
            raise RuntimeError("cancelled")

    mock_logger.error.assert_called_once()


def test_batch_context_success(mock_logger):
    """Test a clean batch logs at debug only."""
    with BatchOperationContextManager("Batch") as batch:
        pass

    assert batch.error_count == 0
    mock_logger.warning.assert_not_called()
    mock_logger.error.assert_not_called()
