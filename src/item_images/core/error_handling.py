# src/item_images/core/error_handling.py

import functools
import logging
import time

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import StorageError

RETRYABLE_STORAGE_ERROR_CODES = (
    "SlowDown",
    "ThrottlingException",
    "RequestTimeout",
    "ServiceUnavailable",
)


def translate_storage_errors(func):
    """
    A decorator that turns botocore failures into StorageError.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + '.' + func.__name__)
        try:
            return func(*args, **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Storage operation '{func.__name__}' failed: {e}", exc_info=True)
            raise StorageError(f"Storage operation failed in {func.__name__}: {e}") from e
    return wrapper


def _is_retryable(error: StorageError) -> bool:
    cause = error.__cause__
    if isinstance(cause, ClientError):
        code = cause.response.get('Error', {}).get('Code')
        return code in RETRYABLE_STORAGE_ERROR_CODES
    return False


def retry_storage_operation(max_attempts=3, initial_delay=0.5, backoff_factor=2):
    """
    Decorator to retry throttled storage operations with exponential backoff.

    Only StorageErrors caused by a throttling/unavailable ClientError are
    retried; everything else is raised on the first failure.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + '.' + func.__name__)
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except StorageError as e:
                    if not _is_retryable(e):
                        raise
                    if attempt >= max_attempts:
                        logger.error(
                            f"Storage operation '{func.__name__}' failed after {max_attempts} attempts. Error: {e}"
                        )
                        raise
                    logger.info(
                        f"Storage operation '{func.__name__}' throttled. Attempt {attempt}/{max_attempts}. "
                        f"Retrying in {delay:.2f}s. Error: {e}"
                    )
                    time.sleep(delay)
                    delay *= backoff_factor
        return wrapper
    return decorator


class BatchOperationContextManager:
    """
    Context manager for batch operations to collect and summarize errors.
    """
    def __init__(self, operation_name="Batch Operation"):
        self.operation_name = operation_name
        self.errors = []
        self.logger = logging.getLogger(self.__class__.__module__ + '.' + self.__class__.__name__)

    def __enter__(self):
        self.logger.debug(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.warning(
                    f"  Error {i+1}/{len(self.errors)} for item '{error_detail['item']}': {error_detail['error']}"
                )
        elif exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            self.logger.debug(f"{self.operation_name} completed successfully.")
        return False

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def add_error(self, error_message, item_identifier: str = "Unknown item"):
        """
        Report a failure for one item without aborting the batch.

        Args:
            error_message: The error message or exception.
            item_identifier (str): A string identifying the item that failed.
        """
        self.errors.append({"item": item_identifier, "error": str(error_message)})
        self.logger.debug(f"Error added for item '{item_identifier}' in {self.operation_name}: {error_message}")
