"""Custom exceptions and error handling utilities for the item images pipeline."""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Iterable, List, Optional, TypeVar

from .logging_config import get_logger


class ItemImagesError(Exception):
    """Base exception for all item images pipeline errors."""


class ConfigurationError(ItemImagesError):
    """Error raised for invalid configuration options."""


class ImageValidationError(ItemImagesError):
    """Unsupported format or dimensions below the policy minimum.

    Never retried; the message is safe to show to the end user.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ConversionExhausted(ItemImagesError):
    """Every local HEIC attempt and the remote fallback failed."""

    def __init__(self, attempts: int, last_error: Optional[str] = None):
        self.attempts = attempts
        self.last_error = last_error or "Unknown error"
        super().__init__(
            f"Failed to convert HEIC image after {attempts} attempts. "
            "Please try taking a new photo or use a JPEG/PNG image. "
            f"({self.last_error})"
        )


class ImageProcessingError(ItemImagesError):
    """Error raised when decoding, resizing or encoding an image fails."""


class CompressionFailure(ImageProcessingError):
    """The codec failed while compressing. A missed byte budget is not an error."""


class CropFailure(ImageProcessingError):
    """A per-item crop could not be produced."""


class InvalidBoundingBox(CropFailure):
    """Bounding box values are non-finite, negative or exceed the frame."""


class StorageError(ItemImagesError):
    """Error raised for content storage failures."""


class InvalidNamespace(ItemImagesError):
    """The storage namespace is empty, nested or a relative path segment."""


class UploadFailed(StorageError):
    """One or both artifacts of an upload pair failed to persist.

    ``uploaded_paths`` lists whatever did land in storage so the caller can
    hand them to the cleanup service.
    """

    def __init__(
        self,
        message: str,
        uploaded_paths: Iterable[str] = (),
        failed_paths: Iterable[str] = (),
    ):
        super().__init__(message)
        self.uploaded_paths: List[str] = list(uploaded_paths)
        self.failed_paths: List[str] = list(failed_paths)


class CleanupFailed(StorageError):
    """The storage backend rejected a cleanup batch delete."""

    def __init__(self, message: str, paths: Iterable[str] = ()):
        super().__init__(message)
        self.paths: List[str] = list(paths)


class AnalysisError(ItemImagesError):
    """The downstream analysis service failed or returned no data."""


class PipelineCancelled(ItemImagesError):
    """The owning request was torn down while the pipeline was running."""


F = TypeVar("F", bound=Callable[..., Any])


def with_error_handling(func: F) -> F:
    """Wrap a codec call so unexpected failures surface as ImageProcessingError."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:  # type: ignore[override]
        logger = get_logger("codec")
        try:
            return func(*args, **kwargs)
        except ItemImagesError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Unhandled error in {func.__name__}: {exc}", exc_info=True)
            raise ImageProcessingError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]
