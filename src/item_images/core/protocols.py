"""Protocol definitions for dependency injection and testability."""

from typing import Any, Dict, Optional, Protocol, Tuple

from .models import AnalysisResponse

Box = Tuple[float, float, float, float]


class PixelBuffer(Protocol):
    """A decoded raster image. PIL images satisfy this."""

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...


class ImageCodecProtocol(Protocol):
    """Decode, resample and baseline-encode raster images."""

    def decode(self, data: bytes) -> PixelBuffer:
        """Decode encoded bytes into pixels, applying any EXIF orientation."""
        ...

    def is_upright(self, data: bytes) -> bool:
        """Whether the encoded bytes display as stored (no EXIF rotation)."""
        ...

    def encode(self, pixels: PixelBuffer, quality: float) -> bytes:
        """Encode pixels as baseline JPEG at a 0-1 quality."""
        ...

    def resize(
        self,
        pixels: PixelBuffer,
        width: int,
        height: int,
        box: Optional[Box] = None,
    ) -> PixelBuffer:
        """Resample pixels, optionally from a (left, top, right, bottom) source box."""
        ...


class HeicDecoderProtocol(Protocol):
    """Local HEIC/HEIF to JPEG conversion."""

    def convert(self, data: bytes, quality: float) -> bytes:
        """Convert a HEIC container into JPEG bytes."""
        ...


class RemoteConverterProtocol(Protocol):
    """Server-side conversion used once the local ladder is exhausted."""

    def convert(self, image_base64: str, mime_type: str) -> Tuple[bytes, str]:
        """Return converted bytes and their mime type."""
        ...


class StorageClientProtocol(Protocol):
    """The boto3 S3 operations the upload and cleanup services need."""

    def put_object(
        self, Bucket: str, Key: str, Body: bytes, ContentType: str
    ) -> Dict[str, Any]:
        """Put object to storage."""
        ...

    def delete_objects(self, Bucket: str, Delete: Dict[str, Any]) -> Dict[str, Any]:
        """Delete a batch of objects."""
        ...

    def generate_presigned_url(
        self, ClientMethod: str, Params: Dict[str, Any], ExpiresIn: int
    ) -> str:
        """Build a time-limited retrieval URL."""
        ...


class AnalysisClientProtocol(Protocol):
    """Downstream vision analysis of an uploaded image."""

    def analyze(self, storage_path: str) -> AnalysisResponse:
        """Analyze the object stored at ``storage_path``."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log debug message."""
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log info message."""
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log warning message."""
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log error message."""
        ...
