"""Service implementations for the item image pipeline."""

import base64
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .cancellation import CancellationToken, check_cancelled
from .error_handling import retry_storage_operation, translate_storage_errors
from .exceptions import (
    CleanupFailed,
    CompressionFailure,
    ConversionExhausted,
    CropFailure,
    ImageProcessingError,
    InvalidBoundingBox,
    StorageError,
    UploadFailed,
)
from .image_utils import (
    HEIC,
    HEIC_FORMATS,
    JPEG,
    RECOMPRESS_FORMATS,
    SUPPORTED_FORMATS,
    bbox_to_pixel_region,
    build_storage_paths,
    center_square,
    detect_format,
    generate_base_id,
    scale_to_fit,
    shrink,
    validate_bbox,
    validate_namespace,
)
from .models import (
    DEFAULT_POLICY,
    BoundingBox,
    PipelineConfig,
    PixelRegion,
    ProcessedArtifact,
    ProcessingPolicy,
    SourceImage,
    UploadedResource,
    UploadResult,
    ValidationCode,
    ValidationResult,
)
from .observability import LogContext
from .protocols import (
    HeicDecoderProtocol,
    ImageCodecProtocol,
    LoggerProtocol,
    PixelBuffer,
    RemoteConverterProtocol,
    StorageClientProtocol,
)

UNSUPPORTED_FORMAT_MESSAGE = "Unsupported format. Please use JPEG, PNG, WebP, or HEIC."
CONVERSION_FAILED_MESSAGE = "Failed to process HEIC image. Please try a different format."
UNREADABLE_MESSAGE = "Failed to read image dimensions. Please try a different image."


class ImageValidator:
    """Checks source format and minimum pixel dimensions.

    HEIC sources are converted first because their dimensions cannot be
    read from the container; the converted bytes travel on the result.
    """

    def __init__(
        self,
        codec: ImageCodecProtocol,
        converter: "FormatConverter",
        logger: LoggerProtocol,
        policy: ProcessingPolicy = DEFAULT_POLICY,
    ):
        self._codec = codec
        self._converter = converter
        self._logger = logger
        self._policy = policy

    def validate(
        self,
        source: SourceImage,
        context: Optional[LogContext] = None,
        token: Optional[CancellationToken] = None,
    ) -> ValidationResult:
        """Validate a source image. Expected failures are returned, not raised."""
        context = (context or LogContext()).with_operation("validate")
        image_format = detect_format(source.content_type, source.file_name)
        heic = image_format in HEIC_FORMATS

        if image_format not in SUPPORTED_FORMATS:
            self._logger.info("Rejected unsupported format", context, format=image_format)
            return ValidationResult(
                valid=False,
                format=image_format,
                code=ValidationCode.UNSUPPORTED_FORMAT,
                error=UNSUPPORTED_FORMAT_MESSAGE,
            )

        converted_data: Optional[bytes] = None
        if heic:
            try:
                converted_data = self._converter.convert(
                    source.data, image_format, context, token
                ).data
            except ConversionExhausted as exc:
                self._logger.warning(
                    "HEIC conversion exhausted during validation",
                    context,
                    attempts=exc.attempts,
                    error=exc.last_error,
                )
                return ValidationResult(
                    valid=False,
                    format=image_format,
                    is_heic=True,
                    code=ValidationCode.CONVERSION_FAILED,
                    error=CONVERSION_FAILED_MESSAGE,
                )

        if not heic and source.width and source.height:
            width, height = source.width, source.height
        else:
            try:
                pixels = self._codec.decode(converted_data or source.data)
            except ImageProcessingError as exc:
                self._logger.warning("Could not decode source", context, error=str(exc))
                return ValidationResult(
                    valid=False,
                    format=image_format,
                    is_heic=heic,
                    code=ValidationCode.UNREADABLE_IMAGE,
                    error=UNREADABLE_MESSAGE,
                )
            width, height = pixels.width, pixels.height

        if width < self._policy.min_width or height < self._policy.min_height:
            return ValidationResult(
                valid=False,
                format=image_format,
                width=width,
                height=height,
                is_heic=heic,
                code=ValidationCode.DIMENSIONS_TOO_SMALL,
                error=(
                    "Image too small. Minimum size is "
                    f"{self._policy.min_width}x{self._policy.min_height} pixels."
                ),
            )

        return ValidationResult(
            valid=True,
            format=image_format,
            width=width,
            height=height,
            is_heic=heic,
            converted_data=converted_data,
        )


@dataclass(frozen=True)
class ConversionAttempt:
    """One rung of the HEIC conversion cascade."""

    kind: str
    quality: Optional[float] = None

    LOCAL = "local"
    REMOTE = "remote"

    @property
    def label(self) -> str:
        if self.kind == self.LOCAL:
            return f"local@{self.quality}"
        return self.kind


@dataclass(frozen=True)
class ConversionOutcome:
    data: bytes
    attempts: int
    succeeded_with: ConversionAttempt
    mime_type: str = JPEG


class FormatConverter:
    """HEIC/HEIF to JPEG with a local quality ladder and a remote backstop.

    Some device-specific HEIC variants fail local decoders intermittently;
    a lower quality retry sometimes succeeds, and the remote converter is
    the last resort. Attempts run strictly in order.
    """

    def __init__(
        self,
        decoder: HeicDecoderProtocol,
        logger: LoggerProtocol,
        remote: Optional[RemoteConverterProtocol] = None,
        policy: ProcessingPolicy = DEFAULT_POLICY,
    ):
        self._decoder = decoder
        self._remote = remote
        self._logger = logger
        self._policy = policy

    def attempt_plan(self) -> List[ConversionAttempt]:
        """The ordered attempts this converter will make."""
        plan = [
            ConversionAttempt(ConversionAttempt.LOCAL, quality)
            for quality in sorted(self._policy.heic_quality_ladder, reverse=True)
        ]
        if self._remote is not None:
            plan.append(ConversionAttempt(ConversionAttempt.REMOTE))
        return plan

    def convert(
        self,
        data: bytes,
        mime_type: str = HEIC,
        context: Optional[LogContext] = None,
        token: Optional[CancellationToken] = None,
    ) -> ConversionOutcome:
        """Run the cascade, returning on the first success.

        The token is checked before every attempt, so no further decode or
        remote call starts once the request is cancelled.

        Raises:
            ConversionExhausted: every attempt failed
            PipelineCancelled: the token was set mid-cascade
        """
        context = (context or LogContext()).with_operation("convert")
        last_error: Optional[str] = None
        attempts = 0

        for attempt in self.attempt_plan():
            check_cancelled(token, "HEIC conversion")
            attempts += 1
            self._logger.debug(f"Attempting HEIC conversion ({attempt.label})", context)
            try:
                converted, converted_type = self._run(attempt, data, mime_type)
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc) or type(exc).__name__
                self._logger.warning(
                    f"HEIC conversion failed ({attempt.label})", context, error=last_error
                )
                continue

            self._logger.info(
                f"HEIC conversion succeeded ({attempt.label})",
                context,
                attempts=attempts,
                size_bytes=len(converted),
            )
            return ConversionOutcome(
                data=converted,
                attempts=attempts,
                succeeded_with=attempt,
                mime_type=converted_type,
            )

        self._logger.error("HEIC conversion exhausted", context, attempts=attempts)
        raise ConversionExhausted(attempts, last_error)

    def _run(self, attempt: ConversionAttempt, data: bytes, mime_type: str):
        if attempt.kind == ConversionAttempt.LOCAL:
            return self._decoder.convert(data, attempt.quality), JPEG
        encoded = base64.b64encode(data).decode("ascii")
        return self._remote.convert(encoded, mime_type)


class ImageCompressor:
    """Fits a baseline image into the byte budget.

    Quality is lowered before dimensions: it costs less perceived fidelity
    for typical photos. Encodes are bounded at one per ladder rung plus a
    single forced pass after a dimension shrink, and the smallest encode
    produced is returned even when the budget is missed. Sources carrying
    an EXIF rotation are always re-encoded upright.
    """

    def __init__(
        self,
        codec: ImageCodecProtocol,
        logger: LoggerProtocol,
        policy: ProcessingPolicy = DEFAULT_POLICY,
    ):
        self._codec = codec
        self._logger = logger
        self._policy = policy

    def compress(
        self,
        data: bytes,
        content_type: str = JPEG,
        converted: bool = False,
        pixels: Optional[PixelBuffer] = None,
        context: Optional[LogContext] = None,
        token: Optional[CancellationToken] = None,
    ) -> ProcessedArtifact:
        context = (context or LogContext()).with_operation("compress")
        budget = self._policy.max_bytes
        try:
            if pixels is None:
                pixels = self._codec.decode(data)

            if (
                len(data) <= budget
                and not converted
                and content_type not in RECOMPRESS_FORMATS
                and self._codec.is_upright(data)
            ):
                self._logger.debug("Source already within budget", context, size_bytes=len(data))
                return ProcessedArtifact(
                    data=data,
                    width=pixels.width,
                    height=pixels.height,
                    content_type=content_type,
                )

            if len(data) > budget * self._policy.oversize_multiplier:
                max_dimension = self._policy.max_dimension_low
            else:
                max_dimension = self._policy.max_dimension_high
            width, height = scale_to_fit(pixels.width, pixels.height, max_dimension)

            ladder = sorted(self._policy.quality_ladder, reverse=True)
            attempts = 0
            best: Optional[ProcessedArtifact] = None

            for quality in ladder:
                check_cancelled(token, "compress")
                attempts += 1
                candidate = self._encode(pixels, width, height, quality, attempts)
                if best is None or candidate.size_bytes < best.size_bytes:
                    best = candidate
                if candidate.size_bytes <= budget:
                    self._logger.debug(
                        "Compressed within budget",
                        context,
                        quality=quality,
                        width=width,
                        height=height,
                        size_bytes=candidate.size_bytes,
                    )
                    return candidate

            check_cancelled(token, "compress")
            width, height = shrink(width, height, self._policy.shrink_factor)
            attempts += 1
            forced = self._encode(pixels, width, height, ladder[-1], attempts)
            if forced.size_bytes <= best.size_bytes:
                best = forced
            best = best.model_copy(update={"encode_attempts": attempts})
        except ImageProcessingError as exc:
            raise CompressionFailure(f"Failed to compress image: {exc}") from exc

        if best.size_bytes > budget:
            self._logger.warning(
                "Byte budget missed, returning smallest encode",
                context,
                size_bytes=best.size_bytes,
                budget=budget,
            )
        return best

    def _encode(
        self, pixels: PixelBuffer, width: int, height: int, quality: float, attempts: int
    ) -> ProcessedArtifact:
        resized = self._codec.resize(pixels, width, height)
        encoded = self._codec.encode(resized, quality)
        return ProcessedArtifact(
            data=encoded,
            width=width,
            height=height,
            quality=quality,
            encode_attempts=attempts,
        )


class ThumbnailGenerator:
    """Fixed-size square preview from the largest centered square."""

    def __init__(self, codec: ImageCodecProtocol, policy: ProcessingPolicy = DEFAULT_POLICY):
        self._codec = codec
        self._policy = policy

    def generate(self, pixels: PixelBuffer) -> ProcessedArtifact:
        side = self._policy.thumbnail_side
        box = center_square(pixels.width, pixels.height)
        square = self._codec.resize(pixels, side, side, box=box)
        return ProcessedArtifact(
            data=self._codec.encode(square, self._policy.thumbnail_quality),
            width=side,
            height=side,
            quality=self._policy.thumbnail_quality,
            encode_attempts=1,
        )


class BoundingBoxCropper:
    """Fixed-size square preview of one detected item.

    Callers fall back to the full-image thumbnail on any CropFailure.
    """

    def __init__(self, codec: ImageCodecProtocol, policy: ProcessingPolicy = DEFAULT_POLICY):
        self._codec = codec
        self._policy = policy

    @staticmethod
    def pixel_region(bbox: BoundingBox, width: int, height: int) -> PixelRegion:
        if not validate_bbox(bbox):
            raise InvalidBoundingBox(f"Invalid bounding box: {list(bbox.as_tuple())}")
        return bbox_to_pixel_region(bbox, width, height)

    def crop(self, pixels: PixelBuffer, bbox: BoundingBox) -> ProcessedArtifact:
        region = self.pixel_region(bbox, pixels.width, pixels.height)
        side = self._policy.thumbnail_side
        try:
            cropped = self._codec.resize(pixels, side, side, box=region.as_box())
            data = self._codec.encode(cropped, self._policy.crop_quality)
        except ImageProcessingError as exc:
            raise CropFailure(f"Failed to create cropped thumbnail: {exc}") from exc
        return ProcessedArtifact(
            data=data,
            width=side,
            height=side,
            quality=self._policy.crop_quality,
            encode_attempts=1,
        )


class UploadCoordinator:
    """Persists artifacts under a per-user namespace and resolves locators."""

    def __init__(
        self,
        storage: StorageClientProtocol,
        logger: LoggerProtocol,
        config: Optional[PipelineConfig] = None,
        id_factory: Callable[[], str] = generate_base_id,
    ):
        self._storage = storage
        self._logger = logger
        self._config = config or PipelineConfig()
        self._id_factory = id_factory
        self._put = retry_storage_operation(max_attempts=self._config.upload_max_attempts)(
            translate_storage_errors(self._put_object)
        )

    @property
    def bucket(self) -> str:
        return self._config.bucket

    def _put_object(self, path: str, artifact: ProcessedArtifact) -> None:
        self._storage.put_object(
            Bucket=self._config.bucket,
            Key=path,
            Body=artifact.data,
            ContentType=JPEG,
        )

    @translate_storage_errors
    def resolve_url(self, path: str) -> str:
        """Publicly retrievable locator for a stored path."""
        if self._config.public_base_url:
            return f"{self._config.public_base_url.rstrip('/')}/{path}"
        return self._storage.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._config.bucket, "Key": path},
            ExpiresIn=self._config.presigned_url_expiry,
        )

    def upload_pair(
        self,
        namespace: str,
        main: ProcessedArtifact,
        thumbnail: ProcessedArtifact,
        context: Optional[LogContext] = None,
    ) -> UploadResult:
        """Upload main image and thumbnail concurrently; both must succeed.

        Raises:
            UploadFailed: carrying the paths that did land in storage
        """
        context = (context or LogContext()).with_operation("upload")
        main_path, thumb_path = build_storage_paths(namespace, self._id_factory())
        artifacts = {main_path: main, thumb_path: thumbnail}

        uploaded: List[str] = []
        errors: Dict[str, str] = {}
        start_time = time.time()

        with ThreadPoolExecutor(max_workers=len(artifacts)) as executor:
            future_to_path = {
                executor.submit(self._put, path, artifact): path
                for path, artifact in artifacts.items()
            }
            for future in as_completed(future_to_path):
                path = future_to_path[future]
                try:
                    future.result()
                    uploaded.append(path)
                except Exception as exc:  # noqa: BLE001
                    errors[path] = str(exc)

        # keep main-then-thumbnail order regardless of completion order
        uploaded = [path for path in artifacts if path in uploaded]
        if errors:
            failed = [path for path in artifacts if path in errors]
            self._logger.error(
                "Upload failed",
                context,
                uploaded=uploaded,
                failed=failed,
                error="; ".join(errors[path] for path in failed),
            )
            raise UploadFailed(
                f"Failed to upload image: {errors[failed[0]]}",
                uploaded_paths=uploaded,
                failed_paths=failed,
            )

        try:
            result = UploadResult(
                image=UploadedResource(path=main_path, url=self.resolve_url(main_path)),
                thumbnail=UploadedResource(path=thumb_path, url=self.resolve_url(thumb_path)),
            )
        except StorageError as exc:
            raise UploadFailed(
                f"Failed to resolve image URL: {exc}", uploaded_paths=uploaded
            ) from exc

        self._logger.info(
            "Uploaded image pair",
            context,
            image_path=main_path,
            thumbnail_path=thumb_path,
            duration_ms=round((time.time() - start_time) * 1000, 1),
        )
        return result

    def upload_artifact(
        self,
        namespace: str,
        artifact: ProcessedArtifact,
        file_name: Optional[str] = None,
    ) -> UploadedResource:
        """Upload a single artifact, e.g. a per-item crop."""
        prefix = validate_namespace(namespace)
        path = f"{prefix}/{file_name or self._id_factory() + '_thumb.jpg'}"
        try:
            self._put(path, artifact)
        except StorageError as exc:
            raise UploadFailed(f"Failed to upload image: {exc}", failed_paths=[path]) from exc
        try:
            url = self.resolve_url(path)
        except StorageError as exc:
            raise UploadFailed(f"Failed to resolve image URL: {exc}", uploaded_paths=[path]) from exc
        return UploadedResource(path=path, url=url)


class CleanupService:
    """Best-effort batch delete of previously uploaded paths."""

    def __init__(
        self,
        storage: StorageClientProtocol,
        logger: LoggerProtocol,
        config: Optional[PipelineConfig] = None,
    ):
        self._storage = storage
        self._logger = logger
        self._config = config or PipelineConfig()

    @staticmethod
    def normalize_paths(paths: Iterable[Optional[str]]) -> List[str]:
        """Trim, drop empties and deduplicate while keeping order."""
        seen: List[str] = []
        for path in paths:
            value = (path or "").strip()
            if value and value not in seen:
                seen.append(value)
        return seen

    def cleanup(
        self, paths: Iterable[Optional[str]], context: Optional[LogContext] = None
    ) -> List[str]:
        """Delete the given paths in one batch.

        Returns:
            The normalized list of paths that were deleted

        Raises:
            CleanupFailed: the storage backend errored
        """
        context = (context or LogContext()).with_operation("cleanup")
        keys = self.normalize_paths(paths)
        if not keys:
            return []

        try:
            response = self._storage.delete_objects(
                Bucket=self._config.bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
            )
        except Exception as exc:  # noqa: BLE001
            raise CleanupFailed(f"Failed to delete images: {exc}", keys) from exc

        errors = (response or {}).get("Errors") or []
        if errors:
            failed = [error.get("Key", "") for error in errors]
            raise CleanupFailed(
                f"Failed to delete images: {errors[0].get('Message', 'unknown error')}",
                failed,
            )

        self._logger.info("Removed uploaded images", context, count=len(keys))
        return keys

    def cleanup_quietly(
        self, paths: Iterable[Optional[str]], context: Optional[LogContext] = None
    ) -> bool:
        """Cleanup that logs instead of raising; the original failure wins."""
        try:
            self.cleanup(paths, context)
            return True
        except CleanupFailed as exc:
            self._logger.error(
                "Failed to delete uploaded images",
                (context or LogContext()).with_operation("cleanup"),
                paths=exc.paths,
                error=str(exc),
            )
            return False
