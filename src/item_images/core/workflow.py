"""Capture workflow: validate, convert, compress, upload, analyze, clean up."""

import threading
import time
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .error_handling import BatchOperationContextManager
from .exceptions import (
    AnalysisError,
    ImageProcessingError,
    ImageValidationError,
    StorageError,
    UploadFailed,
)
from .image_utils import JPEG, clamp_bbox, is_near_full_frame, validate_bbox
from .models import (
    AnalysisPhase,
    AnalysisResponse,
    BoundingBox,
    CaptureResult,
    DetectedItem,
    PipelineConfig,
    PreparedImage,
    SourceImage,
    UploadResult,
)
from .observability import LogContext, MetricsCollector, PerformanceMetrics
from .protocols import AnalysisClientProtocol, ImageCodecProtocol, LoggerProtocol
from .services import (
    BoundingBoxCropper,
    CleanupService,
    ImageCompressor,
    ImageValidator,
    ThumbnailGenerator,
    UploadCoordinator,
)

PhaseCallback = Callable[[AnalysisPhase], None]


class _Stage:
    """Times one stage into the metrics collector."""

    def __init__(self, name: str, metrics: Optional[MetricsCollector]):
        self.name = name
        self._metrics = metrics

    def __enter__(self) -> "_Stage":
        self._start = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._metrics is not None:
            self._metrics.record_metric(
                PerformanceMetrics(
                    operation=self.name,
                    start_time=self._start,
                    end_time=time.time(),
                    success=exc_type is None,
                    error_message=str(exc_val) if exc_val else None,
                )
            )
        return False


class ItemImagePipeline:
    """Runs one capture request end to end.

    No state is shared between requests; a pipeline instance can serve
    many captures as long as each brings its own cancellation token.
    """

    def __init__(
        self,
        codec: ImageCodecProtocol,
        validator: ImageValidator,
        compressor: ImageCompressor,
        thumbnails: ThumbnailGenerator,
        cropper: BoundingBoxCropper,
        uploader: UploadCoordinator,
        cleanup: CleanupService,
        logger: LoggerProtocol,
        analysis: Optional[AnalysisClientProtocol] = None,
        config: Optional[PipelineConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._codec = codec
        self._validator = validator
        self._compressor = compressor
        self._thumbnails = thumbnails
        self._cropper = cropper
        self._uploader = uploader
        self._cleanup = cleanup
        self._logger = logger
        self._analysis = analysis
        self._config = config or PipelineConfig()
        self._metrics = metrics

    @property
    def metrics(self) -> Optional[MetricsCollector]:
        return self._metrics

    def _stage(self, name: str) -> _Stage:
        return _Stage(name, self._metrics)

    def prepare(
        self,
        source: SourceImage,
        token: Optional[CancellationToken] = None,
        context: Optional[LogContext] = None,
    ) -> PreparedImage:
        """Validate, convert if needed, compress and thumbnail a source.

        Raises:
            ImageValidationError: unsupported format, unreadable or too small
            CompressionFailure: the codec failed while compressing
            PipelineCancelled: the token was set during or between stages
        """
        token = token or CancellationToken()
        context = context or LogContext(component="item_image_pipeline")

        with self._stage("validate"):
            validation = self._validator.validate(source, context, token)
        token.raise_if_cancelled("validate")
        if not validation.valid:
            raise ImageValidationError(validation.code.value, validation.error)

        baseline = validation.converted_data if validation.is_heic else source.data
        content_type = JPEG if validation.is_heic else validation.format

        with self._stage("decode"):
            pixels = self._codec.decode(baseline)
        token.raise_if_cancelled("decode")

        with self._stage("compress"):
            main = self._compressor.compress(
                baseline,
                content_type,
                converted=validation.is_heic,
                pixels=pixels,
                context=context,
                token=token,
            )
        token.raise_if_cancelled("compress")

        with self._stage("thumbnail"):
            thumbnail = self._thumbnails.generate(pixels)
        token.raise_if_cancelled("thumbnail")

        self._logger.info(
            "Prepared image",
            context.with_operation("prepare"),
            format=validation.format,
            width=main.width,
            height=main.height,
            size_bytes=main.size_bytes,
        )
        return PreparedImage(
            main=main,
            thumbnail=thumbnail,
            baseline_data=baseline,
            source_format=validation.format,
        )

    def upload(
        self,
        prepared: PreparedImage,
        user_id: str,
        token: Optional[CancellationToken] = None,
        context: Optional[LogContext] = None,
    ) -> UploadResult:
        """Upload a prepared pair, cleaning up whatever landed on failure or cancel."""
        token = token or CancellationToken()
        context = context or LogContext(component="item_image_pipeline", user_id=user_id)
        try:
            with self._stage("upload"):
                result = self._uploader.upload_pair(
                    user_id, prepared.main, prepared.thumbnail, context
                )
        except UploadFailed as exc:
            self._cleanup.cleanup_quietly(exc.uploaded_paths, context)
            raise

        if token.cancelled:
            self._cleanup.cleanup_quietly(result.paths, context)
            token.raise_if_cancelled("upload")
        return result

    def process_and_upload(
        self,
        source: SourceImage,
        user_id: str,
        token: Optional[CancellationToken] = None,
        context: Optional[LogContext] = None,
    ) -> UploadResult:
        token = token or CancellationToken()
        context = context or LogContext(component="item_image_pipeline", user_id=user_id)
        prepared = self.prepare(source, token, context)
        return self.upload(prepared, user_id, token, context)

    def analyze(
        self,
        upload: UploadResult,
        on_phase: Optional[PhaseCallback] = None,
        token: Optional[CancellationToken] = None,
        context: Optional[LogContext] = None,
    ) -> AnalysisResponse:
        """Call the analysis service with a soft deadline.

        Past the deadline ``on_phase`` receives TIMEOUT; the call keeps
        running until the client's own timeout.
        """
        if self._analysis is None:
            raise AnalysisError("No analysis client configured")
        token = token or CancellationToken()
        context = (context or LogContext()).with_operation("analyze")

        def _soft_deadline() -> None:
            if not token.cancelled:
                self._logger.warning("Analysis is taking longer than expected", context)
                if on_phase:
                    on_phase(AnalysisPhase.TIMEOUT)

        if on_phase:
            on_phase(AnalysisPhase.ANALYZING)
        timer = threading.Timer(self._config.analysis_soft_deadline, _soft_deadline)
        timer.daemon = True
        timer.start()
        try:
            with self._stage("analyze"):
                response = self._analysis.analyze(f"{self._uploader.bucket}/{upload.image.path}")
        finally:
            timer.cancel()
        return response

    def build_item_thumbnails(
        self,
        items: List[DetectedItem],
        baseline_data: bytes,
        upload: UploadResult,
        user_id: str,
        token: Optional[CancellationToken] = None,
        context: Optional[LogContext] = None,
    ) -> List[DetectedItem]:
        """Give every detected item a thumbnail, cropping where a box allows.

        Crop or upload failures for one item fall back to the full-image
        thumbnail; they never fail the capture.
        """
        token = token or CancellationToken()
        context = (context or LogContext()).with_operation("item_thumbnails")
        fallback = {
            "thumbnail_url": upload.thumbnail.url,
            "thumbnail_path": upload.thumbnail.path,
        }
        results: List[DetectedItem] = []
        try:
            return self._crop_items(items, baseline_data, user_id, fallback, results, token, context)
        except Exception:
            extra = [r.thumbnail_path for r in results if r.thumbnail_path != upload.thumbnail.path]
            self._cleanup.cleanup_quietly(extra, context)
            raise

    def _crop_items(self, items, baseline_data, user_id, fallback, results, token, context):
        pixels = None

        with BatchOperationContextManager("Per-item thumbnails") as batch:
            for index, item in enumerate(items):
                token.raise_if_cancelled("item thumbnails")

                valid = validate_bbox(item.bbox)
                bbox = list(clamp_bbox(item.bbox)) if valid else [0.0, 0.0, 100.0, 100.0]
                if not valid or is_near_full_frame(bbox):
                    results.append(item.model_copy(update={"bbox": bbox, **fallback}))
                    continue

                try:
                    if pixels is None:
                        pixels = self._codec.decode(baseline_data)
                    cropped = self._cropper.crop(pixels, BoundingBox.from_sequence(bbox))
                    uploaded = self._uploader.upload_artifact(user_id, cropped)
                except (ImageProcessingError, StorageError) as exc:
                    batch.add_error(exc, item_identifier=f"{index}:{item.name}")
                    self._logger.warning(
                        "Failed to crop thumbnail, using full image", context, item=item.name
                    )
                    results.append(item.model_copy(update={"bbox": bbox, **fallback}))
                    continue

                if token.cancelled:
                    self._cleanup.cleanup_quietly([uploaded.path], context)
                    token.raise_if_cancelled("item thumbnail upload")
                results.append(
                    item.model_copy(
                        update={
                            "bbox": bbox,
                            "thumbnail_url": uploaded.url,
                            "thumbnail_path": uploaded.path,
                        }
                    )
                )
        return results

    def capture(
        self,
        source: SourceImage,
        user_id: str,
        token: Optional[CancellationToken] = None,
        on_phase: Optional[PhaseCallback] = None,
    ) -> CaptureResult:
        """Full capture: prepare, upload, analyze, then per-item thumbnails.

        Any failure or cancellation after the upload removes every object
        this capture wrote before the error propagates.
        """
        token = token or CancellationToken()
        context = LogContext(component="item_image_pipeline", user_id=user_id)
        if on_phase:
            on_phase(AnalysisPhase.UPLOADING)

        prepared = self.prepare(source, token, context)
        upload = self.upload(prepared, user_id, token, context)
        items: List[DetectedItem] = []

        try:
            response = self.analyze(upload, on_phase, token, context)
            token.raise_if_cancelled("analyze")
            if response.detected_items:
                items = self.build_item_thumbnails(
                    response.detected_items,
                    prepared.baseline_data,
                    upload,
                    user_id,
                    token,
                    context,
                )
            token.raise_if_cancelled("item thumbnails")
        except Exception:
            partial = CaptureResult(upload=upload, items=items)
            self._cleanup.cleanup_quietly(partial.all_paths, context)
            raise

        self._logger.info(
            "Capture complete",
            context.with_operation("capture"),
            items=len(items),
            image_path=upload.image.path,
        )
        return CaptureResult(
            upload=upload,
            items=items,
            analysis_model=response.analysis_model,
            correlation_id=context.correlation_id,
        )

    def cancel_capture(self, result: CaptureResult) -> bool:
        """Remove everything a finished capture uploaded (user backed out)."""
        return self._cleanup.cleanup_quietly(result.all_paths)
