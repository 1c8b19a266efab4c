"""Core utilities and shared components for the item images pipeline."""

from .image_utils import (
    bbox_to_pixel_region,
    build_storage_paths,
    center_square,
    clamp_bbox,
    detect_format,
    is_heic,
    scale_to_fit,
    validate_bbox,
)
from .logging_config import get_logger, setup_logger
from .exceptions import (
    AnalysisError,
    CleanupFailed,
    CompressionFailure,
    ConfigurationError,
    ConversionExhausted,
    CropFailure,
    ImageProcessingError,
    ImageValidationError,
    InvalidBoundingBox,
    InvalidNamespace,
    ItemImagesError,
    PipelineCancelled,
    StorageError,
    UploadFailed,
    with_error_handling,
)
from .models import (
    DEFAULT_POLICY,
    AnalysisPhase,
    BoundingBox,
    CaptureResult,
    DetectedItem,
    ImageArtifacts,
    PipelineConfig,
    ProcessedArtifact,
    ProcessingPolicy,
    SourceImage,
    UploadedResource,
    UploadResult,
    ValidationCode,
    ValidationResult,
)

__all__ = [
    "DEFAULT_POLICY",
    "ProcessingPolicy",
    "PipelineConfig",
    "SourceImage",
    "BoundingBox",
    "ProcessedArtifact",
    "UploadedResource",
    "UploadResult",
    "ImageArtifacts",
    "DetectedItem",
    "CaptureResult",
    "AnalysisPhase",
    "ValidationCode",
    "ValidationResult",
    "bbox_to_pixel_region",
    "build_storage_paths",
    "center_square",
    "clamp_bbox",
    "detect_format",
    "is_heic",
    "scale_to_fit",
    "validate_bbox",
    "setup_logger",
    "get_logger",
    "ItemImagesError",
    "ImageValidationError",
    "ConversionExhausted",
    "ImageProcessingError",
    "CompressionFailure",
    "CropFailure",
    "InvalidBoundingBox",
    "InvalidNamespace",
    "StorageError",
    "UploadFailed",
    "CleanupFailed",
    "AnalysisError",
    "PipelineCancelled",
    "ConfigurationError",
    "with_error_handling",
]
