"""Shared data models for the item images pipeline."""

import os
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ProcessingPolicy(BaseModel):
    """Size and dimension constraints applied to every capture."""

    model_config = ConfigDict(frozen=True)

    min_width: int = 200
    min_height: int = 200
    max_bytes: int = 2 * 1024 * 1024
    thumbnail_side: int = 200
    quality_ladder: Tuple[float, ...] = (0.9, 0.8, 0.7, 0.6, 0.5)
    heic_quality_ladder: Tuple[float, ...] = (0.9, 0.8, 0.6)
    max_dimension_high: int = 3000
    max_dimension_low: int = 2048
    oversize_multiplier: int = 2
    shrink_factor: float = 0.75
    thumbnail_quality: float = 0.8
    crop_quality: float = 0.85


DEFAULT_POLICY = ProcessingPolicy()


class PipelineConfig(BaseModel):
    """Runtime wiring for storage and the remote collaborators."""

    bucket: str = "items"
    public_base_url: Optional[str] = None
    functions_base_url: Optional[str] = None
    access_token: Optional[str] = None
    remote_conversion_timeout: float = 30.0
    analysis_timeout: float = 120.0
    analysis_soft_deadline: float = 15.0
    presigned_url_expiry: int = 3600
    upload_max_attempts: int = 3
    debug: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> "PipelineConfig":
        """Build a config from ``ITEM_IMAGES_*`` environment variables."""
        values: dict = {}
        env_map = {
            "bucket": ("ITEM_IMAGES_BUCKET", str),
            "public_base_url": ("ITEM_IMAGES_PUBLIC_BASE_URL", str),
            "functions_base_url": ("ITEM_IMAGES_FUNCTIONS_URL", str),
            "access_token": ("ITEM_IMAGES_ACCESS_TOKEN", str),
            "remote_conversion_timeout": ("ITEM_IMAGES_REMOTE_TIMEOUT", float),
            "analysis_timeout": ("ITEM_IMAGES_ANALYSIS_TIMEOUT", float),
            "analysis_soft_deadline": ("ITEM_IMAGES_ANALYSIS_SOFT_DEADLINE", float),
        }
        for field_name, (env_name, cast) in env_map.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = cast(raw)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class SourceImage(BaseModel):
    """Raw bytes as handed over by the capture or picker collaborator."""

    data: bytes
    content_type: str = ""
    file_name: str = ""
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class ValidationCode(str, Enum):
    """Reasons a source image is rejected."""

    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    CONVERSION_FAILED = "CONVERSION_FAILED"
    UNREADABLE_IMAGE = "UNREADABLE_IMAGE"
    DIMENSIONS_TOO_SMALL = "DIMENSIONS_TOO_SMALL"


class ValidationResult(BaseModel):
    """Outcome of validating a source image."""

    valid: bool
    format: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    code: Optional[ValidationCode] = None
    error: Optional[str] = None
    is_heic: bool = False
    # JPEG bytes produced while validating a HEIC source
    converted_data: Optional[bytes] = None


class BoundingBox(BaseModel):
    """Detected region as percentages of the source dimensions."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "BoundingBox":
        if len(values) != 4:
            raise ValueError("Bounding box needs exactly four values")
        x, y, width, height = values
        return cls(x=x, y=y, width=width, height=height)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)


class PixelRegion(BaseModel):
    """Clamped crop rectangle in source pixel space."""

    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    def as_box(self) -> Tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)


class ProcessedArtifact(BaseModel):
    """Encoded image ready for upload."""

    data: bytes
    width: int
    height: int
    content_type: str = "image/jpeg"
    quality: Optional[float] = None
    encode_attempts: int = 0

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class PreparedImage(BaseModel):
    """Main image and thumbnail produced from one source."""

    main: ProcessedArtifact
    thumbnail: ProcessedArtifact
    # Decodable baseline bytes, reused for per-item crops
    baseline_data: bytes
    source_format: str = ""


class UploadedResource(BaseModel):
    """An artifact persisted to content storage."""

    path: str
    url: str


class UploadResult(BaseModel):
    """Main image and thumbnail uploaded under one shared identifier."""

    image: UploadedResource
    thumbnail: UploadedResource

    @property
    def paths(self) -> List[str]:
        return [self.image.path, self.thumbnail.path]


class ArtifactSummary(BaseModel):
    """Public description of one artifact."""

    uri: str
    width: int
    height: int
    size_bytes: int = Field(serialization_alias="sizeBytes")


class ImageArtifacts(BaseModel):
    """Output contract handed back to the UI or CLI collaborator."""

    processed: ArtifactSummary
    thumbnail: ArtifactSummary


class AnalysisPhase(str, Enum):
    """Progress states reported while a capture is running."""

    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    TIMEOUT = "timeout"


class DetectedItem(BaseModel):
    """One item returned by the analysis service."""

    model_config = ConfigDict(extra="allow")

    name: str
    category_suggestion: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    brand: Optional[str] = None
    confidence: float = 0.0
    # Percent [x, y, width, height]; unchecked until a crop is attempted
    bbox: Optional[Any] = None
    thumbnail_url: Optional[str] = None
    thumbnail_path: Optional[str] = None


class AnalysisResponse(BaseModel):
    """Response body of the analysis service."""

    model_config = ConfigDict(extra="allow")

    detected_items: List[DetectedItem] = Field(default_factory=list)
    analysis_model: str = ""
    analyzed_at: str = ""


class CaptureResult(BaseModel):
    """Everything a completed capture leaves behind."""

    upload: UploadResult
    items: List[DetectedItem] = Field(default_factory=list)
    analysis_model: str = ""
    correlation_id: str = ""

    @property
    def all_paths(self) -> List[str]:
        paths = list(self.upload.paths)
        for item in self.items:
            if item.thumbnail_path and item.thumbnail_path not in paths:
                paths.append(item.thumbnail_path)
        return paths
