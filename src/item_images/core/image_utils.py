"""Format sniffing, geometry and storage path helpers for the pipeline."""

import math
import uuid
from typing import Any, Optional, Sequence, Tuple

from .exceptions import InvalidNamespace
from .models import BoundingBox, PixelRegion

JPEG = "image/jpeg"
PNG = "image/png"
WEBP = "image/webp"
HEIC = "image/heic"
HEIF = "image/heif"

SUPPORTED_FORMATS = frozenset({JPEG, PNG, WEBP, HEIC, HEIF})
HEIC_FORMATS = frozenset({HEIC, HEIF})
# Formats that are never returned untouched, even when under budget
RECOMPRESS_FORMATS = frozenset({PNG})
GENERIC_CONTENT_TYPES = frozenset(
    {"", "application/octet-stream", "binary/octet-stream"}
)

EXTENSION_FORMATS = {
    ".jpg": JPEG,
    ".jpeg": JPEG,
    ".png": PNG,
    ".webp": WEBP,
    ".heic": HEIC,
    ".heif": HEIF,
}

FULL_FRAME = (0.0, 0.0, 100.0, 100.0)
NEAR_FULL_FRAME_PERCENT = 90.0


def get_file_extension(value: Optional[str]) -> Optional[str]:
    """Return the lowercased extension of a file name or URI, query stripped."""
    if not value:
        return None
    clean_value = value.split("?")[0]
    last_dot = clean_value.rfind(".")
    if last_dot < 0 or "/" in clean_value[last_dot:]:
        return None
    return clean_value[last_dot:].lower()


def normalize_content_type(content_type: Optional[str]) -> str:
    """Lowercase a content type, drop parameters and fix common aliases."""
    value = (content_type or "").split(";")[0].strip().lower()
    if value in ("image/jpg", "image/pjpeg"):
        return JPEG
    return value


def is_heic(content_type: Optional[str], file_name: Optional[str] = None) -> bool:
    """HEIC/HEIF detection by content type or file extension.

    Pickers frequently report HEIC files with a generic or wrong type, so
    either signal is enough.
    """
    value = normalize_content_type(content_type)
    if "heic" in value or "heif" in value:
        return True
    return get_file_extension(file_name) in (".heic", ".heif")


def detect_format(content_type: Optional[str], file_name: Optional[str] = None) -> str:
    """Resolve the effective format of a source.

    Falls back to the file extension when the declared type is generic.
    HEIC sources always resolve to ``image/heic`` or ``image/heif``.
    """
    value = normalize_content_type(content_type)
    if is_heic(value, file_name):
        if value in HEIC_FORMATS:
            return value
        return EXTENSION_FORMATS.get(get_file_extension(file_name) or "", HEIC)
    if value in GENERIC_CONTENT_TYPES:
        return EXTENSION_FORMATS.get(get_file_extension(file_name) or "", value)
    return value


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up."""
    return int(math.floor(value + 0.5))


def quality_percent(quality: float) -> int:
    """Map a 0-1 encode quality onto the 1-100 scale encoders take."""
    return max(1, min(100, round_half_up(quality * 100)))


def scale_to_fit(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """Scale dimensions uniformly so neither exceeds ``max_dimension``."""
    if width <= max_dimension and height <= max_dimension:
        return width, height
    ratio = min(max_dimension / width, max_dimension / height)
    return max(1, round_half_up(width * ratio)), max(1, round_half_up(height * ratio))


def shrink(width: int, height: int, factor: float) -> Tuple[int, int]:
    return max(1, round_half_up(width * factor)), max(1, round_half_up(height * factor))


def center_square(width: int, height: int) -> Tuple[float, float, float, float]:
    """Largest centered square as a (left, top, right, bottom) box."""
    size = min(width, height)
    left = (width - size) / 2
    top = (height - size) / 2
    return (left, top, left + size, top + size)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_bbox(bbox: Any) -> bool:
    """Check a bounding box (model or 4-sequence) against the frame invariants."""
    if isinstance(bbox, BoundingBox):
        values: Sequence[Any] = bbox.as_tuple()
    elif isinstance(bbox, (list, tuple)) and len(bbox) == 4:
        values = bbox
    else:
        return False

    if not all(_is_number(v) and math.isfinite(v) for v in values):
        return False

    x, y, width, height = values
    if x < 0 or y < 0 or width <= 0 or height <= 0:
        return False
    if x + width > 100 or y + height > 100:
        return False
    return True


def clamp_bbox(bbox: Sequence[float]) -> Tuple[float, float, float, float]:
    """Clamp each percentage into [0, 100]."""
    x, y, width, height = (min(100.0, max(0.0, float(v))) for v in bbox)
    return (x, y, width, height)


def is_near_full_frame(bbox: Sequence[float]) -> bool:
    """Boxes covering the whole frame gain nothing from a dedicated crop."""
    if tuple(float(v) for v in bbox) == FULL_FRAME:
        return True
    return bbox[2] >= NEAR_FULL_FRAME_PERCENT and bbox[3] >= NEAR_FULL_FRAME_PERCENT


def bbox_to_pixel_region(bbox: BoundingBox, width: int, height: int) -> PixelRegion:
    """
    Convert a percentage bounding box into a clamped pixel region.

    The clamp keeps the region inside the source even when rounding pushes
    the raw size past the edge, and never lets it collapse below one pixel.
    """
    src_x = round_half_up(bbox.x * width / 100)
    src_y = round_half_up(bbox.y * height / 100)
    raw_width = round_half_up(bbox.width * width / 100)
    raw_height = round_half_up(bbox.height * height / 100)

    src_x = min(max(0, src_x), width - 1)
    src_y = min(max(0, src_y), height - 1)
    src_width = max(1, min(raw_width, width - src_x))
    src_height = max(1, min(raw_height, height - src_y))

    return PixelRegion(left=src_x, top=src_y, width=src_width, height=src_height)


def generate_base_id() -> str:
    return str(uuid.uuid4())


def build_storage_paths(namespace: str, base_id: str) -> Tuple[str, str]:
    """
    Storage paths for a main image and its thumbnail.

    Args:
        namespace: Per-user path prefix
        base_id: Identifier shared by both artifacts

    Returns:
        Tuple of (main path, thumbnail path)
    """
    prefix = validate_namespace(namespace)
    return f"{prefix}/{base_id}.jpg", f"{prefix}/{base_id}_thumb.jpg"


def validate_namespace(namespace: str) -> str:
    value = (namespace or "").strip().strip("/")
    if not value or "/" in value or value in (".", ".."):
        raise InvalidNamespace(f"Invalid storage namespace: {namespace!r}")
    return value
