"""Pillow-backed implementations of the codec capabilities."""

import io
from typing import Optional

from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

from .exceptions import with_error_handling
from .image_utils import quality_percent
from .protocols import Box

_heif_registered = False

EXIF_ORIENTATION = 0x0112


def ensure_heif_support() -> None:
    """Register the HEIF opener with Pillow once per process."""
    global _heif_registered
    if not _heif_registered:
        register_heif_opener()
        _heif_registered = True


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == "RGB":
        return image
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        # JPEG has no alpha; flatten onto white
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return image.convert("RGB")


class PillowImageCodec:
    """Decode/resize/encode with Pillow, always emitting baseline JPEG."""

    resample = Image.Resampling.LANCZOS

    @with_error_handling
    def decode(self, data: bytes) -> Image.Image:
        image = Image.open(io.BytesIO(data))
        image.load()
        # pixels are stored sensor-side up; rotate to how the photo displays
        return ImageOps.exif_transpose(image)

    @with_error_handling
    def is_upright(self, data: bytes) -> bool:
        with Image.open(io.BytesIO(data)) as image:
            return image.getexif().get(EXIF_ORIENTATION, 1) == 1

    @with_error_handling
    def encode(self, pixels: Image.Image, quality: float) -> bytes:
        output_stream = io.BytesIO()
        _to_rgb(pixels).save(
            output_stream,
            format="JPEG",
            quality=quality_percent(quality),
            progressive=False,
        )
        return output_stream.getvalue()

    @with_error_handling
    def resize(
        self,
        pixels: Image.Image,
        width: int,
        height: int,
        box: Optional[Box] = None,
    ) -> Image.Image:
        if box is None and (pixels.width, pixels.height) == (width, height):
            return pixels
        return pixels.resize((width, height), self.resample, box=box)


class PillowHeicDecoder:
    """Local HEIC/HEIF conversion through pillow-heif's Pillow plugin.

    Multi-image containers yield their primary (first) frame.
    """

    def __init__(self) -> None:
        ensure_heif_support()

    def convert(self, data: bytes, quality: float) -> bytes:
        image = Image.open(io.BytesIO(data))
        image.seek(0)
        image.load()
        image = ImageOps.exif_transpose(image)
        output_stream = io.BytesIO()
        _to_rgb(image).save(output_stream, format="JPEG", quality=quality_percent(quality))
        return output_stream.getvalue()
