"""Image decoding/encoding and the immutable RGBA buffer used by every stage."""

import base64
import binascii
import io
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import DimensionError, InvalidImage

EXIF_ORIENTATION = 0x0112


@dataclass(frozen=True, eq=False)
class ImageBuffer:
    """RGBA pixels (height, width, 4), row-major, read-only.

    Stages never mutate a buffer they were given; they build a new one.
    """

    pixels: np.ndarray
    has_alpha: bool = False
    orientation: int = 1

    def __post_init__(self):
        pixels = np.asarray(self.pixels, dtype=np.uint8)
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise InvalidImage("pixel data must be RGBA (height, width, 4)", stage="buffer", shape=pixels.shape)
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise InvalidImage("image has zero dimension", stage="buffer", shape=pixels.shape)
        if pixels.flags.writeable or pixels.base is not None:
            pixels = pixels.copy()
        pixels.flags.writeable = False
        object.__setattr__(self, "pixels", pixels)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[:, :, :3]

    @classmethod
    def from_pil(cls, image: Image.Image, has_alpha: bool | None = None, orientation: int = 1) -> "ImageBuffer":
        if has_alpha is None:
            has_alpha = _pil_has_alpha(image)
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        return cls(np.array(rgba, dtype=np.uint8), has_alpha=has_alpha, orientation=orientation)

    @classmethod
    def blank(cls, size: tuple[int, int], color: tuple[int, int, int, int] = (0, 0, 0, 0)) -> "ImageBuffer":
        width, height = size
        if width <= 0 or height <= 0:
            raise DimensionError("blank buffer needs a positive size", stage="buffer", width=width, height=height)
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[:, :] = color
        return cls(pixels, has_alpha=color[3] != 255)

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels))

    def with_pixels(self, pixels: np.ndarray, has_alpha: bool | None = None) -> "ImageBuffer":
        """New buffer with replaced pixels, keeping orientation metadata."""
        return ImageBuffer(
            pixels,
            has_alpha=self.has_alpha if has_alpha is None else has_alpha,
            orientation=self.orientation,
        )

    def equals(self, other: "ImageBuffer") -> bool:
        return self.size == other.size and np.array_equal(self.pixels, other.pixels)


def _pil_has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA", "RGBa", "La"):
        return True
    return image.mode == "P" and "transparency" in image.info


def decode_image(data: bytes) -> ImageBuffer:
    """Decode encoded image bytes (PNG, JPEG, WebP...) to a buffer.

    The EXIF orientation is recorded, not applied; ImageNormalizer applies it.
    """
    if not data:
        raise InvalidImage("empty image data", stage="decode")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise InvalidImage(f"could not decode image: {e}", stage="decode", length=len(data)) from e

    if image.width == 0 or image.height == 0:
        raise InvalidImage("image has zero dimension", stage="decode", width=image.width, height=image.height)

    orientation = image.getexif().get(EXIF_ORIENTATION, 1)
    if orientation not in range(1, 9):
        orientation = 1
    return ImageBuffer.from_pil(image, orientation=orientation)


def decode_data_url(data: str) -> ImageBuffer:
    """Decode a base64 data URL ("data:image/png;base64,...") or raw base64."""
    return decode_image(data_url_to_bytes(data))


def data_url_to_bytes(data: str) -> bytes:
    if data.startswith("data:"):
        # Remove data URL prefix (e.g., "data:image/png;base64,")
        _, _, data = data.partition(",")
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidImage(f"invalid base64 image data: {e}", stage="decode") from e


def encode_png(buffer: ImageBuffer) -> bytes:
    output = io.BytesIO()
    buffer.to_pil().save(output, format="PNG")
    return output.getvalue()


def encode_data_url(buffer: ImageBuffer) -> str:
    return "data:image/png;base64," + base64.b64encode(encode_png(buffer)).decode("utf-8")


def ensure_canvas(buffer: ImageBuffer, size: tuple[int, int], stage: str, name: str = "image") -> ImageBuffer:
    """Stage-boundary check that a buffer sits on the canonical canvas."""
    if buffer.size != tuple(size):
        raise DimensionError(
            f"{name} is not on the canonical canvas",
            stage=stage,
            expected=f"{size[0]}x{size[1]}",
            actual=f"{buffer.width}x{buffer.height}",
        )
    return buffer
