"""Orientation correction and fill-resize onto the canonical canvas."""

import logging

from PIL import Image

from ..errors import DimensionError
from .image_codec import ImageBuffer, decode_image

logger = logging.getLogger(__name__)

# EXIF orientation -> transpose needed to show the image upright
ORIENTATION_TRANSPOSE = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}


def apply_orientation(image: ImageBuffer) -> ImageBuffer:
    """Rotate/flip pixels so they match the visual orientation."""
    method = ORIENTATION_TRANSPOSE.get(image.orientation)
    if method is None:
        if image.orientation == 1:
            return image
        return ImageBuffer(image.pixels, has_alpha=image.has_alpha)
    upright = image.to_pil().transpose(method)
    return ImageBuffer.from_pil(upright, has_alpha=image.has_alpha)


def normalize(
    image: ImageBuffer,
    target_width: int,
    target_height: int,
    resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> ImageBuffer:
    """Upright the image and stretch it to exactly target_width x target_height.

    "Fill" policy: no cropping, so the full field of view survives and every
    normalized buffer shares one pixel grid. Extreme aspect mismatches are
    distorted.
    """
    if target_width <= 0 or target_height <= 0:
        raise DimensionError(
            "target dimensions must be positive",
            stage="normalize",
            width=target_width,
            height=target_height,
        )

    upright = apply_orientation(image)
    if upright.size == (target_width, target_height):
        return upright

    logger.debug(f"Resizing {upright.width}x{upright.height} -> {target_width}x{target_height}")
    resized = upright.to_pil().resize((target_width, target_height), resample=resample)
    return ImageBuffer.from_pil(resized, has_alpha=upright.has_alpha)


def normalize_bytes(data: bytes, target_width: int, target_height: int) -> ImageBuffer:
    """Decode then normalize; undecodable input raises InvalidImage."""
    return normalize(decode_image(data), target_width, target_height)
