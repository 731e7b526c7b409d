"""Editable-region masks in the image-edit convention.

Transparent (0) pixels may be changed by the edit service, opaque (255)
pixels are protected. Masks leaving this module are strictly binary.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
from PIL import Image, ImageFilter

from ..config import MaskParams
from ..errors import DimensionError, MaskDerivationFailed
from ..utils.image_codec import ImageBuffer
from ..utils.normalizer import normalize

logger = logging.getLogger(__name__)

PROTECTED = 255
EDITABLE = 0


class MaskMode(str, Enum):
    GARMENT_BOX = "garment_box"
    ALPHA = "alpha"


@dataclass(frozen=True, eq=False)
class Mask:
    """Single-channel mask over the canvas: 255 protected, 0 editable."""

    alpha: np.ndarray

    def __post_init__(self):
        alpha = np.array(self.alpha, dtype=np.uint8)
        if alpha.ndim != 2:
            raise DimensionError("mask must be single-channel", stage="mask", shape=alpha.shape)
        alpha.flags.writeable = False
        object.__setattr__(self, "alpha", alpha)

    @property
    def size(self) -> tuple[int, int]:
        return (self.alpha.shape[1], self.alpha.shape[0])

    @property
    def editable(self) -> np.ndarray:
        return self.alpha == EDITABLE

    @property
    def editable_fraction(self) -> float:
        return float(self.editable.mean())

    def is_binary(self) -> bool:
        return bool(np.isin(self.alpha, (EDITABLE, PROTECTED)).all())

    def to_image(self) -> ImageBuffer:
        """Black RGBA image carrying the mask in its alpha channel."""
        pixels = np.zeros(self.alpha.shape + (4,), dtype=np.uint8)
        pixels[:, :, 3] = self.alpha
        return ImageBuffer(pixels, has_alpha=True)

    @classmethod
    def from_image(cls, image: ImageBuffer) -> "Mask":
        """Read a mask back from its alpha channel."""
        if not image.has_alpha:
            raise MaskDerivationFailed("mask image has no alpha channel", stage="mask", size=image.size)
        return cls(image.alpha)


def garment_box_mask(canvas_size: tuple[int, int], params: MaskParams | None = None) -> Mask:
    """Centred torso box (chest plus sleeve margins) editable, rest protected."""
    params = params or MaskParams()
    width, height = _check_size(canvas_size)

    x0 = round(width * params.box_x)
    y0 = round(height * params.box_y)
    x1 = min(width, round(width * (params.box_x + params.box_width)))
    y1 = min(height, round(height * (params.box_y + params.box_height)))

    alpha = np.full((height, width), PROTECTED, dtype=np.uint8)
    alpha[y0:y1, x0:x1] = EDITABLE
    logger.debug(f"Garment box mask: x {x0}-{x1}, y {y0}-{y1} on {width}x{height}")
    return Mask(alpha)


def alpha_derived_mask(
    canvas_size: tuple[int, int],
    cutout: ImageBuffer,
    params: MaskParams | None = None,
) -> Mask:
    """Editable region following the silhouette of a background-removed cutout."""
    params = params or MaskParams()
    width, height = _check_size(canvas_size)

    if not cutout.has_alpha:
        raise MaskDerivationFailed("cutout has no alpha channel", stage="mask", size=cutout.size)

    guide = normalize(cutout, width, height)
    subject = guide.alpha >= max(params.threshold, 1)
    if not subject.any():
        raise MaskDerivationFailed("cutout alpha is empty", stage="mask", threshold=params.threshold)
    if subject.all():
        raise MaskDerivationFailed("cutout has no transparent background", stage="mask", threshold=params.threshold)

    silhouette = Image.fromarray(np.where(subject, 255, 0).astype(np.uint8))
    if params.grow:
        silhouette = silhouette.filter(ImageFilter.MaxFilter(2 * params.grow + 1))
    if params.feather_radius:
        silhouette = silhouette.filter(ImageFilter.BoxBlur(params.feather_radius))

    # Feathering smooths the contour; re-binarizing keeps the mask hard-edged
    editable = np.asarray(silhouette) >= 128
    return Mask(np.where(editable, EDITABLE, PROTECTED).astype(np.uint8))


def build_mask(
    canvas_size: tuple[int, int],
    mode: MaskMode = MaskMode.GARMENT_BOX,
    params: MaskParams | None = None,
    cutout: ImageBuffer | None = None,
) -> Mask:
    """Build a binary mask over the canvas in the requested mode."""
    mode = MaskMode(mode)
    if mode is MaskMode.ALPHA:
        if cutout is None:
            raise MaskDerivationFailed("alpha mode needs a cutout image", stage="mask")
        mask = alpha_derived_mask(canvas_size, cutout, params)
    else:
        mask = garment_box_mask(canvas_size, params)

    if not mask.is_binary():
        raise MaskDerivationFailed("mask is not binary", stage="mask", mode=mode.value)
    return mask


def _check_size(canvas_size: tuple[int, int]) -> tuple[int, int]:
    width, height = canvas_size
    if width <= 0 or height <= 0:
        raise DimensionError("mask canvas must be positive", stage="mask", width=width, height=height)
    return width, height
