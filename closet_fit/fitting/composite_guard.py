"""Re-impose the original photo outside the edit mask.

An edit service may touch pixels it was told to leave alone. The guard
rebuilds the output so that every pixel whose feathered alpha is zero is
the original byte, and every pixel well inside the mask is the edited
byte. Only the feather band (at most feather_radius px wide) blends.
"""

import logging

import numpy as np
from PIL import Image, ImageFilter

from ..config import GuardConfig
from ..errors import DimensionError
from ..utils.image_codec import ImageBuffer
from ..utils.normalizer import normalize
from .mask_builder import Mask

logger = logging.getLogger(__name__)


class CompositeGuard:
    """Identity-preserving alpha-over of an edited image onto the original."""

    def __init__(self, config: GuardConfig | None = None):
        self.config = config or GuardConfig()

    def feather_alpha(self, mask: Mask) -> np.ndarray:
        """Patch alpha: editable -> 255, protected -> 0, binarized then feathered."""
        inverted = 255 - mask.alpha.astype(np.int16)
        binary = np.where(inverted > self.config.threshold, 255, 0).astype(np.uint8)
        radius = self.config.feather_radius
        if not radius:
            return binary
        # Box blur has an exact reach of `radius` px, which bounds the feather band
        feathered = Image.fromarray(binary).filter(ImageFilter.BoxBlur(radius))
        return np.asarray(feathered, dtype=np.uint8)

    def compose(self, original: ImageBuffer, mask: Mask, edited: ImageBuffer) -> ImageBuffer:
        """Final image: original outside the mask, edited inside, blended only in the feather band."""
        if mask.size != original.size:
            raise DimensionError(
                "mask is not on the original's canvas",
                stage="guard",
                expected=f"{original.width}x{original.height}",
                actual=f"{mask.size[0]}x{mask.size[1]}",
            )

        # "auto" output sizes differ from the request; bring them back onto the grid
        patch = normalize(edited, original.width, original.height)
        if patch.size != edited.size:
            logger.info(f"Edited image re-normalized {edited.width}x{edited.height} -> {patch.width}x{patch.height}")

        alpha = self.feather_alpha(mask).astype(np.uint32)[:, :, None]
        source = patch.rgb.astype(np.uint32)
        target = original.rgb.astype(np.uint32)

        # Integer over-blend: alpha 0 reproduces the original byte exactly
        blended = (source * alpha + target * (255 - alpha) + 127) // 255

        pixels = np.empty(original.pixels.shape, dtype=np.uint8)
        pixels[:, :, :3] = blended.astype(np.uint8)
        out_alpha = alpha[:, :, 0] + original.alpha.astype(np.uint32) * (255 - alpha[:, :, 0]) // 255
        pixels[:, :, 3] = np.minimum(out_alpha, 255).astype(np.uint8)
        return original.with_pixels(pixels)

    def protected_mismatches(self, original: ImageBuffer, final: ImageBuffer, mask: Mask) -> int:
        """Pixels with zero patch alpha that differ from the original. Always 0 for compose()."""
        untouched = self.feather_alpha(mask) == 0
        differs = np.any(original.pixels != final.pixels, axis=2)
        return int(np.count_nonzero(untouched & differs))
