"""Image utilities: codec and canvas normalization."""

from .image_codec import (
    ImageBuffer,
    data_url_to_bytes,
    decode_data_url,
    decode_image,
    encode_data_url,
    encode_png,
    ensure_canvas,
)
from .normalizer import apply_orientation, normalize, normalize_bytes

__all__ = [
    "ImageBuffer",
    "data_url_to_bytes",
    "decode_data_url",
    "decode_image",
    "encode_data_url",
    "encode_png",
    "ensure_canvas",
    "apply_orientation",
    "normalize",
    "normalize_bytes",
]
