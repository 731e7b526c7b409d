"""External service clients."""

from .background_removal_client import BackgroundRemovalClient
from .image_edit_client import ImageEditClient

__all__ = ["BackgroundRemovalClient", "ImageEditClient"]
