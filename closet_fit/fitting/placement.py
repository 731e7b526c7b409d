"""Heuristic garment placement and layered compositing.

Each category maps to a geometry function that turns pose keypoints into
a target rectangle. Garments are drawn back to front by z-order, each into
its own transparent layer, so one failed garment never touches the others.
Deterministic: no randomness anywhere.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageOps

from ..config import PlacementConfig
from ..errors import PlacementError
from ..models import GarmentCategory, GarmentFailure, GarmentItem, Placement, PoseKeypoints
from ..utils.image_codec import ImageBuffer, ensure_canvas
from ..utils.normalizer import apply_orientation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class GarmentInput:
    """A catalog garment together with its decoded, background-removed art."""
    item: GarmentItem
    image: ImageBuffer


@dataclass
class PlacementResult:
    image: ImageBuffer
    placements: list[Placement] = field(default_factory=list)
    failures: list[GarmentFailure] = field(default_factory=list)


GeometryFn = Callable[[PoseKeypoints], Rect | None]


# Geometry functions. Each returns None when a keypoint it needs is missing.

def _upper_body(offset: float, width: float, height: float) -> GeometryFn:
    """Anchored at the shoulders, sized by shoulder span."""
    def geometry(pose: PoseKeypoints) -> Rect | None:
        span = pose.shoulder_span
        if not span:
            return None
        left_x = min(pose.left_shoulder.x, pose.right_shoulder.x)
        return Rect(left_x - span * offset, pose.shoulder_center.y, span * width, span * height)
    return geometry


def _dress(pose: PoseKeypoints) -> Rect | None:
    span = pose.shoulder_span
    if not span:
        return None
    left_x = min(pose.left_shoulder.x, pose.right_shoulder.x)
    top = pose.shoulder_center.y
    knee_y = pose.knee_y
    height = abs(knee_y - top) + span * 0.2 if knee_y is not None else span * 2.0
    return Rect(left_x - span * 0.3, top, span * 1.6, height)


def _hip_frame(pose: PoseKeypoints) -> tuple[float, float, float, float] | None:
    """(hip center x, hip y, hip span, shoulder span), filling gaps from whichever side is known."""
    shoulder_span = pose.shoulder_span or None
    hip_span = pose.hip_span or None
    if pose.has_hips and hip_span:
        center = pose.hip_center
        return center.x, center.y, hip_span, shoulder_span or hip_span * 1.25
    if shoulder_span:
        center = pose.shoulder_center
        return center.x, center.y + shoulder_span * 1.2, shoulder_span, shoulder_span
    return None


def _lower_body(width_factor: float, height_fn: Callable[[PoseKeypoints, float, float], float]) -> GeometryFn:
    """Anchored at the hips, sized by hip span and leg keypoints."""
    def geometry(pose: PoseKeypoints) -> Rect | None:
        frame = _hip_frame(pose)
        if frame is None:
            return None
        center_x, hip_y, hip_span, shoulder_span = frame
        width = hip_span * width_factor
        return Rect(center_x - width / 2, hip_y, width, height_fn(pose, hip_y, shoulder_span))
    return geometry


def _pants_height(pose: PoseKeypoints, hip_y: float, span: float) -> float:
    if pose.knee_y is not None and pose.ankle_y is not None:
        return abs(pose.ankle_y - hip_y)
    return span * 1.5


def _shorts_height(pose: PoseKeypoints, hip_y: float, span: float) -> float:
    if pose.knee_y is not None:
        return abs(pose.knee_y - hip_y)
    return span * 0.8


def _skirt_height(pose: PoseKeypoints, hip_y: float, span: float) -> float:
    if pose.knee_y is not None:
        return abs(pose.knee_y - hip_y) * 1.2
    return span * 1.2


GEOMETRY: dict[GarmentCategory, GeometryFn] = {
    GarmentCategory.TOP: _upper_body(0.35, 1.7, 0.85),
    GarmentCategory.SHIRT: _upper_body(0.35, 1.7, 0.85),
    GarmentCategory.KNIT: _upper_body(0.35, 1.7, 0.85),
    GarmentCategory.HOODIE: _upper_body(0.3, 1.6, 1.0),
    GarmentCategory.OUTERWEAR: _upper_body(0.4, 1.8, 1.2),
    GarmentCategory.COAT: _upper_body(0.4, 1.8, 1.6),
    GarmentCategory.DOWN_JACKET: _upper_body(0.4, 1.8, 1.4),
    GarmentCategory.DRESS: _dress,
    GarmentCategory.PANTS: _lower_body(0.8, _pants_height),
    GarmentCategory.SHORTS: _lower_body(0.8, _shorts_height),
    GarmentCategory.SKIRT: _lower_body(1.0, _skirt_height),
}

# Canvas-proportional (x, y, width, height) used when keypoints are missing
DEFAULT_RECTS: dict[GarmentCategory, tuple[float, float, float, float]] = {
    GarmentCategory.TOP: (0.2, 0.25, 0.6, 0.25),
    GarmentCategory.SHIRT: (0.2, 0.25, 0.6, 0.25),
    GarmentCategory.KNIT: (0.2, 0.25, 0.6, 0.25),
    GarmentCategory.HOODIE: (0.2, 0.22, 0.6, 0.30),
    GarmentCategory.OUTERWEAR: (0.15, 0.22, 0.7, 0.35),
    GarmentCategory.COAT: (0.15, 0.22, 0.7, 0.40),
    GarmentCategory.DOWN_JACKET: (0.15, 0.22, 0.7, 0.40),
    GarmentCategory.PANTS: (0.25, 0.50, 0.5, 0.45),
    GarmentCategory.SHORTS: (0.25, 0.50, 0.5, 0.25),
    GarmentCategory.SKIRT: (0.25, 0.45, 0.5, 0.40),
    GarmentCategory.DRESS: (0.2, 0.25, 0.6, 0.60),
}
FALLBACK_RECT = (0.3, 0.3, 0.4, 0.4)


def default_rect(category: GarmentCategory, canvas_size: tuple[int, int]) -> Rect:
    fx, fy, fw, fh = DEFAULT_RECTS.get(category, FALLBACK_RECT)
    width, height = canvas_size
    return Rect(width * fx, height * fy, width * fw, height * fh)


def _tilt(left, right) -> float:
    """Angle of the line between two points, degrees clockwise on screen."""
    if left is None or right is None:
        return 0.0
    if left.x > right.x:
        left, right = right, left
    return math.degrees(math.atan2(right.y - left.y, right.x - left.x))


def fit_rect(art_size: tuple[int, int], placement: Placement) -> tuple[int, int, int, int]:
    """Aspect-preserving contain fit, centred in the placement. Returns (x, y, w, h)."""
    art_width, art_height = art_size
    scale = min(placement.width / art_width, placement.height / art_height)
    width = max(1, round(art_width * scale))
    height = max(1, round(art_height * scale))
    x = round(placement.x + (placement.width - width) / 2)
    y = round(placement.y + (placement.height - height) / 2)
    return x, y, width, height


class GarmentPlacementEngine:
    """Maps garments to rectangles on a pose and composites them in dressing order."""

    def __init__(self, config: PlacementConfig | None = None, canvas_size: tuple[int, int] | None = None):
        self.config = config or PlacementConfig()
        self.canvas_size = canvas_size

    def place(self, category: GarmentCategory, pose: PoseKeypoints | None, canvas_size: tuple[int, int]) -> Placement:
        """Target rectangle for a category, clamped below the shoulders and clipped to the canvas."""
        category = GarmentCategory.parse(category)
        pose = pose or PoseKeypoints()
        canvas_width, canvas_height = canvas_size

        geometry = GEOMETRY.get(category)
        rect = geometry(pose) if geometry else None
        source = "pose"
        if rect is None or rect.width <= 0 or rect.height <= 0:
            rect = default_rect(category, canvas_size)
            source = "default"

        rotation = 0.0
        if source == "pose":
            if category.is_lower_body and pose.has_hips:
                rotation = _tilt(pose.left_hip, pose.right_hip)
            elif pose.has_shoulders:
                rotation = _tilt(pose.left_shoulder, pose.right_shoulder)
            if abs(rotation) < self.config.min_rotation:
                rotation = 0.0

        x, y, width, height = rect.x, rect.y, rect.width, rect.height

        # Never draw over the face: the top edge stays at or below shoulder-center Y
        if pose.has_shoulders:
            y = max(y, pose.shoulder_center.y)

        left = max(0.0, x)
        top = max(0.0, y)
        right = min(float(canvas_width), x + width)
        bottom = min(float(canvas_height), y + height)
        if right - left < 1 or bottom - top < 1:
            raise PlacementError(
                "placement falls outside the canvas",
                stage="placement",
                category=category.value,
                rect=f"{x:.1f},{y:.1f},{width:.1f},{height:.1f}",
                canvas=f"{canvas_width}x{canvas_height}",
            )

        return Placement(
            category=category,
            x=left,
            y=top,
            width=right - left,
            height=bottom - top,
            rotation=rotation,
            z_order=category.z_order,
            source=source,
        )

    def render_layer(self, garment: ImageBuffer, placement: Placement, canvas_size: tuple[int, int]) -> ImageBuffer:
        """Draw one garment into a transparent canvas-size layer."""
        art_buffer = apply_orientation(garment)
        x, y, width, height = fit_rect(art_buffer.size, placement)
        art = art_buffer.to_pil().resize((width, height), resample=Image.Resampling.LANCZOS)
        art = self._soften_edges(art)

        if placement.rotation:
            center_x, center_y = x + width / 2, y + height / 2
            art = art.rotate(-placement.rotation, resample=Image.Resampling.BICUBIC, expand=True)
            width, height = art.size
            x = round(center_x - width / 2)
            y = round(center_y - height / 2)

        layer = Image.new("RGBA", canvas_size, (0, 0, 0, 0))
        layer.paste(art, (x, y))
        if placement.source == "pose":
            layer = Image.alpha_composite(layer, self._shadow(canvas_size, x, y, width, height))

        pixels = np.array(layer)
        # Rotation may swing corners upward; nothing lands above the placement top
        pixels[: int(math.floor(placement.y))] = 0
        return ImageBuffer(pixels, has_alpha=True)

    def _soften_edges(self, art: Image.Image) -> Image.Image:
        radius = self.config.edge_softening
        if not radius:
            return art
        alpha = art.getchannel("A")
        padded = ImageOps.expand(alpha, border=radius, fill=0)
        blurred = padded.filter(ImageFilter.BoxBlur(radius)).crop(
            (radius, radius, radius + art.width, radius + art.height)
        )
        softened = art.copy()
        softened.putalpha(ImageChops.darker(alpha, blurred))
        return softened

    def _shadow(self, canvas_size: tuple[int, int], x: int, y: int, width: int, height: int) -> Image.Image:
        """Low-opacity dark bands along the lower and trailing edges."""
        shadow = Image.new("RGBA", canvas_size, (0, 0, 0, 0))
        offset = self.config.shadow_offset
        opacity = round(255 * self.config.shadow_opacity)
        if not offset or not opacity:
            return shadow
        draw = ImageDraw.Draw(shadow)
        fill = (0, 0, 0, opacity)
        draw.rectangle((x - offset, y + height - offset, x + width + offset - 1, y + height + offset - 1), fill=fill)
        draw.rectangle((x + width - offset, y, x + width - 1, y + height - 1), fill=fill)
        return shadow

    def _render_one(self, garment: GarmentInput, pose: PoseKeypoints | None, canvas_size: tuple[int, int]):
        placement = self.place(garment.item.category, pose, canvas_size)
        return placement, self.render_layer(garment.image, placement, canvas_size)

    def render(self, canvas: ImageBuffer, garments: list[GarmentInput], pose: PoseKeypoints | None) -> PlacementResult:
        """Composite all garments onto the canvas, back to front."""
        if self.canvas_size is not None:
            ensure_canvas(canvas, self.canvas_size, stage="placement", name="person canvas")

        ordered = [g for _, g in sorted(enumerate(garments), key=lambda pair: (pair[1].item.z_order, pair[0]))]

        def job(garment: GarmentInput):
            try:
                return self._render_one(garment, pose, canvas.size)
            except (PlacementError, ValueError, OSError) as e:
                return e

        if self.config.max_workers > 1 and len(ordered) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                outcomes = list(pool.map(job, ordered))
        else:
            outcomes = [job(garment) for garment in ordered]

        result = canvas.to_pil()
        placements = []
        failures = []
        for garment, outcome in zip(ordered, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Garment {garment.item.id} ({garment.item.category.value}) dropped: {outcome}")
                failures.append(GarmentFailure(
                    garment_id=garment.item.id,
                    category=garment.item.category.value,
                    error=str(outcome),
                ))
                continue
            placement, layer = outcome
            placements.append(placement)
            result = Image.alpha_composite(result, layer.to_pil())

        return PlacementResult(
            image=ImageBuffer.from_pil(result, has_alpha=canvas.has_alpha),
            placements=placements,
            failures=failures,
        )
