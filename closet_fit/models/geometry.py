"""Geometry models: points, boxes, pose keypoints, human regions, placements."""

import math

from pydantic import BaseModel, Field, computed_field

from .garment import GarmentCategory


class Point(BaseModel):
    """2D point in canvas pixel coordinates."""
    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


class BoundingBox(BaseModel):
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return Point(x=(self.min_x + self.max_x) / 2, y=(self.min_y + self.max_y) / 2)

    @property
    def area(self) -> float:
        return self.width * self.height

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            min_x=min(self.min_x, other.min_x),
            min_y=min(self.min_y, other.min_y),
            max_x=max(self.max_x, other.max_x),
            max_y=max(self.max_y, other.max_y),
        )


KEYPOINT_NAMES = (
    "left_shoulder", "right_shoulder",
    "left_hip", "right_hip",
    "left_elbow", "right_elbow",
    "left_knee", "right_knee",
    "left_ankle", "right_ankle",
)


class PoseKeypoints(BaseModel):
    """Named anatomical points. Any of them may be missing."""

    left_shoulder: Point | None = None
    right_shoulder: Point | None = None
    left_hip: Point | None = None
    right_hip: Point | None = None
    left_elbow: Point | None = None
    right_elbow: Point | None = None
    left_knee: Point | None = None
    right_knee: Point | None = None
    left_ankle: Point | None = None
    right_ankle: Point | None = None

    @property
    def has_shoulders(self) -> bool:
        return self.left_shoulder is not None and self.right_shoulder is not None

    @property
    def has_hips(self) -> bool:
        return self.left_hip is not None and self.right_hip is not None

    @property
    def shoulder_center(self) -> Point | None:
        if not self.has_shoulders:
            return None
        return _midpoint(self.left_shoulder, self.right_shoulder)

    @property
    def shoulder_span(self) -> float | None:
        if not self.has_shoulders:
            return None
        return abs(self.right_shoulder.x - self.left_shoulder.x)

    @property
    def hip_center(self) -> Point | None:
        if not self.has_hips:
            return None
        return _midpoint(self.left_hip, self.right_hip)

    @property
    def hip_span(self) -> float | None:
        if not self.has_hips:
            return None
        return abs(self.right_hip.x - self.left_hip.x)

    @property
    def knee_y(self) -> float | None:
        """Left knee first, like the ankle: the body is assumed roughly frontal."""
        knee = self.left_knee or self.right_knee
        return knee.y if knee else None

    @property
    def ankle_y(self) -> float | None:
        ankle = self.left_ankle or self.right_ankle
        return ankle.y if ankle else None

    def present(self) -> list[str]:
        """Names of the populated keypoints."""
        return [name for name in KEYPOINT_NAMES if getattr(self, name) is not None]


class HumanRegion(BaseModel):
    """A detected area believed to contain one person."""

    bbox: BoundingBox
    pixel_count: int = Field(default=0, description="Skin samples in the cluster(s)")
    pose: PoseKeypoints = Field(default_factory=PoseKeypoints)
    is_default: bool = Field(default=False, description="Synthesized because nothing was detected")

    @computed_field
    @property
    def center(self) -> Point:
        return self.bbox.center

    @property
    def width(self) -> float:
        return self.bbox.width

    @property
    def height(self) -> float:
        return self.bbox.height


class ShoulderCalibration(BaseModel):
    """Operator-supplied shoulder points in canonical-canvas coordinates."""
    left_shoulder: Point
    right_shoulder: Point


class Placement(BaseModel):
    """Target rectangle for one garment on the canvas."""

    category: GarmentCategory
    x: float
    y: float
    width: float
    height: float
    rotation: float = 0.0  # degrees, clockwise on screen
    z_order: int = 0
    source: str = "pose"  # "pose" or "default"

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return Point(x=self.x + self.width / 2, y=self.y + self.height / 2)

    def box(self) -> tuple[int, int, int, int]:
        """Integer (left, top, right, bottom) pixel box."""
        return (
            int(math.floor(self.x)),
            int(math.floor(self.y)),
            int(math.ceil(self.right)),
            int(math.ceil(self.bottom)),
        )


def _midpoint(a: Point, b: Point) -> Point:
    return Point(x=(a.x + b.x) / 2, y=(a.y + b.y) / 2)
