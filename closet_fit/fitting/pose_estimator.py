"""Keypoints from fixed anthropometric ratios.

No pose model is involved: keypoints are proportional guesses inside a
region's bounding box, or extrapolated from two operator-supplied shoulder
points. The ratios are approximations meant to be recalibrated.
"""

from ..config import PoseConfig
from ..models import BoundingBox, HumanRegion, Point, PoseKeypoints, ShoulderCalibration


class PoseEstimator:
    """Derives PoseKeypoints from region proportions or manual calibration."""

    def __init__(self, config: PoseConfig | None = None):
        self.config = config or PoseConfig()

    def from_bbox(self, bbox: BoundingBox) -> PoseKeypoints:
        """Place shoulders, hips and knees at fixed fractions of the box."""
        c = self.config
        width = bbox.width
        height = bbox.height
        center_x = bbox.center.x

        head_height = height * c.head_ratio
        shoulder_y = bbox.min_y + head_height + height * c.shoulder_offset_ratio
        hip_y = bbox.min_y + height * c.hip_ratio
        knee_y = bbox.min_y + height * c.knee_ratio

        return PoseKeypoints(
            left_shoulder=Point(x=center_x - width * c.shoulder_spread, y=shoulder_y),
            right_shoulder=Point(x=center_x + width * c.shoulder_spread, y=shoulder_y),
            left_hip=Point(x=center_x - width * c.hip_spread, y=hip_y),
            right_hip=Point(x=center_x + width * c.hip_spread, y=hip_y),
            left_knee=Point(x=center_x - width * c.knee_spread, y=knee_y),
            right_knee=Point(x=center_x + width * c.knee_spread, y=knee_y),
        )

    def default_pose(self, canvas_size: tuple[int, int]) -> PoseKeypoints:
        """Conservative canvas-proportional pose for when nobody was found.

        Shoulders sit at 40% of the canvas height, safely under a typical head.
        """
        c = self.config
        canvas_width, canvas_height = canvas_size
        center_x = canvas_width / 2

        def pair(spread: float, y_ratio: float) -> tuple[Point, Point]:
            y = canvas_height * y_ratio
            return (
                Point(x=center_x - canvas_width * spread, y=y),
                Point(x=center_x + canvas_width * spread, y=y),
            )

        left_shoulder, right_shoulder = pair(c.shoulder_spread, c.default_shoulder_y)
        left_hip, right_hip = pair(c.hip_spread, c.hip_ratio)
        left_knee, right_knee = pair(c.knee_spread, c.knee_ratio)
        return PoseKeypoints(
            left_shoulder=left_shoulder,
            right_shoulder=right_shoulder,
            left_hip=left_hip,
            right_hip=right_hip,
            left_knee=left_knee,
            right_knee=right_knee,
        )

    def default_region(self, canvas_size: tuple[int, int]) -> HumanRegion:
        c = self.config
        canvas_width, canvas_height = canvas_size
        width = canvas_width * c.default_width
        height = canvas_height * c.default_height
        center_x = canvas_width / 2
        center_y = canvas_height / 2
        bbox = BoundingBox(
            min_x=center_x - width / 2,
            min_y=center_y - height / 2,
            max_x=center_x + width / 2,
            max_y=center_y + height / 2,
        )
        return HumanRegion(bbox=bbox, pose=self.default_pose(canvas_size), is_default=True)

    def estimate(self, region: HumanRegion) -> PoseKeypoints:
        if region.is_default and region.pose.has_shoulders:
            return region.pose
        return self.from_bbox(region.bbox)

    def from_calibration(self, calibration: ShoulderCalibration) -> PoseKeypoints:
        """Use operator shoulders and derive the rest from the implied body box."""
        c = self.config
        left = calibration.left_shoulder
        right = calibration.right_shoulder
        if left.x > right.x:
            left, right = right, left

        span = right.x - left.x
        if span <= 0:
            raise ValueError("calibration shoulders must be horizontally apart")

        # Shoulders span 2 * shoulder_spread of the body width
        body_width = span / (2 * c.shoulder_spread)
        body_height = body_width * c.calibration_height_ratio
        shoulder_y = (left.y + right.y) / 2
        min_y = shoulder_y - body_height * (c.head_ratio + c.shoulder_offset_ratio)
        center_x = (left.x + right.x) / 2

        bbox = BoundingBox(
            min_x=center_x - body_width / 2,
            min_y=min_y,
            max_x=center_x + body_width / 2,
            max_y=min_y + body_height,
        )
        derived = self.from_bbox(bbox)
        return derived.model_copy(update={"left_shoulder": left, "right_shoulder": right})
