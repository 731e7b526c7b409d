"""Data models for the fitting pipeline."""

from .garment import GarmentCategory, GarmentItem
from .geometry import (
    BoundingBox,
    HumanRegion,
    Placement,
    Point,
    PoseKeypoints,
    ShoulderCalibration,
)
from .session import FittingSession, FittingState, GarmentFailure

__all__ = [
    "GarmentCategory",
    "GarmentItem",
    "BoundingBox",
    "HumanRegion",
    "Placement",
    "Point",
    "PoseKeypoints",
    "ShoulderCalibration",
    "FittingSession",
    "FittingState",
    "GarmentFailure",
]
