"""Fitting core: masks, detection, pose, placement and the composite guard."""

from .composite_guard import CompositeGuard
from .human_detector import HumanRegionDetector, merge_regions, select_region
from .mask_builder import Mask, MaskMode, alpha_derived_mask, build_mask, garment_box_mask
from .placement import GarmentInput, GarmentPlacementEngine, PlacementResult, fit_rect
from .pose_estimator import PoseEstimator

__all__ = [
    "CompositeGuard",
    "HumanRegionDetector",
    "merge_regions",
    "select_region",
    "Mask",
    "MaskMode",
    "alpha_derived_mask",
    "build_mask",
    "garment_box_mask",
    "GarmentInput",
    "GarmentPlacementEngine",
    "PlacementResult",
    "fit_rect",
    "PoseEstimator",
]
