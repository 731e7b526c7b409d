"""Skin-tone clustering to locate people on the canvas."""

import logging
from collections import deque

import numpy as np

from ..config import DetectorConfig
from ..errors import AmbiguousHumanRegion, NoHumanRegionDetected
from ..models import BoundingBox, HumanRegion
from ..utils.image_codec import ImageBuffer
from .pose_estimator import PoseEstimator

logger = logging.getLogger(__name__)

NEIGHBOURS = ((0, -1), (0, 1), (-1, 0), (1, 0))


class HumanRegionDetector:
    """Finds candidate human regions by flood-filling skin-tone samples.

    The canvas is sampled on a coarse grid; connected skin samples form
    clusters, small clusters are noise, and nearby clusters (face and hands
    of one person) are merged. Never returns an empty list.
    """

    def __init__(self, config: DetectorConfig | None = None, pose_estimator: PoseEstimator | None = None):
        self.config = config or DetectorConfig()
        self.pose_estimator = pose_estimator or PoseEstimator()

    def skin_grid(self, canvas: ImageBuffer) -> np.ndarray:
        """Boolean skin classification of every grid_step-th pixel."""
        c = self.config
        step = c.grid_step
        samples = canvas.pixels[::step, ::step].astype(np.int16)
        r, g, b, a = samples[..., 0], samples[..., 1], samples[..., 2], samples[..., 3]
        return (
            (a >= c.min_alpha)
            & (r >= c.r_range[0]) & (r <= c.r_range[1])
            & (g >= c.g_range[0]) & (g <= c.g_range[1])
            & (b >= c.b_range[0]) & (b <= c.b_range[1])
        )

    def clusters(self, skin: np.ndarray) -> list[np.ndarray]:
        """4-connected components of the skin grid, in raster order of their seeds."""
        rows, cols = skin.shape
        # Plain lists: per-cell numpy indexing is slow inside the BFS
        unvisited = skin.tolist()
        found = []
        for seed_row, seed_col in np.argwhere(skin).tolist():
            if not unvisited[seed_row][seed_col]:
                continue
            unvisited[seed_row][seed_col] = False
            queue = deque([(seed_row, seed_col)])
            cells = []
            while queue:
                row, col = queue.popleft()
                cells.append((row, col))
                for d_row, d_col in NEIGHBOURS:
                    n_row, n_col = row + d_row, col + d_col
                    if 0 <= n_row < rows and 0 <= n_col < cols and unvisited[n_row][n_col]:
                        unvisited[n_row][n_col] = False
                        queue.append((n_row, n_col))
            found.append(np.array(cells, dtype=np.int32))
        return found

    def detect(self, canvas: ImageBuffer) -> list[HumanRegion]:
        """Ordered candidate regions for the canvas, each with a derived pose."""
        c = self.config
        step = c.grid_step
        skin = self.skin_grid(canvas)

        regions = []
        for cells in self.clusters(skin):
            if len(cells) < c.min_cluster_size:
                continue
            ys = cells[:, 0] * step
            xs = cells[:, 1] * step
            bbox = BoundingBox(min_x=float(xs.min()), min_y=float(ys.min()), max_x=float(xs.max()), max_y=float(ys.max()))
            if bbox.width <= 0 or bbox.height <= 0:
                logger.debug(f"Ignoring degenerate cluster of {len(cells)} samples")
                continue
            regions.append(HumanRegion(bbox=bbox, pixel_count=len(cells)))

        raw_count = len(regions)
        regions = merge_regions(regions, c.merge_distance_factor)
        logger.debug(f"Skin samples: {int(skin.sum())}, clusters kept: {raw_count}, after merge: {len(regions)}")

        if not regions:
            error = NoHumanRegionDetected("no trusted skin cluster", stage="detect", size=canvas.size)
            logger.info(f"{error}; using default region")
            return [self.pose_estimator.default_region(canvas.size)]

        return [
            region.model_copy(update={"pose": self.pose_estimator.from_bbox(region.bbox)})
            for region in regions
        ]


def should_merge(first: HumanRegion, second: HumanRegion, factor: float = 1.5) -> bool:
    """Same person if the centers are closer than factor x their average width."""
    average_width = (first.width + second.width) / 2
    return first.center.distance_to(second.center) < average_width * factor


def merge_regions(regions: list[HumanRegion], factor: float = 1.5) -> list[HumanRegion]:
    """Merge regions pairwise until no pair qualifies. Order follows the first member."""
    merged = list(regions)
    changed = True
    while changed:
        changed = False
        for i in range(len(merged)):
            for j in range(i + 1, len(merged)):
                if should_merge(merged[i], merged[j], factor):
                    merged[i] = HumanRegion(
                        bbox=merged[i].bbox.union(merged[j].bbox),
                        pixel_count=merged[i].pixel_count + merged[j].pixel_count,
                    )
                    del merged[j]
                    changed = True
                    break
            if changed:
                break
    return merged


def select_region(regions: list[HumanRegion], index: int | None = None) -> HumanRegion:
    """Pick the region to dress. Several candidates without an index is a choice for the caller."""
    if not regions:
        raise NoHumanRegionDetected("no regions to select from", stage="region_selection")
    if index is None:
        if len(regions) == 1:
            return regions[0]
        raise AmbiguousHumanRegion(f"{len(regions)} people detected, choose one", regions=regions, count=len(regions))
    if not 0 <= index < len(regions):
        raise AmbiguousHumanRegion("region index out of range", regions=regions, index=index, count=len(regions))
    return regions[index]
