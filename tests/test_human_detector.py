"""Tests for skin-tone region detection and region selection."""

import numpy as np
import pytest

from closet_fit.config import DetectorConfig
from closet_fit.errors import AmbiguousHumanRegion, NoHumanRegionDetected
from closet_fit.fitting import HumanRegionDetector, merge_regions, select_region
from closet_fit.fitting.human_detector import should_merge
from closet_fit.models import BoundingBox, HumanRegion
from closet_fit.utils import decode_image
from tests.conftest import person_image, png_bytes


@pytest.fixture
def detector():
    return HumanRegionDetector()


def region(min_x, min_y, max_x, max_y, pixel_count=100):
    return HumanRegion(
        bbox=BoundingBox(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y),
        pixel_count=pixel_count,
    )


class TestSkinGrid:
    """Tests for the coarse skin classification grid."""

    def test_grid_is_sampled_every_step(self, detector, one_person_png):
        skin = detector.skin_grid(decode_image(one_person_png))

        assert skin.shape == (1536 // 4, 1024 // 4)
        assert skin[200, 128]
        assert not skin[0, 0]

    def test_transparent_pixels_are_not_skin(self, detector, person_cutout_png):
        cutout = decode_image(person_cutout_png)

        skin = detector.skin_grid(cutout)

        assert skin[200, 128]
        assert not skin[10, 10]

    def test_clusters_are_four_connected(self, detector):
        skin = np.array([
            [1, 1, 0, 0],
            [0, 0, 0, 1],
            [0, 0, 1, 1],
            [1, 0, 0, 0],
        ], dtype=bool)

        clusters = detector.clusters(skin)

        assert [len(c) for c in clusters] == [2, 3, 1]


class TestDetect:
    """Tests for HumanRegionDetector.detect."""

    def test_single_person(self, detector, one_person_png):
        regions = detector.detect(decode_image(one_person_png))

        assert len(regions) == 1
        bbox = regions[0].bbox
        assert (bbox.min_x, bbox.min_y, bbox.max_x, bbox.max_y) == (412, 300, 608, 1096)
        assert regions[0].pixel_count == 50 * 200
        assert regions[0].is_default is False
        assert regions[0].pose.has_shoulders

    def test_two_people_in_raster_order(self, detector, two_people_png):
        regions = detector.detect(decode_image(two_people_png))

        assert len(regions) == 2
        assert regions[0].center.x < regions[1].center.x

    def test_no_skin_yields_default_region(self, detector, no_skin_png):
        regions = detector.detect(decode_image(no_skin_png))

        assert len(regions) == 1
        assert regions[0].is_default is True
        assert regions[0].pose.shoulder_center.y == pytest.approx(1536 * 0.40)

    def test_small_clusters_are_noise(self, detector):
        speck = png_bytes(person_image([(500, 500, 520, 520)]))

        regions = detector.detect(decode_image(speck))

        assert regions[0].is_default is True

    def test_min_cluster_size_is_configurable(self):
        speck = png_bytes(person_image([(500, 500, 520, 520)]))
        detector = HumanRegionDetector(DetectorConfig(min_cluster_size=10))

        regions = detector.detect(decode_image(speck))

        assert regions[0].is_default is False

    def test_detection_is_deterministic(self, detector, two_people_png):
        canvas = decode_image(two_people_png)

        first = [r.model_dump() for r in detector.detect(canvas)]
        second = [r.model_dump() for r in detector.detect(canvas)]

        assert first == second


class TestMerge:
    """Tests for merging clusters that belong to one person."""

    def test_close_regions_merge(self):
        a = region(0, 0, 100, 100, pixel_count=30)
        b = region(120, 0, 220, 100, pixel_count=20)

        merged = merge_regions([a, b])

        assert len(merged) == 1
        assert merged[0].bbox == BoundingBox(min_x=0, min_y=0, max_x=220, max_y=100)
        assert merged[0].pixel_count == 50

    def test_far_regions_stay_apart(self):
        a = region(0, 0, 100, 100)
        b = region(800, 0, 900, 100)

        assert not should_merge(a, b)
        assert len(merge_regions([a, b])) == 2

    def test_merging_repeats_until_stable(self):
        # a-b merge first; the union then reaches c
        a = region(0, 0, 100, 100)
        b = region(120, 0, 220, 100)
        c = region(280, 0, 380, 100)

        assert not should_merge(a, c)
        assert len(merge_regions([a, b, c])) == 1


class TestSelectRegion:
    """Tests for choosing the region to dress."""

    def test_single_region_is_selected(self):
        only = region(0, 0, 10, 10)

        assert select_region([only]) is only

    def test_several_regions_need_a_choice(self):
        regions = [region(0, 0, 10, 10), region(500, 0, 510, 10)]

        with pytest.raises(AmbiguousHumanRegion) as exc_info:
            select_region(regions)

        assert exc_info.value.regions == regions
        assert exc_info.value.stage == "region_selection"

    def test_index_picks_region(self):
        regions = [region(0, 0, 10, 10), region(500, 0, 510, 10)]

        assert select_region(regions, 1) is regions[1]

    def test_out_of_range_index(self):
        with pytest.raises(AmbiguousHumanRegion):
            select_region([region(0, 0, 10, 10)], 3)

    def test_empty_list(self):
        with pytest.raises(NoHumanRegionDetected):
            select_region([])
