import numpy as np
import pytest

from gapfill.core.raster import PixelClass, ValidityMask
from gapfill.imagery.components import ConnectedComponentAnalyzer, find_connected_components

pytestmark = pytest.mark.unit

C, S = PixelClass.CLOUD, PixelClass.SHADOW


def test_cloud_and_shadow_are_separate_components():
    codes = np.zeros((8, 8), dtype=np.uint8)
    codes[0:2, 0:2] = C
    codes[2:6, 0:2] = S
    mask = ValidityMask(codes)

    components = find_connected_components(mask)

    assert components.count == 2
    assert components.sizes() == {1: 4, 2: 8}
    assert components.regions[1].dominant_class == PixelClass.CLOUD
    assert components.regions[2].dominant_class == PixelClass.SHADOW
    assert components.regions[2].bbox == (2, 0, 6, 2)
    assert set(components.of_class(PixelClass.SHADOW)) == {2}


def test_small_regions_reset_to_valid():
    codes = np.zeros((6, 6), dtype=np.uint8)
    codes[0:3, 0:3] = C
    codes[5, 5] = C
    mask = ValidityMask(codes)

    components = ConnectedComponentAnalyzer(connectivity=8, min_area=2).analyze(mask)

    assert components.count == 1
    assert mask.codes[5, 5] == PixelClass.VALID
    assert components.labels[5, 5] == 0
    assert mask.counts()[PixelClass.CLOUD] == 9


def test_min_area_one_leaves_mask_untouched():
    codes = np.zeros((4, 4), dtype=np.uint8)
    codes[3, 3] = S
    mask = ValidityMask(codes)
    before = mask.copy()

    components = find_connected_components(mask)

    assert components.count == 1
    assert mask == before


def test_labels_follow_row_major_first_pixel():
    codes = np.zeros((6, 6), dtype=np.uint8)
    codes[4:6, 0:2] = C      # starts lower left
    codes[0, 5] = C          # first in row-major order
    codes[2, 2:4] = S
    components = find_connected_components(ValidityMask(codes))

    assert components.labels[0, 5] == 1
    assert components.labels[2, 2] == 2
    assert components.labels[4, 0] == 3


def test_connectivity_four_vs_eight():
    codes = np.zeros((3, 3), dtype=np.uint8)
    codes[0, 0] = C
    codes[1, 1] = C
    mask = ValidityMask(codes)

    assert find_connected_components(mask, connectivity=8).count == 1
    assert find_connected_components(mask, connectivity=4).count == 2


def test_invalid_pixels_are_background():
    codes = np.full((3, 3), PixelClass.INVALID, dtype=np.uint8)
    codes[1, 1] = C
    components = find_connected_components(ValidityMask(codes))
    assert components.count == 1
    assert components.labels.sum() == 1


def test_empty_mask_has_no_components():
    components = find_connected_components(ValidityMask.all_valid((5, 5)))
    assert components.count == 0
    assert not components.labels.any()


def test_labeling_is_deterministic():
    rng = np.random.default_rng(0)
    codes = rng.choice([0, 1, 2], size=(30, 30), p=[0.6, 0.2, 0.2]).astype(np.uint8)
    first = find_connected_components(ValidityMask(codes.copy()), min_area=3)
    second = find_connected_components(ValidityMask(codes.copy()), min_area=3)
    np.testing.assert_array_equal(first.labels, second.labels)
    assert first.sizes() == second.sizes()


def test_suppressed_labels_stay_contiguous():
    codes = np.zeros((5, 9), dtype=np.uint8)
    codes[0, 0] = C             # removed
    codes[0:2, 3:5] = C         # kept
    codes[4, 8] = S             # removed
    codes[3:5, 0:2] = S         # kept
    components = find_connected_components(ValidityMask(codes), min_area=2)
    assert sorted(np.unique(components.labels)) == [0, 1, 2]


@pytest.mark.parametrize("connectivity,min_area", [(6, 1), (8, 0)])
def test_analyzer_rejects_bad_parameters(connectivity, min_area):
    with pytest.raises(ValueError):
        ConnectedComponentAnalyzer(connectivity=connectivity, min_area=min_area)


def test_from_params(cloud_params):
    params = cloud_params(connectivity=4, min_component_area=7)
    analyzer = ConnectedComponentAnalyzer.from_params(params)
    assert analyzer.connectivity == 4
    assert analyzer.min_area == 7
