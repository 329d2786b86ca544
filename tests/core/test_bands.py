import numpy as np
import pytest

from gapfill.core.bands import Band, Indices, SceneClass, compute_index

pytestmark = pytest.mark.unit


def test_band_dtypes():
    assert Band.B04.dtype == np.uint16
    assert Band.CLP.dtype == np.uint8
    assert Band.SCL.dtype == np.uint8
    assert Band.SUN_ZENITH.dtype == np.float32


def test_band_filename_uses_file_stem():
    assert Band.B08.filename == "B08.tif"
    assert Band.SUN_AZIMUTH.filename == "sunAzimuthAngles.tif"


def test_from_name_accepts_enum_name_and_stem():
    assert Band.from_name("SUN_ZENITH") is Band.SUN_ZENITH
    assert Band.from_name("sunZenithAngles") is Band.SUN_ZENITH
    assert Band.from_name("B11") is Band.B11


def test_from_name_unknown():
    with pytest.raises(ValueError):
        Band.from_name("B99")


def test_max_value_of_integer_band():
    assert Band.CLP.max_value == 255.0
    assert Band.B02.max_value == 65535.0


def test_scene_class_codes():
    assert SceneClass.VEGETATION == 4
    assert SceneClass.CLOUD_HIGH == 9


def test_ndvi():
    bands = {Band.B08: np.array([[3000, 0]]), Band.B04: np.array([[1000, 0]])}
    ndvi = compute_index(Indices.NDVI, bands)
    assert ndvi.dtype == np.float32
    assert ndvi[0, 0] == pytest.approx(0.5)
    # 0/0 becomes 0
    assert ndvi[0, 1] == 0.0


def test_index_requires_its_bands():
    with pytest.raises(KeyError):
        compute_index(Indices.NDMI, {Band.B08: np.ones((2, 2))})
