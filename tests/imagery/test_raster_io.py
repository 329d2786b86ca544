import numpy as np
import pytest
import rasterio

from gapfill.core.bands import Band
from gapfill.core.dates import Date
from gapfill.core.errors import DataError, NotFoundError
from gapfill.core.raster import PixelClass, ValidityMask
from gapfill.imagery.raster_io import CLOUD_FILENAME, SHADOW_FILENAME, GeoTiffRasterIO
from tests.helpers.fake_scene import make_scene, write_date

pytestmark = pytest.mark.unit

D = Date(2023, 5, 1)


@pytest.fixture
def io(tmp_path):
    return GeoTiffRasterIO(tmp_path / "data", tmp_path / "filled", mask_dir=tmp_path / "masks")


def test_load_band_keeps_geometry(io, tmp_path):
    scene = make_scene((6, 8), resolution=20.0)
    write_date(tmp_path / "data", D, scene)

    buf = io.load_band(D, Band.B08)

    assert buf.shape == (6, 8)
    assert buf.data.dtype == np.uint16
    assert buf.resolution == pytest.approx(20.0)
    assert buf.bbox == scene[Band.B08].bbox
    assert buf.date == D
    np.testing.assert_array_equal(buf.data, scene[Band.B08].data)


def test_missing_band_file(io):
    with pytest.raises(NotFoundError):
        io.load_band(D, Band.B04)


def test_wrong_dtype_is_data_error(io, tmp_path):
    scene = make_scene((4, 4))
    # uint8 samples stored under the B04 name
    write_date(tmp_path / "data", D, {Band.B04: scene[Band.CLP]})
    with pytest.raises(DataError, match="dtype"):
        io.load_band(D, Band.B04)


def test_corrupt_file_is_data_error(io, tmp_path):
    folder = tmp_path / "data" / D.isoformat()
    folder.mkdir(parents=True)
    (folder / "B04.tif").write_bytes(b"not a tiff")
    with pytest.raises(DataError):
        io.load_band(D, Band.B04)


def test_mask_round_trip(io):
    reference = make_scene((5, 5))[Band.B08]
    codes = np.zeros((5, 5), dtype=np.uint8)
    codes[0, :2] = PixelClass.CLOUD
    codes[1, 1] = PixelClass.SHADOW
    codes[4, 4] = PixelClass.INVALID
    mask = ValidityMask(codes)

    path = io.save_mask(D, mask, reference)

    assert path.exists()
    assert io.load_mask(D) == mask
    with rasterio.open(io.mask_path(D, CLOUD_FILENAME)) as src:
        assert src.read(1).sum() == 2
    with rasterio.open(io.mask_path(D, SHADOW_FILENAME)) as src:
        assert src.read(1).sum() == 1


def test_save_mask_checks_dimensions(io):
    reference = make_scene((5, 5))[Band.B08]
    with pytest.raises(ValueError):
        io.save_mask(D, ValidityMask.all_valid((4, 5)), reference)


def test_missing_mask(io):
    with pytest.raises(NotFoundError):
        io.load_mask(D)


def test_save_result_with_provenance(io):
    buf = make_scene((4, 4))[Band.B04]
    provenance = np.zeros((4, 4), dtype=np.uint8)
    provenance[0, 0] = 1

    assert not io.has_result(D, Band.B04)
    path = io.save_result(D, buf, provenance)

    assert path.name == "B04_filled.tif"
    assert io.has_result(D, Band.B04)
    with rasterio.open(path) as src:
        np.testing.assert_array_equal(src.read(1), buf.data)
    with rasterio.open(io.output_path(D, "B04_provenance.tif")) as src:
        np.testing.assert_array_equal(src.read(1), provenance)


def test_crs_and_nodata_carried_to_outputs(io, tmp_path):
    scene = make_scene((6, 6), crs="EPSG:32633", nodata=0)
    write_date(tmp_path / "data", D, scene)

    buf = io.load_band(D, Band.B04)
    assert buf.crs == "EPSG:32633"
    assert buf.nodata == 0

    io.save_mask(D, ValidityMask.all_valid((6, 6)), buf)
    io.save_result(D, buf.with_data(buf.data), np.zeros((6, 6), dtype=np.uint8))

    with rasterio.open(io.output_path(D, "B04_filled.tif")) as src:
        assert src.crs.to_epsg() == 32633
        assert src.nodata == 0
    with rasterio.open(io.output_path(D, "B04_provenance.tif")) as src:
        assert src.crs.to_epsg() == 32633
        assert src.nodata is None
    for name in ("validity_mask.tif", CLOUD_FILENAME, SHADOW_FILENAME):
        with rasterio.open(io.mask_path(D, name)) as src:
            assert src.crs.to_epsg() == 32633


def test_load_result_and_products(io):
    buf = make_scene((4, 4), crs="EPSG:4326")[Band.B04]
    io.save_result(D, buf)

    loaded = io.load_result(D, Band.B04)
    np.testing.assert_array_equal(loaded.data, buf.data)
    assert loaded.crs == "EPSG:4326"

    assert not io.has_product(D, "NDVI")
    io.save_product(D, "NDVI", np.full((4, 4), 0.25), buf)
    assert io.has_product(D, "NDVI")
    product = io.load_product(D, "NDVI")
    assert product.dtype == np.float32
    np.testing.assert_allclose(product, 0.25)

    path = io.save_grid("count_1", np.ones((4, 4), dtype=np.uint16), buf)
    assert path == io.analysis_dir / "count_1.tif"
    with rasterio.open(path) as src:
        assert src.crs.to_epsg() == 4326
