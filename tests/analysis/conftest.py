import pytest

from gapfill.core.bands import Band
from gapfill.imagery.gap_filler import single_image_summary
from gapfill.imagery.raster_io import GeoTiffRasterIO
from gapfill.pipeline.approximation_store import TemporalApproximationStore
from tests.helpers.fake_scene import write_date


@pytest.fixture
def store(temp_dir):
    db = TemporalApproximationStore(temp_dir / "approximation.db")
    yield db
    db.close()


@pytest.fixture
def raster_io(temp_dir):
    return GeoTiffRasterIO(temp_dir / "data", temp_dir / "filled",
                           mask_dir=temp_dir / "masks", analysis_dir=temp_dir / "analysis")


@pytest.fixture
def detected_date(store, raster_io):
    """Write a scene and its mask, and record the detection in the store.

    ``percent_invalid`` overrides the fraction computed from the mask.
    """
    def _write(date, scene, mask, percent_invalid=None):
        write_date(raster_io.data_dir, date, scene)
        raster_io.save_mask(date, mask, scene[Band.B08])
        cloudy, shadows, invalid = single_image_summary(mask)
        store.record_detection(date, cloudy, shadows,
                               invalid if percent_invalid is None else percent_invalid)
    return _write
