import sqlite3

import numpy as np
import pytest
import rasterio
import xarray as xr

from gapfill.contracts import ContractViolation
from gapfill.core.bands import Band
from gapfill.core.dates import Date
from gapfill.core.errors import StoreError
from gapfill.core.raster import PixelClass
from gapfill.pipeline.approximation_store import TemporalApproximationStore
from gapfill.pipeline.processor import COMPLETED, FAILED, SKIPPED, DateProcessor
from gapfill.setup_directories import get_quicklook_path, get_summary_path
from tests.helpers.fake_scene import make_scene, write_date

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]

D = Date(2023, 5, 1)
SHAPE = (20, 20)


def _cloud_block():
    cloud = np.zeros(SHAPE, dtype=bool)
    cloud[8:11, 8:11] = True
    return cloud


@pytest.fixture
def make_processor(pipeline_config, store, raster_io, output_dirs):
    def _make(**sections):
        return DateProcessor(pipeline_config(**sections), store, raster_io, output_dirs)
    return _make


def test_process_date_completes(make_processor, data_dir, store, raster_io, output_dirs):
    write_date(data_dir, D, make_scene(SHAPE, cloud=_cloud_block()))
    processor = make_processor()

    outcome = processor.process_date(D)

    assert outcome.status == COMPLETED
    assert outcome.filled_bands == ["B02", "B03", "B04", "B08", "B11"]

    record = store.query(D)
    assert record.clouds_computed is True
    assert record.shadows_computed is True
    assert record.percent_cloudy == pytest.approx(9 / 400)
    assert record.percent_invalid == 0.0
    assert store.get_approx_status(D) == {}

    mask = raster_io.load_mask(D)
    assert mask.counts()[PixelClass.CLOUD] == 9

    for band in processor.fill_bands:
        assert raster_io.has_result(D, band)
    with rasterio.open(raster_io.output_path(D, "B04_filled.tif")) as src:
        np.testing.assert_array_equal(src.read(1), 1200)
    with rasterio.open(raster_io.output_path(D, "B04_provenance.tif")) as src:
        np.testing.assert_array_equal(src.read(1), _cloud_block().astype(np.uint8))


def test_netcdf_summary_written(make_processor, data_dir, output_dirs):
    write_date(data_dir, D, make_scene(SHAPE, cloud=_cloud_block()))
    make_processor().detect_date(D)

    path = get_summary_path(output_dirs, D)
    assert path.exists()
    with xr.open_dataset(path, engine="scipy") as ds:
        assert ds.attrs["date"] == "2023-05-01"
        assert ds.attrs["percent_cloudy"] == pytest.approx(9 / 400)
        assert ds.attrs["num_components"] == 1
        assert int((ds["validity_mask"] == PixelClass.CLOUD).sum()) == 9


def test_netcdf_summary_disabled(make_processor, data_dir, output_dirs):
    write_date(data_dir, D, make_scene(SHAPE))
    make_processor(pipeline={"save_netcdf": False}).detect_date(D)
    assert not get_summary_path(output_dirs, D).exists()


def test_fully_clouded_date_is_logged_as_approximated(make_processor, data_dir, store):
    write_date(data_dir, D, make_scene(SHAPE, cloud=np.ones(SHAPE, dtype=bool)))

    outcome = make_processor().process_date(D)

    assert outcome.status == COMPLETED
    status = store.get_approx_status(D)
    assert sorted(status) == ["B02", "B03", "B04", "B08", "B11"]


def test_missing_band_fails_date_only(make_processor, data_dir, store):
    write_date(data_dir, D, make_scene(SHAPE), skip=(Band.CLD,))

    outcome = make_processor().detect_date(D)

    assert outcome.status == FAILED
    assert "MissingBandError" in outcome.error
    assert "CLD" in outcome.error
    record = store.query(D)
    assert record is not None
    assert record.clouds_computed is False


def test_missing_fill_band_fails_fill(make_processor, data_dir):
    write_date(data_dir, D, make_scene(SHAPE), skip=(Band.B11,))
    processor = make_processor()

    assert processor.detect_date(D).status == COMPLETED
    outcome = processor.fill_date(D)
    assert outcome.status == FAILED
    assert "B11" in outcome.error


def test_fill_without_mask_fails(make_processor, data_dir):
    write_date(data_dir, D, make_scene(SHAPE))
    outcome = make_processor().fill_date(D)
    assert outcome.status == FAILED
    assert "NotFoundError" in outcome.error


def test_rerun_skips_processed_date(make_processor, data_dir):
    write_date(data_dir, D, make_scene(SHAPE, cloud=_cloud_block()))
    processor = make_processor()

    assert processor.process_date(D).status == COMPLETED
    assert processor.detect_date(D).status == SKIPPED
    assert processor.fill_date(D).status == SKIPPED
    assert processor.process_date(D).status == SKIPPED


def test_skip_processed_disabled_recomputes(make_processor, data_dir):
    write_date(data_dir, D, make_scene(SHAPE))
    processor = make_processor(pipeline={"skip_processed": False})
    processor.process_date(D)
    assert processor.process_date(D).status == COMPLETED


def _violate(*args, **kwargs):
    raise ContractViolation("Mask contract violated: injected")


def test_contract_violation_fail_fast(make_processor, data_dir, monkeypatch):
    write_date(data_dir, D, make_scene(SHAPE))
    monkeypatch.setattr("gapfill.pipeline.processor.assert_mask", _violate)

    with pytest.raises(ContractViolation):
        make_processor().detect_date(D)


def test_contract_violation_skip_date(make_processor, data_dir, monkeypatch, store):
    write_date(data_dir, D, make_scene(SHAPE))
    monkeypatch.setattr("gapfill.pipeline.processor.assert_mask", _violate)

    outcome = make_processor(pipeline={"on_contract_violation": "skip_date"}).detect_date(D)

    assert outcome.status == FAILED
    assert outcome.error.startswith("Contract violation")
    assert store.query(D).clouds_computed is False


def test_unexpected_error_fails_date(make_processor, data_dir, monkeypatch):
    write_date(data_dir, D, make_scene(SHAPE))
    processor = make_processor()

    def boom(*args, **kwargs):
        raise RuntimeError("disk failure")

    monkeypatch.setattr(processor.detector, "detect", boom)

    outcome = processor.detect_date(D)
    assert outcome.status == FAILED
    assert "disk failure" in outcome.error


def test_quicklook_written(make_processor, data_dir, output_dirs):
    write_date(data_dir, D, make_scene(SHAPE, cloud=_cloud_block()))
    processor = make_processor(visualization={"enabled": True, "dpi": 60})

    processor.process_date(D)

    assert get_quicklook_path(output_dirs, D, "B02").with_suffix(".png").exists()


def test_blender_follows_config(make_processor):
    assert make_processor().blender is not None
    assert make_processor(blender={"enabled": False}).blender is None


def test_outputs_keep_input_crs(make_processor, data_dir, raster_io):
    write_date(data_dir, D, make_scene(SHAPE, cloud=_cloud_block(), crs="EPSG:32633"))

    assert make_processor().process_date(D).status == COMPLETED

    for path in (raster_io.output_path(D, "B04_filled.tif"),
                 raster_io.output_path(D, "B04_provenance.tif"),
                 raster_io.mask_path(D)):
        with rasterio.open(path) as src:
            assert src.crs.to_epsg() == 32633


def test_mask_write_failure_leaves_date_undetected(make_processor, data_dir, raster_io,
                                                   store, monkeypatch):
    write_date(data_dir, D, make_scene(SHAPE, cloud=_cloud_block()))

    def disk_full(*args, **kwargs):
        raise OSError("No space left on device")

    monkeypatch.setattr(raster_io, "save_mask", disk_full)
    processor = make_processor()

    outcome = processor.detect_date(D)

    assert outcome.status == FAILED
    assert "No space left" in outcome.error
    assert store.query(D).clouds_computed is False

    # the next run retries detection instead of skipping the date
    monkeypatch.undo()
    assert processor.detect_date(D).status == COMPLETED
    assert store.query(D).clouds_computed is True


class FailingStore(TemporalApproximationStore):
    """Store whose writes fail for the dates in ``broken``."""

    def __init__(self, db_path, broken):
        super().__init__(db_path)
        self.broken = set(broken)

    def record_detection(self, date, *args, **kwargs):
        if date in self.broken:
            raise StoreError(f"Store record_detection failed: database is locked ({date})")
        return super().record_detection(date, *args, **kwargs)

    def write_approx_results(self, date, *args, **kwargs):
        if date in self.broken:
            raise StoreError(f"Store write_approx_results failed: disk I/O error ({date})")
        return super().write_approx_results(date, *args, **kwargs)


def test_store_error_fails_only_its_date(pipeline_config, temp_dir, raster_io, output_dirs, data_dir):
    other = Date(2023, 5, 2)
    write_date(data_dir, D, make_scene(SHAPE, cloud=_cloud_block()))
    write_date(data_dir, other, make_scene(SHAPE, cloud=_cloud_block()))
    store = FailingStore(temp_dir / "failing.db", broken=[D])
    try:
        processor = DateProcessor(pipeline_config(), store, raster_io, output_dirs)

        broken = processor.process_date(D)
        healthy = processor.process_date(other)

        assert broken.status == FAILED
        assert "StoreError" in broken.error
        assert healthy.status == COMPLETED
        assert store.query(other).clouds_computed is True
    finally:
        store.close()


def test_store_error_while_logging_approximation(pipeline_config, temp_dir, raster_io,
                                                 output_dirs, data_dir):
    overcast = np.ones(SHAPE, dtype=bool)
    write_date(data_dir, D, make_scene(SHAPE, cloud=overcast))
    store = FailingStore(temp_dir / "failing.db", broken=[])
    try:
        processor = DateProcessor(pipeline_config(), store, raster_io, output_dirs)
        assert processor.detect_date(D).status == COMPLETED

        store.broken.add(D)
        outcome = processor.fill_date(D)

        assert outcome.status == FAILED
        assert "write_approx_results" in outcome.error
    finally:
        store.close()


def test_write_approx_results_refill_keeps_one_row(make_processor, data_dir, store):
    write_date(data_dir, D, make_scene(SHAPE, cloud=np.ones(SHAPE, dtype=bool)))
    processor = make_processor(pipeline={"skip_processed": False})

    processor.process_date(D)
    first = store.get_approx_status(D)
    processor.process_date(D)
    second = store.get_approx_status(D)

    assert sorted(second) == sorted(first)
    assert store.to_dataframe().shape[0] == 1
    with sqlite3.connect(store.db_path) as conn:
        (count,) = conn.execute("SELECT COUNT(*) FROM approximated_data").fetchone()
    assert count == len(processor.fill_bands)
