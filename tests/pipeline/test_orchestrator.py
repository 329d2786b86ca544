import numpy as np
import pytest
import rasterio

from gapfill.core.bands import Band
from gapfill.core.dates import Date
from gapfill.core.errors import DataError, StoreError
from gapfill.imagery.raster_io import GeoTiffRasterIO
from gapfill.pipeline.orchestrator import PipelineOrchestrator, RunSummary
from gapfill.pipeline.processor import COMPLETED, FAILED, SKIPPED, DateOutcome
from gapfill.pipeline.approximation_store import TemporalApproximationStore
from tests.helpers.fake_scene import make_scene, write_date

pytestmark = [pytest.mark.pipeline, pytest.mark.integration]

SHAPE = (24, 24)
CLEAR = Date(2023, 5, 1)
RADAR_DATE = Date(2023, 5, 3)
CLOUDY = Date(2023, 5, 6)
BROKEN = Date(2023, 5, 9)


@pytest.fixture
def archive(data_dir):
    clear = make_scene(SHAPE)
    clear[Band.B04] = clear[Band.B04].with_data(np.full(SHAPE, 3000))
    write_date(data_dir, CLEAR, clear)

    cloud = np.zeros(SHAPE, dtype=bool)
    cloud[6:18, 6:18] = True
    write_date(data_dir, CLOUDY, make_scene(SHAPE, cloud=cloud))

    write_date(data_dir, BROKEN, make_scene(SHAPE), skip=(Band.SCL,))

    radar = data_dir / RADAR_DATE.isoformat()
    radar.mkdir()
    (radar / "VV.tif").touch()
    return data_dir


def test_run_counts_outcomes(pipeline_config, archive, restore_root_logger):
    config = pipeline_config(blender={"enabled": False})

    summary = PipelineOrchestrator(config).run()

    assert isinstance(summary, RunSummary)
    assert summary.completed == 2
    assert summary.skipped == 1
    assert summary.failed == 1
    assert summary.total == 4
    assert summary.failed_dates == [BROKEN]
    assert [o.date for o in summary.outcomes] == [CLEAR, RADAR_DATE, CLOUDY, BROKEN]


def test_temporal_neighbour_fills_cloudy_date(pipeline_config, archive, restore_root_logger):
    config = pipeline_config(blender={"enabled": False})
    PipelineOrchestrator(config).run()

    filled = archive.parent / "output" / "filled" / CLOUDY.isoformat()
    with rasterio.open(filled / "B04_filled.tif") as src:
        b04 = src.read(1)
    with rasterio.open(filled / "B04_provenance.tif") as src:
        provenance = src.read(1)

    # centre of the cloud block is copied from the clear date
    assert b04[12, 12] == 3000
    assert provenance[12, 12] == 0
    # outside the block the date keeps its own observation
    assert b04[0, 0] == 1200


def test_rerun_skips_completed_dates(pipeline_config, archive, restore_root_logger):
    config = pipeline_config()
    PipelineOrchestrator(config).run()

    summary = PipelineOrchestrator(config).run()

    assert summary.completed == 0
    assert summary.skipped == 3
    assert summary.failed == 1


def test_store_and_logs_created(pipeline_config, archive, restore_root_logger):
    config = pipeline_config()
    PipelineOrchestrator(config).run()

    base = archive.parent / "output"
    assert (base / "logs" / "gapfill_pipeline.log").exists()
    with TemporalApproximationStore(base / config.store.db_filename) as store:
        assert store.dates() == [CLEAR, CLOUDY, BROKEN]
        assert store.query(CLOUDY).percent_cloudy == pytest.approx(144 / 576)


def test_date_range_limits_run(pipeline_config, archive, restore_root_logger):
    config = pipeline_config(pipeline={"start_date": "2023-05-02", "end_date": "2023-05-08"})
    summary = PipelineOrchestrator(config).run()
    assert [o.date for o in summary.outcomes] == [RADAR_DATE, CLOUDY]


def test_empty_data_directory(pipeline_config, data_dir, restore_root_logger):
    summary = PipelineOrchestrator(pipeline_config()).run()
    assert summary.total == 0


def test_unopenable_store_is_fatal(pipeline_config, archive, restore_root_logger):
    config = pipeline_config(store={"db_filename": "blocked.db"})
    (archive.parent / "output" / "blocked.db").mkdir(parents=True)
    with pytest.raises(StoreError):
        PipelineOrchestrator(config).run()


def test_requires_directories(internal_config):
    with pytest.raises(ValueError, match="base_dir"):
        PipelineOrchestrator(internal_config)


def test_summary_from_outcomes():
    outcomes = [
        DateOutcome(Date(2023, 1, 2), FAILED, "boom"),
        DateOutcome(Date(2023, 1, 1), COMPLETED),
        DateOutcome(Date(2023, 1, 3), SKIPPED),
    ]
    summary = RunSummary.from_outcomes(outcomes, elapsed_sec=1.5)
    assert (summary.completed, summary.skipped, summary.failed) == (1, 1, 1)
    assert summary.outcomes[0].date == Date(2023, 1, 1)
    assert summary.failed_dates == [Date(2023, 1, 2)]


class CorruptBandIO(GeoTiffRasterIO):
    """Raster storage whose B04 file is undecodable on one date."""

    def __init__(self, *args, corrupt_date, **kwargs):
        super().__init__(*args, **kwargs)
        self.corrupt_date = corrupt_date

    def load_band(self, date, band):
        if date == self.corrupt_date and band is Band.B04:
            raise DataError(f"Cannot decode {self.band_path(date, band)}: truncated file")
        return super().load_band(date, band)


def test_corrupt_band_fails_only_its_date(pipeline_config, archive, restore_root_logger):
    config = pipeline_config(blender={"enabled": False})
    output = archive.parent / "output"
    io = CorruptBandIO(archive, output / "filled", mask_dir=output / "masks",
                       corrupt_date=CLOUDY)

    summary = PipelineOrchestrator(config, raster_io=io).run()

    by_date = {o.date: o for o in summary.outcomes}
    assert by_date[CLOUDY].status == FAILED
    assert "DataError" in by_date[CLOUDY].error
    assert by_date[CLEAR].status == COMPLETED
    assert sorted(summary.failed_dates) == [CLOUDY, BROKEN]


def test_store_error_fails_only_its_date(pipeline_config, archive, restore_root_logger, monkeypatch):
    original = TemporalApproximationStore.record_detection

    def locked_for_clear(self, date, *args, **kwargs):
        if date == CLEAR:
            raise StoreError("Store record_detection failed: database is locked")
        return original(self, date, *args, **kwargs)

    monkeypatch.setattr(TemporalApproximationStore, "record_detection", locked_for_clear)

    summary = PipelineOrchestrator(pipeline_config(blender={"enabled": False})).run()

    by_date = {o.date: o for o in summary.outcomes}
    assert by_date[CLEAR].status == FAILED
    assert "StoreError" in by_date[CLEAR].error
    assert by_date[CLOUDY].status == COMPLETED
    assert summary.completed == 1


def test_index_summary_stage(pipeline_config, archive, restore_root_logger):
    config = pipeline_config(blender={"enabled": False},
                             analysis={"enabled": True, "index": "NDVI", "threshold": 0.4})

    summary = PipelineOrchestrator(config).run()

    (result,) = summary.index_summaries
    assert result.period == (2023, 2023)
    assert result.num_days_used == 2
    # cloud centre only counts the clear date, whose NDVI is 0
    assert result.fraction[12, 12] == 0.0

    analysis = archive.parent / "output" / "analysis"
    assert (analysis / f"sis_{result.summary_id}.tif").exists()
    with rasterio.open(analysis / f"count_{result.summary_id}.tif") as src:
        count = src.read(1)
    assert count[12, 12] == 1
    assert count.max() == 2
    assert (analysis / CLEAR.isoformat() / "NDVI.tif").exists()

    with TemporalApproximationStore(archive.parent / "output" / config.store.db_filename) as store:
        assert store.index_info(CLEAR, "NDVI", False)["mean"] == pytest.approx(0.0)
        assert store.index_info(BROKEN, "NDVI", False) is None


def test_index_summary_off_by_default(pipeline_config, archive, restore_root_logger):
    summary = PipelineOrchestrator(pipeline_config(blender={"enabled": False})).run()
    assert summary.index_summaries == []
    assert not list((archive.parent / "output" / "analysis").iterdir())
