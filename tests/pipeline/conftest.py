import pytest

from gapfill.imagery.raster_io import GeoTiffRasterIO
from gapfill.pipeline.approximation_store import TemporalApproximationStore
from gapfill.schemas import ParamConfig, resolve_config
from gapfill.schemas.resolve import deep_merge
from gapfill.setup_directories import setup_output_directories


@pytest.fixture
def store(temp_dir):
    db = TemporalApproximationStore(temp_dir / "approximation.db")
    yield db
    db.close()


@pytest.fixture
def output_dirs(temp_dir):
    """Output directories for pipeline tests."""
    return setup_output_directories(temp_dir / "output")


@pytest.fixture
def data_dir(temp_dir):
    path = temp_dir / "data"
    path.mkdir()
    return path


@pytest.fixture
def raster_io(data_dir, output_dirs):
    return GeoTiffRasterIO(data_dir, output_dirs["filled"], mask_dir=output_dirs["masks"],
                           analysis_dir=output_dirs["analysis"])


@pytest.fixture
def pipeline_config(temp_dir, data_dir):
    """Factory for InternalConfig with plain detection and real directories.

    Keyword arguments are ParamConfig sections merged over the defaults
    used here (e.g. ``pipeline={"on_contract_violation": "skip_date"}``).
    """
    def _make(**sections):
        base = {
            "base_dir": str(temp_dir / "output"),
            "data_dir": str(data_dir),
            "detection": {
                "cloud_probability_sigma": 0.0,
                "cloud_dilation_radius": 0,
                "cloud_closing_radius": 0,
                "min_component_area": 1,
            },
            "pipeline": {"workers": 2},
        }
        return resolve_config(ParamConfig.model_validate(deep_merge(base, sections)))

    return _make
