import numpy as np
import pytest

from gapfill.core.bands import Band
from gapfill.core.dates import Date
from gapfill.core.raster import PixelClass, ValidityMask
from gapfill.visualization.plotter import QuicklookPlotter
from tests.helpers.fake_scene import make_scene

pytestmark = pytest.mark.unit


def test_plot_date_writes_configured_format(make_config, temp_dir):
    config = make_config(quicklooks=True).visualization
    codes = np.zeros((10, 10), dtype=np.uint8)
    codes[2:5, 2:5] = PixelClass.CLOUD
    mask = ValidityMask(codes)
    provenance = mask.invalid_mask().astype(np.uint8)
    buffer = make_scene((10, 10))[Band.B04]

    path = QuicklookPlotter(config).plot_date(Date(2023, 5, 1), mask, buffer, provenance,
                                              temp_dir / "ql" / "2023-05-01_B04")

    assert path.suffix == ".png"
    assert path.exists()
    assert path.stat().st_size > 0


def test_plot_without_reconstructed_pixels(make_config, temp_dir):
    config = make_config().visualization
    buffer = make_scene((6, 6))[Band.B08]
    path = QuicklookPlotter(config, figsize=(6, 3)).plot_date(
        Date(2023, 5, 1), ValidityMask.all_valid((6, 6)), buffer, None, temp_dir / "clear"
    )
    assert path.exists()
