"""Per-date spectral index images.

An index image is computed from reflectance (band samples divided by
``reflectance_scale``), cached as ``<analysis_dir>/<date>/<INDEX>.tif``
(``<INDEX>_filled.tif`` for filled data) and masked according to the
data choice. Excluded pixels are NaN in ``IndexImage.values``.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from gapfill.analysis.choices import DataChoice
from gapfill.core.bands import Band, Indices, compute_index
from gapfill.core.dates import Date
from gapfill.core.errors import DataError, GapfillError, MissingBandError, NotFoundError
from gapfill.core.raster import PixelClass, RasterBuffer

__all__ = ['IndexImage', 'IndexCalculator', 'product_name', 'compute_indices_for_all_dates']

logger = logging.getLogger(__name__)


@dataclass
class IndexImage:
    """One index image of one date, with its valid-pixel mask."""

    date: Date
    index: Indices
    values: np.ndarray
    valid: np.ndarray
    reference: RasterBuffer

    @property
    def valid_pixels(self) -> int:
        return int(self.valid.sum())

    def statistics(self) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        """(min, max, mean) over the valid pixels; all None without any."""
        if not self.valid.any():
            return None, None, None
        values = self.values[self.valid].astype(np.float64)
        return float(values.min()), float(values.max()), float(values.mean())


def product_name(index: Indices, choice: DataChoice) -> str:
    return f"{index.name}_filled" if choice.use_approximated_data else index.name


class IndexCalculator:
    """Builds index images for dates known to the approximation store.

    Parameters
    ----------
    store : TemporalApproximationStore
        Supplies the detection record used to decide whether a date is
        usable.
    raster_io : GeoTiffRasterIO
        Loads bands, filled bands and masks; caches index images.
    reflectance_scale : float
        Divisor turning band samples into reflectance.
    """

    def __init__(self, store, raster_io, reflectance_scale: float = 10000.0):
        if reflectance_scale <= 0:
            raise ValueError(f"reflectance_scale must be positive, got {reflectance_scale}")
        self.store = store
        self.raster_io = raster_io
        self.reflectance_scale = reflectance_scale

    def usable(self, date: Date, index: Indices, choice: DataChoice) -> bool:
        """Whether ``date`` can contribute under ``choice``."""
        if choice.use_approximated_data:
            return all(self.raster_io.has_result(date, band) for band in index.bands)

        record = self.store.query(date)
        if record is None or not record.clouds_computed:
            logger.debug("%s not detected, left out of %s", date, index.name)
            return False
        if (choice.skip_threshold is not None and record.percent_invalid is not None
                and record.percent_invalid >= choice.skip_threshold):
            logger.info("Skipping %s for %s: %.1f%% invalid", date, index.name,
                        record.percent_invalid * 100)
            return False
        return True

    def _bands(self, date: Date, index: Indices, choice: DataChoice) -> Dict[Band, RasterBuffer]:
        load = self.raster_io.load_result if choice.use_approximated_data else self.raster_io.load_band
        bands = {}
        for band in index.bands:
            try:
                bands[band] = load(date, band)
            except NotFoundError as e:
                raise MissingBandError(date, band, str(e)) from e
        return bands

    def _valid(self, date: Date, choice: DataChoice, shape) -> np.ndarray:
        if choice.use_approximated_data:
            return np.ones(shape, dtype=bool)

        mask = self.raster_io.load_mask(date)
        if mask.shape != shape:
            raise DataError(f"Mask of {date} has grid {mask.shape}, index grid is {shape}")
        valid = ~mask.is_class(PixelClass.INVALID)
        if choice.exclude_cloudy_pixels:
            valid &= ~mask.is_class(PixelClass.CLOUD)
        if choice.exclude_shadow_pixels:
            valid &= ~mask.is_class(PixelClass.SHADOW)
        return valid

    def image(self, date: Date, index: Indices, choice: DataChoice, use_cache: bool = True) -> IndexImage:
        """Index image of ``date``.

        Raises
        ------
        MissingBandError
            A band the index needs is absent.
        NotFoundError
            The mask of the date is absent (observed data only).
        DataError
            A band, the mask or the cached image cannot be used.
        """
        bands = self._bands(date, index, choice)
        reference = bands[index.bands[0]]
        name = product_name(index, choice)

        if use_cache and self.raster_io.has_product(date, name):
            values = self.raster_io.load_product(date, name).astype(np.float32)
            if values.shape != reference.shape:
                raise DataError(f"Cached {name} of {date} has grid {values.shape}, expected {reference.shape}")
        else:
            reflectance = {band: buf.data.astype(np.float64) / self.reflectance_scale
                           for band, buf in bands.items()}
            values = compute_index(index, reflectance)
            self.raster_io.save_product(date, name, values, reference)

        valid = self._valid(date, choice, values.shape)
        values = np.where(valid, values, np.nan).astype(np.float32)
        return IndexImage(date=date, index=index, values=values, valid=valid, reference=reference)


def compute_indices_for_all_dates(dates: Iterable[Date], index: Indices, store, raster_io,
                                  choice: DataChoice, reflectance_scale: float = 10000.0,
                                  use_cache: bool = True) -> List[Date]:
    """Compute ``index`` for every usable date and record its statistics.

    Dates whose bands or mask cannot be read are logged and left out.
    Returns the dates that were recorded, in calendar order.
    """
    calculator = IndexCalculator(store, raster_io, reflectance_scale)
    recorded = []
    for date in sorted(dates):
        if not calculator.usable(date, index, choice):
            continue
        try:
            image = calculator.image(date, index, choice, use_cache=use_cache)
        except GapfillError as e:
            logger.warning("No %s for %s: %s", index.name, date, e)
            continue

        minimum, maximum, mean = image.statistics()
        store.store_index_info(date, index.name, choice.use_approximated_data,
                               minimum, maximum, mean, image.valid_pixels)
        recorded.append(date)

    logger.info("%s computed for %d dates (%s data)", index.name, len(recorded),
                "approximated" if choice.use_approximated_data else "real")
    return recorded
