"""Multi-year spectral index summary.

For every pixel, the fraction of usable days on which an index reached a
threshold. One summary is computed per calendar year in the window and
one over the whole window; each is stored as a row of the
``single_image_summary`` table and written as three grids under the
analysis directory:

- ``sis_<id>.tif``: fraction of counted days at or above the threshold
  (NaN where no day counted)
- ``sis_<id>_raw.tif``: number of days at or above the threshold
- ``count_<id>.tif``: number of days counted

Summaries computed earlier with the same settings are reused when
``use_cache`` is set, and their dates are not read again.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from gapfill.analysis.choices import DataChoice
from gapfill.analysis.indices import IndexCalculator, IndexImage
from gapfill.core.bands import Indices
from gapfill.core.dates import Date
from gapfill.core.errors import DataError, GapfillError

__all__ = ['SummaryResult', 'IndexSummary', 'summarize_index']

logger = logging.getLogger(__name__)

Period = Tuple[int, int]


@dataclass
class SummaryResult:
    """One row of the summary table, plus its fraction grid when computed now."""

    summary_id: Optional[int]
    index: Indices
    start_year: int
    end_year: int
    num_days_used: int
    minimum: Optional[float]
    maximum: Optional[float]
    mean: Optional[float]
    cached: bool = False
    fraction: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def period(self) -> Period:
        return (self.start_year, self.end_year)


class _Accumulator:
    """Running per-pixel counts for one period."""

    def __init__(self):
        self.exceed = None
        self.count = None
        self.days = 0

    def add(self, image: IndexImage, threshold: float) -> None:
        if self.count is None:
            self.exceed = np.zeros(image.values.shape, dtype=np.int32)
            self.count = np.zeros(image.values.shape, dtype=np.int32)
        elif image.values.shape != self.count.shape:
            raise DataError(f"{image.index.name} of {image.date} has grid {image.values.shape}, "
                            f"summary grid is {self.count.shape}")
        self.count += image.valid
        # NaN (excluded) never compares >= threshold
        with np.errstate(invalid="ignore"):
            self.exceed += image.valid & (image.values >= threshold)
        self.days += 1

    def fraction(self) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(self.count > 0, self.exceed / np.maximum(self.count, 1), np.nan)


class IndexSummary:
    """Computes, caches and stores multi-year index summaries.

    Parameters
    ----------
    store : TemporalApproximationStore
        Holds the summary table and the per-date detection records.
    raster_io : GeoTiffRasterIO
        Reads the index inputs and writes the summary grids.
    reflectance_scale : float
        Divisor turning band samples into reflectance.

    Examples
    --------
    ::

        summary = IndexSummary(store, raster_io)
        results = summary.run(store.dates(), Indices.NDVI, threshold=0.5,
                              choice=RealData(exclude_cloudy_pixels=True),
                              start_year=2020, end_year=2022)
        overall = results[-1]
    """

    def __init__(self, store, raster_io, reflectance_scale: float = 10000.0):
        self.store = store
        self.raster_io = raster_io
        self.calculator = IndexCalculator(store, raster_io, reflectance_scale)

    def _settings(self, index: Indices, threshold: float, period: Period, choice: DataChoice) -> Dict:
        return dict(
            index_name=index.name,
            threshold=float(threshold),
            start_year=period[0],
            end_year=period[1],
            use_approximated_data=choice.use_approximated_data,
            exclude_cloudy_pixels=choice.exclude_cloudy_pixels,
            exclude_shadow_pixels=choice.exclude_shadow_pixels,
            skip_threshold=choice.skip_threshold,
        )

    def _cached(self, index, period, summary_id) -> SummaryResult:
        row = self.store.get_summary_result(summary_id)
        return SummaryResult(
            summary_id=summary_id, index=index, start_year=period[0], end_year=period[1],
            num_days_used=row["num_days_used"], minimum=row["min"], maximum=row["max"],
            mean=row["mean"], cached=True,
        )

    def _save(self, index, threshold, period, choice, acc: _Accumulator, reference) -> SummaryResult:
        if acc.days == 0:
            logger.warning("%s summary %d-%d: no usable day, nothing stored", index.name, *period)
            return SummaryResult(None, index, period[0], period[1], 0, None, None, None)

        fraction = acc.fraction()
        counted = acc.count > 0
        if counted.any():
            minimum = float(fraction[counted].min())
            maximum = float(fraction[counted].max())
            mean = float(fraction[counted].mean())
        else:
            minimum = maximum = mean = None

        summary_id = self.store.save_summary_result(
            **self._settings(index, threshold, period, choice),
            minimum=minimum, maximum=maximum, mean=mean, num_days_used=acc.days,
        )
        self.raster_io.save_grid(f"sis_{summary_id}", fraction.astype(np.float32), reference)
        self.raster_io.save_grid(f"sis_{summary_id}_raw", acc.exceed, reference)
        self.raster_io.save_grid(f"count_{summary_id}", acc.count, reference)
        logger.info("%s summary %d-%d stored as id %d: %d days, mean fraction %s",
                    index.name, period[0], period[1], summary_id, acc.days,
                    "n/a" if mean is None else f"{mean:.3f}")
        return SummaryResult(summary_id, index, period[0], period[1], acc.days,
                             minimum, maximum, mean, fraction=fraction)

    def run(self, dates: Iterable[Date], index: Indices, threshold: float, choice: DataChoice,
            start_year: Optional[int] = None, end_year: Optional[int] = None,
            use_cache: bool = True) -> List[SummaryResult]:
        """Summaries for every year of the window, then for the whole window.

        Without explicit years the window spans the years of ``dates``.
        When the window is a single year only one summary is produced.

        Raises
        ------
        ValueError
            ``end_year`` is before ``start_year``.
        StoreError
            The summary table cannot be read or written.
        """
        dates = sorted(dates)
        if start_year is None:
            start_year = dates[0].year if dates else None
        if end_year is None:
            end_year = dates[-1].year if dates else None
        if start_year is None or end_year is None:
            logger.warning("%s summary: no dates to summarize", index.name)
            return []
        if end_year < start_year:
            raise ValueError(f"end_year {end_year} is before start_year {start_year}")

        overall = (start_year, end_year)
        periods = [(year, year) for year in range(start_year, end_year + 1)]
        if overall not in periods:
            periods.append(overall)

        cached = {}
        if use_cache:
            for period in periods:
                summary_id = self.store.summary_result_exists(**self._settings(index, threshold, period, choice))
                if summary_id is not None:
                    cached[period] = summary_id
        pending = {period: _Accumulator() for period in periods if period not in cached}

        reference = None
        for date in dates:
            if not start_year <= date.year <= end_year:
                continue
            targets = [p for p in {(date.year, date.year), overall} if p in pending]
            if not targets or not self.calculator.usable(date, index, choice):
                continue
            try:
                image = self.calculator.image(date, index, choice, use_cache=use_cache)
                for period in targets:
                    pending[period].add(image, threshold)
            except GapfillError as e:
                logger.warning("%s of %s left out of summary: %s", index.name, date, e)
                continue
            if reference is None:
                reference = image.reference

        results = []
        for period in periods:
            if period in cached:
                logger.info("%s summary %d-%d reused from id %d", index.name, *period, cached[period])
                results.append(self._cached(index, period, cached[period]))
            else:
                results.append(self._save(index, threshold, period, choice, pending[period], reference))
        return results


def summarize_index(store, raster_io, dates: Iterable[Date], index: Indices, threshold: float,
                    choice: DataChoice, start_year: Optional[int] = None,
                    end_year: Optional[int] = None, use_cache: bool = True,
                    reflectance_scale: float = 10000.0) -> List[SummaryResult]:
    """Functional form of ``IndexSummary.run``."""
    return IndexSummary(store, raster_io, reflectance_scale).run(
        dates, index, threshold, choice, start_year=start_year, end_year=end_year,
        use_cache=use_cache,
    )
