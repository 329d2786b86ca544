"""Band values at one location across the dates closest to a given date."""

import logging
from dataclasses import dataclass
from typing import List, Tuple

from gapfill.core.bands import Band, REFLECTANCE_BANDS
from gapfill.core.dates import Date
from gapfill.core.errors import GapfillError
from gapfill.core.raster import PixelClass, RasterBuffer

__all__ = ['TimeSeriesPoint', 'pixel_at', 'band_for_location']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeSeriesPoint:
    """Observed value of a band at one location on one date."""

    date: Date
    value: float
    cloudy: bool
    shadow: bool


def pixel_at(buffer: RasterBuffer, x: float, y: float) -> Tuple[int, int]:
    """(row, col) of the pixel containing map coordinates ``(x, y)``.

    Raises
    ------
    ValueError
        The point lies outside the buffer's bounding box.
    """
    bbox = buffer.bbox
    if not (bbox.left <= x <= bbox.right and bbox.bottom <= y <= bbox.top):
        raise ValueError(f"Point ({x}, {y}) lies outside {bbox}")
    rows, cols = buffer.shape
    row = min(int((bbox.top - y) // buffer.resolution), rows - 1)
    col = min(int((x - bbox.left) // buffer.resolution), cols - 1)
    return row, col


def band_for_location(store, raster_io, date: Date, band: Band, x: float, y: float,
                      max_results: int = 15, reflectance_scale: float = 10000.0) -> List[TimeSeriesPoint]:
    """Values of ``band`` at ``(x, y)`` on the detected dates nearest ``date``.

    The ``max_results`` detected dates closest to ``date`` (``date`` itself
    included) are read; a date whose band or mask cannot be read is logged
    and left out. Reflectance bands are divided by ``reflectance_scale``.
    Each point carries the cloud and shadow flags of its date's mask.

    Returns
    -------
    list of TimeSeriesPoint
        In calendar order.

    Raises
    ------
    ValueError
        ``max_results`` is below 1, or the point lies outside a date's grid.
    """
    if max_results < 1:
        raise ValueError(f"max_results must be at least 1, got {max_results}")

    detected = []
    for other in store.dates():
        record = store.query(other)
        if record is not None and record.clouds_computed:
            detected.append(other)
    detected.sort(key=lambda other: (abs(date.days_between(other)), other))

    points = []
    for other in detected[:max_results]:
        try:
            buffer = raster_io.load_band(other, band)
            mask = raster_io.load_mask(other)
        except GapfillError as e:
            logger.warning("%s of %s left out of time series: %s", band.value, other, e)
            continue

        row, col = pixel_at(buffer, x, y)
        value = float(buffer.data[row, col])
        if band in REFLECTANCE_BANDS:
            value /= reflectance_scale
        code = mask.codes[row, col]
        points.append(TimeSeriesPoint(
            date=other,
            value=value,
            cloudy=bool(code == PixelClass.CLOUD),
            shadow=bool(code == PixelClass.SHADOW),
        ))

    return sorted(points, key=lambda p: p.date)
