"""Reconstruction of cloud, shadow and invalid pixels.

Two passes fill a band of one date:

- **Temporal fallback**: pixels buried inside a large invalid region (their
  local invalid fraction exceeds ``temporal_fallback_fraction``) are copied
  from the nearest usable dates returned by the approximation store. The
  pass is skipped when the store judges the date itself cleaner than its
  best neighbour, and neighbour pixels that are invalid or nodata are
  never copied. Copied values are observed and keep the UseRealData tag.
  When a blender is supplied each copied patch is Poisson-blended into the
  current image.
- **Spatial pass**: every remaining unknown pixel is solved from the
  discrete Laplace equation with the known pixels as boundary data. The
  result is smooth and continuous with its surroundings; these pixels are
  tagged UseApproximatedData.

Reflectance samples equal to ``nodata_value`` count as unknown and are filled
like masked pixels.

Every pixel carries a provenance tag, so reconstructed data is never
indistinguishable from observed data.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple

import numpy as np
from scipy import sparse
from scipy.ndimage import uniform_filter
from scipy.sparse.linalg import spsolve

from gapfill.core.dates import Date
from gapfill.core.bands import REFLECTANCE_BANDS
from gapfill.core.errors import GapfillError
from gapfill.core.raster import PixelClass, RasterBuffer, ValidityMask
from gapfill.schemas.internal import InternalConfig

__all__ = [
    'Provenance',
    'UseRealData',
    'UseApproximatedData',
    'FillResult',
    'GapFiller',
    'laplace_fill',
    'single_image_summary',
    'filling_missing_portions_smooth_boundaries',
]

logger = logging.getLogger(__name__)


class Provenance(IntEnum):
    """Where a filled pixel value came from."""

    UseRealData = 0
    UseApproximatedData = 1


UseRealData = Provenance.UseRealData
UseApproximatedData = Provenance.UseApproximatedData

_OFFSETS = ((-1, 0), (1, 0), (0, -1), (0, 1))


@dataclass
class FillResult:
    """Filled buffer with its provenance grid.

    ``temporal_mask`` marks pixels copied from another date and
    ``neighbor_dates`` lists the dates that contributed, in order of use.
    """

    buffer: RasterBuffer
    provenance: np.ndarray
    temporal_mask: np.ndarray
    neighbor_dates: List[Date] = field(default_factory=list)

    @property
    def approximated_fraction(self) -> float:
        return float(np.mean(self.provenance == Provenance.UseApproximatedData))


def laplace_fill(values: np.ndarray, unknown: np.ndarray) -> np.ndarray:
    """Harmonic interpolation of ``unknown`` pixels from the known ones.

    Each unknown pixel equals the mean of its in-image 4-neighbours, so the
    image border acts as a reflecting (zero-flux) edge. Known pixels are
    returned unchanged. Every filled value lies within the range of the
    known values bordering its region.

    Parameters
    ----------
    values : np.ndarray
        2-D grid; entries under ``unknown`` are ignored.
    unknown : np.ndarray
        Boolean grid of pixels to solve for. At least one pixel must be
        known unless none is unknown.

    Returns
    -------
    np.ndarray
        float64 copy of ``values`` with the unknown pixels solved.
    """
    values = np.asarray(values, dtype=np.float64)
    unknown = np.asarray(unknown, dtype=bool)
    if values.shape != unknown.shape:
        raise ValueError(f"Values {values.shape} and unknown mask {unknown.shape} differ in shape")

    filled = values.copy()
    if not unknown.any():
        return filled
    if unknown.all():
        raise ValueError("Cannot interpolate an image without known pixels")

    n_rows, n_cols = unknown.shape
    rows, cols = np.nonzero(unknown)
    n = rows.size
    index = np.full(unknown.shape, -1, dtype=np.int64)
    index[rows, cols] = np.arange(n)

    own = np.arange(n)
    degree = np.zeros(n)
    b = np.zeros(n)
    i_parts, j_parts = [], []
    for dr, dc in _OFFSETS:
        nr, nc = rows + dr, cols + dc
        inside = (nr >= 0) & (nr < n_rows) & (nc >= 0) & (nc < n_cols)
        degree += inside
        p, nr, nc = own[inside], nr[inside], nc[inside]
        neighbour = index[nr, nc]
        solved = neighbour >= 0
        i_parts.append(p[solved])
        j_parts.append(neighbour[solved])
        np.add.at(b, p[~solved], values[nr[~solved], nc[~solved]])

    i = np.concatenate([own] + i_parts)
    j = np.concatenate([own] + j_parts)
    v = np.concatenate([degree] + [-np.ones(part.size) for part in i_parts])
    A = sparse.csr_matrix((v, (i, j)), shape=(n, n))

    filled[rows, cols] = spsolve(A, b)
    return filled


def single_image_summary(mask: ValidityMask) -> Tuple[float, float, float]:
    """(percent_cloudy, percent_shadows, percent_invalid) of one mask.

    Each value is the class count over the total pixel count, a fraction in
    [0, 1]. Read-only; does not need the filler or the store.
    """
    if mask.size == 0:
        raise ValueError("Cannot summarize an empty mask")
    return (
        mask.fraction(PixelClass.CLOUD),
        mask.fraction(PixelClass.SHADOW),
        mask.fraction(PixelClass.INVALID),
    )


class GapFiller:
    """Fill the non-VALID pixels of a band.

    Parameters
    ----------
    config : InternalConfig
        Uses ``config.filler`` and the neighbour settings of ``config.store``.
    store : TemporalApproximationStore, optional
        Source of temporal neighbours. Without it only the spatial pass runs.
    raster_io : RasterIO, optional
        Loads neighbour bands and masks. Required for the temporal pass.
    blender : SeamlessBlender, optional
        Blends copied neighbour patches into the current image.
    """

    def __init__(self, config: InternalConfig, store=None, raster_io=None, blender=None):
        self.config = config
        self.store = store
        self.raster_io = raster_io
        self.blender = blender

    @property
    def temporal_enabled(self) -> bool:
        return bool(self.config.filler.use_temporal and self.store is not None
                    and self.raster_io is not None)

    def temporal_candidates(self, unknown: np.ndarray) -> np.ndarray:
        """Unknown pixels whose surroundings are mostly unknown as well."""
        local = uniform_filter(unknown.astype(np.float64),
                               size=self.config.filler.neighborhood_size, mode="nearest")
        return unknown & (local > self.config.filler.temporal_fallback_fraction)

    def _nodata(self, data: np.ndarray, band) -> np.ndarray:
        """Pixels holding the reflectance nodata sentinel."""
        if band not in REFLECTANCE_BANDS:
            return np.zeros(data.shape, dtype=bool)
        return data == self.config.detection.nodata_value

    def _prefers_neighbours(self, date: Date, band) -> bool:
        """False when the date is itself cleaner than its best neighbour."""
        store_cfg = self.config.store
        best = self.store.find_good_close_image(
            date, band.value,
            weight=store_cfg.distance_weight,
            max_gap=store_cfg.neighbor_max_gap_days,
            max_percent_invalid=store_cfg.max_percent_invalid,
        )
        if best == date:
            logger.debug("%s %s: no cleaner neighbour, spatial fill only", date, band.value)
            return False
        return True

    def _temporal_pass(self, working: np.ndarray, needed: np.ndarray, date: Date, band):
        """Copy observed values from neighbour dates into ``working``.

        Returns the mask of copied pixels, the contributing dates and the
        (source, taken) layers for blending.
        """
        store_cfg = self.config.store
        taken = np.zeros(needed.shape, dtype=bool)
        used, layers = [], []

        neighbours = self.store.neighbors(
            date, band.value,
            max_gap=store_cfg.neighbor_max_gap_days,
            weight=store_cfg.distance_weight,
            max_percent_invalid=store_cfg.max_percent_invalid,
        )
        for neighbour in neighbours:
            remaining = needed & ~taken
            if not remaining.any():
                break
            try:
                other = self.raster_io.load_band(neighbour.date, band)
                other_mask = self.raster_io.load_mask(neighbour.date)
            except GapfillError as e:
                logger.warning("Neighbour %s unusable for %s: %s", neighbour.date, band.value, e)
                continue
            if other.shape != working.shape or other_mask.shape != working.shape:
                logger.warning("Neighbour %s has grid %s, expected %s; skipped",
                               neighbour.date, other.shape, working.shape)
                continue

            source = other.data.astype(np.float64)
            usable = (remaining & other_mask.is_class(PixelClass.VALID) & np.isfinite(source)
                      & ~self._nodata(other.data, band))
            if not usable.any():
                continue

            working[usable] = source[usable]
            taken |= usable
            used.append(neighbour.date)
            layers.append((source, usable))
            logger.debug("%s %s: %d pixels from %s", date, band.value, int(usable.sum()), neighbour.date)

        return taken, used, layers

    def fill(self, buffer: RasterBuffer, mask: ValidityMask, date: Optional[Date] = None) -> FillResult:
        """Fill ``buffer`` where ``mask`` is not VALID.

        Returns a new buffer in the band dtype (integer bands rounded and
        clipped). A fully VALID image comes back unchanged with every pixel
        tagged UseRealData.

        Raises
        ------
        ValueError
            Mask and buffer dimensions differ.
        """
        mask.check_matches(buffer)
        date = date if date is not None else buffer.date

        working = buffer.data.astype(np.float64)
        unknown = mask.invalid_mask() | ~np.isfinite(working) | self._nodata(buffer.data, buffer.band)
        provenance = np.zeros(mask.shape, dtype=np.uint8)
        temporal = np.zeros(mask.shape, dtype=bool)

        if not unknown.any():
            return FillResult(buffer=buffer.with_data(buffer.data.copy()),
                              provenance=provenance, temporal_mask=temporal)

        used, layers = [], []
        if self.temporal_enabled and date is not None:
            candidates = self.temporal_candidates(unknown)
            if candidates.any() and self._prefers_neighbours(date, buffer.band):
                temporal, used, layers = self._temporal_pass(working, candidates, date, buffer.band)

        remaining = unknown & ~temporal
        if remaining.all():
            logger.warning("%s %s: no valid pixel to interpolate from, values kept and tagged approximated",
                           date, buffer.band.value)
            working = np.nan_to_num(working, nan=0.0, posinf=0.0, neginf=0.0)
        elif remaining.any():
            working = laplace_fill(working, remaining)
        provenance[remaining] = Provenance.UseApproximatedData

        if self.blender is not None and layers:
            result = self.blender.composite(working, layers)
            if result.degraded:
                logger.warning("%s %s: temporal blend degraded: %s", date, buffer.band.value, result.reason)
            working = result.composite

        logger.debug("%s %s: %d temporal, %d spatial pixels", date, buffer.band.value,
                     int(temporal.sum()), int(remaining.sum()))

        return FillResult(
            buffer=buffer.with_data(working),
            provenance=provenance,
            temporal_mask=temporal,
            neighbor_dates=used,
        )


def filling_missing_portions_smooth_boundaries(buffer: RasterBuffer, mask: ValidityMask,
                                               store_handle=None, *, date: Optional[Date] = None,
                                               raster_io=None, config: Optional[InternalConfig] = None,
                                               blender=None) -> Tuple[RasterBuffer, np.ndarray]:
    """Fill ``buffer`` and return ``(filled_buffer, provenance)``.

    Temporal fallback needs both ``store_handle`` and ``raster_io``; with
    either missing only the spatial pass runs.
    """
    if config is None:
        from gapfill.schemas import ParamConfig, resolve_config
        config = resolve_config(ParamConfig())

    result = GapFiller(config, store=store_handle, raster_io=raster_io, blender=blender).fill(
        buffer, mask, date=date
    )
    return result.buffer, result.provenance
