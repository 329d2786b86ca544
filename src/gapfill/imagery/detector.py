"""Cloud and cloud-shadow detection for one acquisition date.

The detector turns the per-date band set into a ValidityMask:

1. **Invalid pixels**: scene classification NO_DATA / SATURATED_DEFECTIVE
   (configurable), the nodata sentinel in a reflectance band, or
   non-finite samples. INVALID wins over every other class.

2. **Clouds**: the cloud probability layer (CLP, 0-255) is smoothed with a
   Gaussian and thresholded together with the cloud mask layer (CLD,
   0-100); scene-classification cloud classes are added unconditionally.
   The result is dilated and closed with disk footprints.

3. **Potential shadows**: dark pits in the NIR band. NIR is pit-filled by
   morphological reconstruction with a clear-sky percentile as the value
   outside the image; pixels where the fill raised NIR by at least
   ``pit_fill_difference`` (or SCL says shadow/dark area) are candidates.

4. **Object-based shadows**: every cloud large enough is cast along the
   anti-solar direction for a range of cloud heights. The height whose
   footprint best overlaps the candidates is kept, and footprint pixels
   that are candidates and darker than ``shadow_reflectance_threshold``
   become SHADOW. A CLOUD pixel is never turned into SHADOW.

5. **Refinement**: the ConnectedComponentAnalyzer resets components smaller
   than ``min_component_area`` to VALID.

Shadow detection is the slow part; SkipShadowDetection turns it off for
heavily clouded dates, in which case ``shadows_computed`` is False.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import numpy as np
from skimage.filters import gaussian
from skimage.morphology import closing, dilation, disk, reconstruction

from gapfill.core.bands import Band, Indices, SceneClass, compute_index
from gapfill.core.errors import DataError, MissingBandError
from gapfill.core.raster import PixelClass, RasterBuffer, ValidityMask
from gapfill.imagery.components import (
    ConnectedComponentAnalyzer,
    ConnectedComponents,
    find_connected_components,
)
from gapfill.schemas.internal import CloudParams

__all__ = [
    'CloudShadowDetector',
    'DetectionResult',
    'detect',
    'get_diagonal_distance',
    'pit_fill',
    'CLOUD_BANDS',
    'SHADOW_BANDS',
]

logger = logging.getLogger(__name__)

CLOUD_BANDS = (Band.CLP, Band.CLD, Band.SCL, Band.B08)
SHADOW_BANDS = (Band.SUN_ZENITH, Band.SUN_AZIMUTH)

# Scene classes that already mark a pixel as dark
_SCL_DARK = (SceneClass.CLOUD_SHADOWS, SceneClass.DARK_AREA)
_SCL_NOT_CLEAR = (SceneClass.CLOUD_SHADOWS, SceneClass.DARK_AREA, SceneClass.WATER)

# Clear-sky NIR percentile used outside the image, as a function of cloud cover
_COVER_RANGE = (0.07, 0.2)
_PERCENTILE_RANGE = (40.0, 70.0)


def get_diagonal_distance(height, sun_zenith, resolution: float = 1.0,
                          max_zenith: float = 89.0):
    """Horizontal displacement of a cloud's shadow, in pixels.

    A cloud at ``height`` metres casts its shadow ``height * tan(zenith)``
    metres away from the sun. The zenith is clipped to ``[0, max_zenith]``
    so the displacement stays finite near the horizon; the result is
    non-decreasing in zenith for a fixed height.

    Parameters
    ----------
    height : float
        Cloud height proxy in metres.
    sun_zenith : float or array-like
        Sun zenith angle in degrees.
    resolution : float, default 1.0
        Pixel size in metres.
    max_zenith : float, default 89.0
        Largest zenith angle used.

    Raises
    ------
    ValueError
        If height is negative or resolution is not positive.
    """
    if height < 0:
        raise ValueError(f"Cloud height must be non-negative, got {height}")
    if resolution <= 0:
        raise ValueError(f"Resolution must be positive, got {resolution}")

    zenith = np.clip(np.asarray(sun_zenith, dtype=np.float64), 0.0, max_zenith)
    distance = height * np.tan(np.deg2rad(zenith)) / resolution
    if distance.ndim == 0:
        return float(distance)
    return distance


def pit_fill(image: np.ndarray, outside: float) -> np.ndarray:
    """Fill pits (local minima not connected to the border).

    The image is framed by ``outside`` so that pits touching the border
    are filled up to that level as well.
    """
    padded = np.pad(image, 1, mode="constant", constant_values=outside)
    seed = padded.copy()
    seed[1:-1, 1:-1] = padded.max()
    filled = reconstruction(seed, padded, method="erosion")
    return filled[1:-1, 1:-1]


def _linear_step(x: float, x_range: Tuple[float, float], y_range: Tuple[float, float]) -> float:
    x0, x1 = x_range
    y0, y1 = y_range
    if x <= x0:
        return y0
    if x >= x1:
        return y1
    return y0 + (x - x0) * (y1 - y0) / (x1 - x0)


@dataclass
class DetectionResult:
    """All layers produced while detecting one date.

    ``mask`` is the final, refined ValidityMask; the boolean layers are
    kept for quicklooks and for the saved cloud/shadow products.
    """

    mask: ValidityMask
    cloud: np.ndarray
    invalid: np.ndarray
    potential_shadow: np.ndarray
    object_shadow: np.ndarray
    shadow: np.ndarray
    components: ConnectedComponents
    shadows_computed: bool

    @property
    def cloudy_fraction(self) -> float:
        return self.mask.fraction(PixelClass.CLOUD)


class CloudShadowDetector:
    """Classify every pixel of a date as VALID, CLOUD, SHADOW or INVALID.

    Parameters
    ----------
    params : CloudParams
        Frozen detection thresholds (see gapfill.schemas.CloudParams).

    Notes
    -----
    - Stateless apart from ``params``; one instance may serve many threads
    - Raises MissingBandError before computing anything if a required band
      is absent: a partial band set never produces a partial mask

    Examples
    --------
    >>> detector = CloudShadowDetector(config.detection)
    >>> result = detector.detect(bands, resolution=10.0)
    >>> result.mask.fraction(PixelClass.CLOUD)
    """

    def __init__(self, params: CloudParams):
        self.params = params
        self.analyzer = ConnectedComponentAnalyzer.from_params(params)

    def required_bands(self) -> Tuple[Band, ...]:
        required = list(CLOUD_BANDS)
        skip = self.params.skip_shadow_detection
        # Shadows can only be skipped for every date when the threshold is 0
        if not (skip.decision and skip.threshold <= 0.0):
            required.extend(SHADOW_BANDS)
        if self.params.water_index_threshold is not None:
            required.extend(b for b in Indices.MNDWI.bands if b not in required)
        return tuple(required)

    def _check_bands(self, bands: Mapping[Band, RasterBuffer], date) -> Tuple[int, int]:
        for band in self.required_bands():
            if band not in bands:
                raise MissingBandError(date, band)

        shapes = {band: bands[band].shape for band in self.required_bands()}
        if len(set(shapes.values())) != 1:
            raise DataError(f"Band shapes disagree for {date}: {shapes}")
        return next(iter(shapes.values()))

    def cloud_mask(self, clp: np.ndarray, cld: np.ndarray, scl: np.ndarray) -> np.ndarray:
        """Boolean cloud layer from CLP, CLD and SCL."""
        p = self.params
        probability = clp.astype(np.float64) / 255.0
        if p.cloud_probability_sigma > 0:
            probability = gaussian(probability, sigma=p.cloud_probability_sigma,
                                   mode="nearest", preserve_range=True)
        cloud_mask_layer = cld.astype(np.float64) / 100.0

        cloud = (probability > p.cloud_probability_threshold) & (cloud_mask_layer > p.cloud_mask_threshold)
        cloud |= np.isin(scl, p.scl_cloud_classes)

        if p.cloud_dilation_radius > 0:
            cloud = dilation(cloud, disk(p.cloud_dilation_radius))
        if p.cloud_closing_radius > 0:
            cloud = closing(cloud, disk(p.cloud_closing_radius))
        return cloud.astype(bool)

    def invalid_mask(self, bands: Mapping[Band, RasterBuffer]) -> np.ndarray:
        """Pixels without usable source data."""
        p = self.params
        scl = bands[Band.SCL].data
        invalid = np.isin(scl, p.scl_invalid_classes)
        for band in self.required_bands():
            data = bands[band].data
            if band.dtype.kind == "f":
                invalid |= ~np.isfinite(data)
            elif band in (Band.B02, Band.B03, Band.B04, Band.B08, Band.B11):
                invalid |= data == p.nodata_value
        return invalid

    def potential_shadow_mask(self, nir: np.ndarray, cloud: np.ndarray, scl: np.ndarray,
                              invalid: np.ndarray, water: Optional[np.ndarray] = None) -> np.ndarray:
        """Dark-pit candidates for cloud shadows (NIR in reflectance units)."""
        p = self.params
        clear = ~cloud & ~invalid & ~np.isin(scl, _SCL_NOT_CLEAR)
        finite = np.isfinite(nir)

        percentile = _linear_step(float(cloud.mean()), _COVER_RANGE, _PERCENTILE_RANGE)
        if np.any(clear & finite):
            outside = float(np.percentile(nir[clear & finite], percentile))
        elif np.any(finite):
            outside = float(np.max(nir[finite]))
        else:
            return np.zeros(nir.shape, dtype=bool)

        work = np.where(finite, nir, outside)
        difference = pit_fill(work, outside) - work

        candidates = (difference >= p.pit_fill_difference) | np.isin(scl, _SCL_DARK)
        if p.potential_shadow_sigma > 0:
            candidates = gaussian(candidates.astype(np.float64), sigma=p.potential_shadow_sigma,
                                  mode="nearest", preserve_range=True) >= 0.1

        candidates &= ~cloud & ~invalid
        if water is not None:
            candidates &= ~water
        return candidates

    def object_shadow_mask(self, cloud: np.ndarray, potential: np.ndarray, nir: np.ndarray,
                           sun_zenith: np.ndarray, sun_azimuth: np.ndarray,
                           resolution: float) -> np.ndarray:
        """Cast each cloud along the anti-solar direction and match candidates."""
        p = self.params
        rows_total, cols_total = cloud.shape
        shadow = np.zeros(cloud.shape, dtype=bool)

        clouds = find_connected_components(ValidityMask.from_layers(cloud), connectivity=p.connectivity)
        heights = np.arange(p.cloud_height_min, p.cloud_height_max + p.shadow_search_step / 2.0,
                            p.shadow_search_step)

        for region in clouds.regions.values():
            if region.pixel_count < p.min_cloud_size_for_ray_casting:
                continue

            r0, c0, r1, c1 = region.bbox
            local_rows, local_cols = np.nonzero(clouds.labels[r0:r1, c0:c1] == region.label)
            rows, cols = local_rows + r0, local_cols + c0

            zenith = np.nanmean(sun_zenith[rows, cols])
            azimuth = np.nanmean(sun_azimuth[rows, cols])
            if not (np.isfinite(zenith) and np.isfinite(azimuth)):
                logger.debug("Cloud %d has no sun geometry, skipped", region.label)
                continue

            # Shadows fall away from the sun; rows grow southwards
            az = np.deg2rad(azimuth)
            step_col, step_row = -np.sin(az), np.cos(az)

            best_score, best = 0.0, None
            for height in heights:
                d = get_diagonal_distance(height, zenith, resolution, p.max_sun_zenith)
                r = np.rint(rows + step_row * d).astype(np.int64)
                c = np.rint(cols + step_col * d).astype(np.int64)
                inside = (r >= 0) & (r < rows_total) & (c >= 0) & (c < cols_total)
                r, c = r[inside], c[inside]
                free = ~cloud[r, c]
                r, c = r[free], c[free]
                if r.size == 0:
                    continue
                score = float(potential[r, c].mean())
                if score > best_score:
                    best_score, best = score, (r, c)

            if best is None or best_score < p.shadow_match_threshold:
                continue

            r, c = best
            qualifies = potential[r, c] & (nir[r, c] <= p.shadow_reflectance_threshold)
            shadow[r[qualifies], c[qualifies]] = True

        return shadow

    def detect(self, bands: Mapping[Band, RasterBuffer], date=None,
               resolution: Optional[float] = None) -> DetectionResult:
        """Run the full detection for one date.

        Parameters
        ----------
        bands : mapping of Band to RasterBuffer
            At least ``required_bands()``.
        date : Date, optional
            Used in error messages and logs.
        resolution : float, optional
            Pixel size in metres; defaults to the NIR buffer resolution.

        Raises
        ------
        MissingBandError
            A required band is absent.
        DataError
            Band grids disagree.
        """
        p = self.params
        shape = self._check_bands(bands, date)
        if resolution is None:
            resolution = bands[Band.B08].resolution

        scl = bands[Band.SCL].data
        invalid = self.invalid_mask(bands)
        cloud = self.cloud_mask(bands[Band.CLP].data, bands[Band.CLD].data, scl)
        cloudy_fraction = float(cloud.mean()) if cloud.size else 0.0

        potential = np.zeros(shape, dtype=bool)
        object_shadow = np.zeros(shape, dtype=bool)
        shadows_computed = True

        if p.skip_shadow_detection.applies(cloudy_fraction):
            logger.debug("Skipping shadows for %s: %.1f%% cloudy", date, cloudy_fraction * 100)
            shadows_computed = False
        else:
            nir = bands[Band.B08].data.astype(np.float64) / p.reflectance_scale
            water = None
            if p.water_index_threshold is not None:
                water = compute_index(Indices.MNDWI, bands) > p.water_index_threshold
            potential = self.potential_shadow_mask(nir, cloud, scl, invalid, water)
            object_shadow = self.object_shadow_mask(
                cloud, potential, nir,
                bands[Band.SUN_ZENITH].data.astype(np.float64),
                bands[Band.SUN_AZIMUTH].data.astype(np.float64),
                resolution,
            )

        shadow = object_shadow & ~cloud
        mask = ValidityMask.from_layers(cloud, shadow, invalid)
        components = self.analyzer.analyze(mask)

        logger.debug("Detected %s: cloud=%.3f shadow=%.3f invalid=%.3f components=%d",
                     date, mask.fraction(PixelClass.CLOUD), mask.fraction(PixelClass.SHADOW),
                     mask.fraction(PixelClass.INVALID), components.count)

        return DetectionResult(
            mask=mask,
            cloud=cloud,
            invalid=invalid,
            potential_shadow=potential,
            object_shadow=object_shadow,
            shadow=shadow,
            components=components,
            shadows_computed=shadows_computed,
        )


def detect(bands: Mapping[Band, RasterBuffer], params: CloudParams) -> ValidityMask:
    """Detect clouds and shadows and return the refined mask."""
    return CloudShadowDetector(params).detect(bands).mask
