"""Band catalogue, scene classification codes and spectral indices.

Every band delivered for a date has a fixed sample type. The type is part of
the band definition and is never inferred from the file that was read: a
file whose dtype disagrees with its band is a DataError.

Spectral indices are alternate input channels derived from reflectance
bands. Normalized differences return 0 where the denominator vanishes.
"""

from enum import Enum, IntEnum
from typing import Mapping, Tuple

import numpy as np

__all__ = [
    'Band',
    'SceneClass',
    'Indices',
    'compute_index',
    'REFLECTANCE_BANDS',
    'ANGLE_BANDS',
]


class Band(Enum):
    """Spectral, auxiliary and derived channels.

    The enum value is the file stem used on disk (``<date>/<value>.tif``).
    """

    B02 = ("B02", "uint16", 16)
    B03 = ("B03", "uint16", 16)
    B04 = ("B04", "uint16", 16)
    B08 = ("B08", "uint16", 16)
    B11 = ("B11", "uint16", 16)
    CLP = ("CLP", "uint8", 8)
    CLD = ("CLD", "uint8", 8)
    SCL = ("SCL", "uint8", 8)
    DEM = ("DEM", "float32", 32)
    SUN_AZIMUTH = ("sunAzimuthAngles", "float32", 32)
    SUN_ZENITH = ("sunZenithAngles", "float32", 32)
    VIEW_AZIMUTH = ("viewAzimuthMean", "float32", 32)
    VIEW_ZENITH = ("viewZenithMean", "float32", 32)
    VV = ("VV", "float32", 32)
    VH = ("VH", "float32", 32)

    def __new__(cls, stem, dtype, bit_depth):
        obj = object.__new__(cls)
        obj._value_ = stem
        obj.dtype = np.dtype(dtype)
        obj.bit_depth = bit_depth
        return obj

    @property
    def filename(self) -> str:
        return f"{self.value}.tif"

    @property
    def max_value(self) -> float:
        """Largest representable sample (used to normalize integer bands)."""
        if self.dtype.kind in {"u", "i"}:
            return float(np.iinfo(self.dtype).max)
        return float(np.finfo(self.dtype).max)

    @classmethod
    def from_name(cls, name: str) -> "Band":
        """Look up by enum name (``SUN_ZENITH``) or file stem (``sunZenithAngles``)."""
        if name in cls.__members__:
            return cls.__members__[name]
        return cls(name)


REFLECTANCE_BANDS = (Band.B02, Band.B03, Band.B04, Band.B08, Band.B11)
ANGLE_BANDS = (Band.SUN_AZIMUTH, Band.SUN_ZENITH, Band.VIEW_AZIMUTH, Band.VIEW_ZENITH)


class SceneClass(IntEnum):
    """Codes of the scene classification layer (SCL band)."""

    NO_DATA = 0
    SATURATED_DEFECTIVE = 1
    DARK_AREA = 2
    CLOUD_SHADOWS = 3
    VEGETATION = 4
    BARE_SOIL = 5
    WATER = 6
    CLOUD_LOW = 7
    CLOUD_MEDIUM = 8
    CLOUD_HIGH = 9
    CIRRUS = 10
    SNOW_ICE = 11


class Indices(Enum):
    """Derived spectral indices and the bands they combine."""

    NDVI = (Band.B08, Band.B04)
    NDMI = (Band.B08, Band.B11)
    MNDWI = (Band.B03, Band.B11)
    SWI = (Band.B03, Band.B08, Band.B11)

    @property
    def bands(self) -> Tuple[Band, ...]:
        return self.value


def _normalized_difference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return (a - b) / (a + b)


def compute_index(index: Indices, bands: Mapping[Band, np.ndarray]) -> np.ndarray:
    """Compute a spectral index from raw band arrays.

    Parameters
    ----------
    index : Indices
        Which index to compute.
    bands : mapping of Band to np.ndarray
        Raw samples (or RasterBuffer-like objects exposing ``.data``) for at
        least ``index.bands``.

    Returns
    -------
    np.ndarray
        float32 index; NaN and infinities are replaced by 0.

    Raises
    ------
    KeyError
        If a required band is absent from ``bands``.
    """
    arrays = []
    for band in index.bands:
        value = bands[band]
        if not isinstance(value, np.ndarray):
            value = getattr(value, "data", value)
        arrays.append(np.asarray(value, dtype=np.float64))

    if index is Indices.SWI:
        green, nir, swir = arrays
        with np.errstate(divide="ignore", invalid="ignore"):
            result = green * (nir - swir) / ((green + nir) * (nir + swir))
    else:
        result = _normalized_difference(*arrays)

    result = np.where(np.isfinite(result), result, 0.0)
    return result.astype(np.float32)
