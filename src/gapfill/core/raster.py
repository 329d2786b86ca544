"""In-memory raster buffers and per-pixel validity masks.

A RasterBuffer is one band of one date. Its grid dimensions are derived from
its bounding box and resolution and are checked at construction. A
ValidityMask is the PixelClass grid parallel to a buffer; stages that
combine the two must call ``mask.check_matches(buffer)`` first.

Buffers are owned by the stage processing them. Stages return new buffers
instead of mutating the ones they received (the component analyzer is the
one documented exception: it mutates the mask it refines).
"""

import math
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Dict, Optional, Tuple

import numpy as np
import xarray as xr

from gapfill.core.bands import Band
from gapfill.core.dates import Date

__all__ = ['BoundingBox', 'RasterBuffer', 'PixelClass', 'ValidityMask']


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned extent in projected coordinates (metres)."""

    left: float
    bottom: float
    right: float
    top: float

    def __post_init__(self):
        if self.right <= self.left or self.top <= self.bottom:
            raise ValueError(f"Degenerate bounding box: {self}")

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.top - self.bottom

    @property
    def diagonal(self) -> float:
        return math.hypot(self.width, self.height)

    def shape(self, resolution: float) -> Tuple[int, int]:
        """Grid (rows, cols) covering the box at ``resolution`` metres per pixel."""
        if resolution <= 0:
            raise ValueError(f"Resolution must be positive, got {resolution}")
        return (int(round(self.height / resolution)), int(round(self.width / resolution)))

    @classmethod
    def from_shape(cls, shape: Tuple[int, int], resolution: float = 1.0,
                   left: float = 0.0, bottom: float = 0.0) -> "BoundingBox":
        rows, cols = shape
        return cls(left, bottom, left + cols * resolution, bottom + rows * resolution)


@dataclass
class RasterBuffer:
    """2-D grid of samples for one (date, band) pair.

    Parameters
    ----------
    data : np.ndarray
        2-D sample array. Its dtype must equal ``band.dtype`` unless
        ``working=True`` (float working copies made during filling).
    band : Band
        Channel identifier; fixes dtype and bit depth.
    bbox : BoundingBox
        Extent of the grid.
    resolution : float
        Pixel size in the units of ``bbox``.
    date : Date, optional
        Acquisition date.
    crs : str, optional
        Coordinate reference system of ``bbox`` (e.g. ``"EPSG:32633"``),
        carried through to every product written from the buffer.
    nodata : float, optional
        Nodata value declared by the file the buffer was read from.
    """

    data: np.ndarray
    band: Band
    bbox: BoundingBox
    resolution: float
    date: Optional[Date] = None
    working: bool = field(default=False, compare=False)
    crs: Optional[str] = field(default=None, compare=False)
    nodata: Optional[float] = field(default=None, compare=False)

    def __post_init__(self):
        self.data = np.asarray(self.data)
        if self.data.ndim != 2:
            raise ValueError(f"RasterBuffer must be 2-D, got {self.data.ndim} dims")
        expected = self.bbox.shape(self.resolution)
        if self.data.shape != expected:
            raise ValueError(
                f"{self.band.value}: grid {self.data.shape} does not match "
                f"bbox/resolution dimensions {expected}"
            )
        if not self.working and self.data.dtype != self.band.dtype:
            raise ValueError(
                f"{self.band.value}: dtype {self.data.dtype} differs from band dtype {self.band.dtype}"
            )

    @classmethod
    def from_array(cls, data: np.ndarray, band: Band, date: Optional[Date] = None,
                   resolution: float = 1.0) -> "RasterBuffer":
        """Wrap an array using a pixel-unit bounding box anchored at the origin."""
        data = np.asarray(data)
        bbox = BoundingBox.from_shape(data.shape, resolution)
        return cls(data=data, band=band, bbox=bbox, resolution=resolution, date=date)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    def as_float(self) -> "RasterBuffer":
        """float64 working copy."""
        return replace(self, data=self.data.astype(np.float64), working=True)

    def with_data(self, data: np.ndarray) -> "RasterBuffer":
        """Same geometry, new samples cast back to the band dtype.

        Integer bands are rounded and clipped to their representable range.
        """
        data = np.asarray(data)
        dtype = self.band.dtype
        if dtype.kind in {"u", "i"} and data.dtype != dtype:
            info = np.iinfo(dtype)
            data = np.clip(np.rint(data), info.min, info.max)
        return replace(self, data=data.astype(dtype), working=False)

    def to_dataarray(self) -> xr.DataArray:
        """Expose as a DataArray with pixel-centre ``y``/``x`` coordinates."""
        rows, cols = self.shape
        half = self.resolution / 2.0
        y = self.bbox.top - half - np.arange(rows) * self.resolution
        x = self.bbox.left + half + np.arange(cols) * self.resolution
        attrs = {"band": self.band.value, "resolution": self.resolution}
        if self.date is not None:
            attrs["date"] = self.date.isoformat()
        return xr.DataArray(self.data, dims=("y", "x"), coords={"y": y, "x": x},
                            name=self.band.value, attrs=attrs)


class PixelClass(IntEnum):
    """Per-pixel validity classification."""

    VALID = 0
    CLOUD = 1
    SHADOW = 2
    INVALID = 3


class ValidityMask:
    """Grid of PixelClass codes parallel to a RasterBuffer."""

    def __init__(self, codes: np.ndarray):
        codes = np.asarray(codes)
        if codes.ndim != 2:
            raise ValueError(f"ValidityMask must be 2-D, got {codes.ndim} dims")
        if codes.size and (codes.min() < PixelClass.VALID or codes.max() > PixelClass.INVALID):
            raise ValueError("ValidityMask contains codes outside PixelClass")
        self.codes = codes.astype(np.uint8)

    @classmethod
    def all_valid(cls, shape: Tuple[int, int]) -> "ValidityMask":
        return cls(np.full(shape, PixelClass.VALID, dtype=np.uint8))

    @classmethod
    def from_layers(cls, cloud: np.ndarray, shadow: Optional[np.ndarray] = None,
                    invalid: Optional[np.ndarray] = None) -> "ValidityMask":
        """Compose boolean layers with precedence INVALID > CLOUD > SHADOW."""
        codes = np.full(cloud.shape, PixelClass.VALID, dtype=np.uint8)
        if shadow is not None:
            codes[shadow] = PixelClass.SHADOW
        codes[cloud] = PixelClass.CLOUD
        if invalid is not None:
            codes[invalid] = PixelClass.INVALID
        return cls(codes)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.codes.shape

    @property
    def size(self) -> int:
        return self.codes.size

    def is_class(self, cls: PixelClass) -> np.ndarray:
        return self.codes == cls

    def invalid_mask(self) -> np.ndarray:
        """Pixels that are anything but VALID."""
        return self.codes != PixelClass.VALID

    def counts(self) -> Dict[PixelClass, int]:
        counts = np.bincount(self.codes.ravel(), minlength=len(PixelClass))
        return {cls: int(counts[cls]) for cls in PixelClass}

    def fraction(self, cls: PixelClass) -> float:
        if self.size == 0:
            raise ValueError("Empty mask has no class fractions")
        return self.counts()[cls] / self.size

    def copy(self) -> "ValidityMask":
        return ValidityMask(self.codes.copy())

    def check_matches(self, buffer: RasterBuffer) -> None:
        """Raise ValueError unless mask and buffer dimensions agree exactly."""
        if self.shape != buffer.shape:
            raise ValueError(
                f"Mask shape {self.shape} does not match {buffer.band.value} shape {buffer.shape}"
            )

    def __eq__(self, other) -> bool:
        return isinstance(other, ValidityMask) and np.array_equal(self.codes, other.codes)

    def __repr__(self) -> str:
        counts = ", ".join(f"{cls.name}={n}" for cls, n in self.counts().items())
        return f"ValidityMask(shape={self.shape}, {counts})"
