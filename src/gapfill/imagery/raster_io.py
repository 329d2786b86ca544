"""GeoTIFF storage of bands, masks and filled results.

Layout::

    <data_dir>/<YYYY-MM-DD>/<band>.tif              input bands
    <mask_dir>/<YYYY-MM-DD>/validity_mask.tif       PixelClass codes
    <mask_dir>/<YYYY-MM-DD>/cloud_mask.tif          0/1
    <mask_dir>/<YYYY-MM-DD>/shadow_mask.tif         0/1
    <output_dir>/<YYYY-MM-DD>/<band>_filled.tif     filled band
    <output_dir>/<YYYY-MM-DD>/<band>_provenance.tif 0 real, 1 approximated
    <analysis_dir>/<YYYY-MM-DD>/<name>.tif          per-date index images
    <analysis_dir>/<name>.tif                       multi-date summaries

Every product inherits the CRS of the band it was derived from. Filled
bands also keep the nodata value of their input file.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
import rasterio
from rasterio.errors import RasterioError
from rasterio.transform import from_bounds

from gapfill.core.bands import Band
from gapfill.core.dates import Date
from gapfill.core.errors import DataError, NotFoundError
from gapfill.core.raster import BoundingBox, PixelClass, RasterBuffer, ValidityMask

__all__ = ['RasterIO', 'GeoTiffRasterIO', 'MASK_FILENAME', 'CLOUD_FILENAME', 'SHADOW_FILENAME']

logger = logging.getLogger(__name__)

MASK_FILENAME = "validity_mask.tif"
CLOUD_FILENAME = "cloud_mask.tif"
SHADOW_FILENAME = "shadow_mask.tif"


class RasterIO(Protocol):
    """What the pipeline needs from raster storage."""

    def load_band(self, date: Date, band: Band) -> RasterBuffer: ...

    def save_result(self, date: Date, buffer: RasterBuffer,
                    provenance: Optional[np.ndarray] = None) -> Path: ...

    def load_mask(self, date: Date) -> ValidityMask: ...

    def save_mask(self, date: Date, mask: ValidityMask, reference: RasterBuffer) -> Path: ...

    def has_result(self, date: Date, band: Band) -> bool: ...

    # index analysis only

    def load_result(self, date: Date, band: Band) -> RasterBuffer: ...

    def save_product(self, date: Date, name: str, data: np.ndarray, reference: RasterBuffer) -> Path: ...

    def load_product(self, date: Date, name: str) -> np.ndarray: ...

    def has_product(self, date: Date, name: str) -> bool: ...

    def save_grid(self, name: str, data: np.ndarray, reference: RasterBuffer) -> Path: ...


class GeoTiffRasterIO:
    """RasterIO backed by single-band GeoTIFF files.

    Parameters
    ----------
    data_dir : str or Path
        Root holding one directory per date.
    output_dir : str or Path
        Root for filled products; per-date directories are created on
        first write.
    mask_dir : str or Path, optional
        Root for the masks. Defaults to ``output_dir``.
    analysis_dir : str or Path, optional
        Root for index images and summaries. Defaults to ``output_dir``.
    """

    def __init__(self, data_dir, output_dir, mask_dir=None, analysis_dir=None):
        self.data_dir = Path(data_dir)
        self.output_dir = Path(output_dir)
        self.mask_dir = Path(mask_dir) if mask_dir is not None else self.output_dir
        self.analysis_dir = Path(analysis_dir) if analysis_dir is not None else self.output_dir

    def band_path(self, date: Date, band: Band) -> Path:
        return self.data_dir / date.isoformat() / band.filename

    def output_path(self, date: Date, filename: str) -> Path:
        return self.output_dir / date.isoformat() / filename

    def mask_path(self, date: Date, filename: str = MASK_FILENAME) -> Path:
        return self.mask_dir / date.isoformat() / filename

    def product_path(self, date: Date, name: str) -> Path:
        return self.analysis_dir / date.isoformat() / f"{name}.tif"

    def _read(self, path: Path):
        if not path.exists():
            raise NotFoundError(f"{path} does not exist")
        try:
            with rasterio.open(path) as src:
                data = src.read(1)
                bounds = src.bounds
                resolution = float(src.res[0])
                crs = src.crs.to_string() if src.crs else None
                nodata = src.nodata
        except RasterioError as e:
            raise DataError(f"Cannot decode {path}: {e}") from e
        bbox = BoundingBox(bounds.left, bounds.bottom, bounds.right, bounds.top)
        return data, bbox, resolution, crs, nodata

    def _write(self, path: Path, data: np.ndarray, reference: RasterBuffer,
               nodata: Optional[float] = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        rows, cols = data.shape
        bbox = reference.bbox
        transform = from_bounds(bbox.left, bbox.bottom, bbox.right, bbox.top, cols, rows)
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=rows,
            width=cols,
            count=1,
            dtype=data.dtype.name,
            crs=reference.crs,
            transform=transform,
            nodata=nodata,
            compress="deflate",
        ) as dst:
            dst.write(data, 1)
        return path

    def _buffer(self, path: Path, date: Date, band: Band) -> RasterBuffer:
        data, bbox, resolution, crs, nodata = self._read(path)
        if data.dtype != band.dtype:
            raise DataError(f"{path}: dtype {data.dtype}, expected {band.dtype} for {band.value}")
        try:
            return RasterBuffer(data=data, band=band, bbox=bbox, resolution=resolution,
                                date=date, crs=crs, nodata=nodata)
        except ValueError as e:
            raise DataError(f"{path}: {e}") from e

    def load_band(self, date: Date, band: Band) -> RasterBuffer:
        """Read ``<data_dir>/<date>/<band>.tif``.

        Raises
        ------
        NotFoundError
            The file is absent.
        DataError
            The file cannot be decoded or its dtype is not the band dtype.
        """
        return self._buffer(self.band_path(date, band), date, band)

    def save_mask(self, date: Date, mask: ValidityMask, reference: RasterBuffer) -> Path:
        """Write the validity mask plus binary cloud and shadow layers."""
        mask.check_matches(reference)
        path = self._write(self.mask_path(date), mask.codes, reference)
        self._write(self.mask_path(date, CLOUD_FILENAME),
                    mask.is_class(PixelClass.CLOUD).astype(np.uint8), reference)
        self._write(self.mask_path(date, SHADOW_FILENAME),
                    mask.is_class(PixelClass.SHADOW).astype(np.uint8), reference)
        logger.debug("Saved masks for %s under %s", date, path.parent)
        return path

    def load_mask(self, date: Date) -> ValidityMask:
        data, _, _, _, _ = self._read(self.mask_path(date))
        try:
            return ValidityMask(data)
        except ValueError as e:
            raise DataError(f"Validity mask for {date}: {e}") from e

    def save_result(self, date: Date, buffer: RasterBuffer,
                    provenance: Optional[np.ndarray] = None) -> Path:
        """Write ``<band>_filled.tif`` and, if given, ``<band>_provenance.tif``."""
        path = self._write(self.output_path(date, f"{buffer.band.value}_filled.tif"),
                           buffer.data, buffer, nodata=buffer.nodata)
        if provenance is not None:
            self._write(self.output_path(date, f"{buffer.band.value}_provenance.tif"),
                        np.asarray(provenance, dtype=np.uint8), buffer)
        return path

    def load_result(self, date: Date, band: Band) -> RasterBuffer:
        """Read a filled band written by ``save_result``."""
        return self._buffer(self.output_path(date, f"{band.value}_filled.tif"), date, band)

    def has_result(self, date: Date, band: Band) -> bool:
        return self.output_path(date, f"{band.value}_filled.tif").exists()

    def save_product(self, date: Date, name: str, data: np.ndarray, reference: RasterBuffer) -> Path:
        """Write a per-date float32 product such as an index image."""
        return self._write(self.product_path(date, name), np.asarray(data, dtype=np.float32), reference)

    def load_product(self, date: Date, name: str) -> np.ndarray:
        data, _, _, _, _ = self._read(self.product_path(date, name))
        return data

    def has_product(self, date: Date, name: str) -> bool:
        return self.product_path(date, name).exists()

    def save_grid(self, name: str, data: np.ndarray, reference: RasterBuffer) -> Path:
        """Write a multi-date grid to ``<analysis_dir>/<name>.tif``."""
        return self._write(self.analysis_dir / f"{name}.tif", np.asarray(data), reference)
