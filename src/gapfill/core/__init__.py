"""Core data model for the gapfill pipeline.

Dates, bands, raster buffers, validity masks and the error taxonomy shared
by every stage.
"""

from gapfill.core.dates import Date
from gapfill.core.bands import Band, SceneClass, Indices, compute_index
from gapfill.core.raster import BoundingBox, RasterBuffer, PixelClass, ValidityMask
from gapfill.core.errors import (
    GapfillError,
    MissingBandError,
    DataError,
    StoreError,
    NotFoundError,
)

__all__ = [
    'Date',
    'Band',
    'SceneClass',
    'Indices',
    'compute_index',
    'BoundingBox',
    'RasterBuffer',
    'PixelClass',
    'ValidityMask',
    'GapfillError',
    'MissingBandError',
    'DataError',
    'StoreError',
    'NotFoundError',
]
