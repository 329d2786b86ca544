"""Imagery processing modules.

- detector: Cloud and shadow detection
- components: Connected-component labeling of the validity mask
- gap_filler: Spatial and temporal reconstruction of masked pixels
- blender: Poisson (gradient-domain) blending
- raster_io: GeoTIFF reading and writing
- discovery: Date directory enumeration
"""

from gapfill.imagery.detector import CloudShadowDetector, DetectionResult, detect, get_diagonal_distance
from gapfill.imagery.components import ConnectedComponentAnalyzer, ConnectedComponents, find_connected_components
from gapfill.imagery.blender import SeamlessBlender, BlendResult, blend_images_poisson
from gapfill.imagery.gap_filler import (
    GapFiller,
    FillResult,
    Provenance,
    UseRealData,
    UseApproximatedData,
    filling_missing_portions_smooth_boundaries,
    single_image_summary,
)
from gapfill.imagery.raster_io import RasterIO, GeoTiffRasterIO
from gapfill.imagery.discovery import DateDirectoryDiscovery, DateEntry

__all__ = [
    "CloudShadowDetector",
    "DetectionResult",
    "detect",
    "get_diagonal_distance",
    "ConnectedComponentAnalyzer",
    "ConnectedComponents",
    "find_connected_components",
    "SeamlessBlender",
    "BlendResult",
    "blend_images_poisson",
    "GapFiller",
    "FillResult",
    "Provenance",
    "UseRealData",
    "UseApproximatedData",
    "filling_missing_portions_smooth_boundaries",
    "single_image_summary",
    "RasterIO",
    "GeoTiffRasterIO",
    "DateDirectoryDiscovery",
    "DateEntry",
]
