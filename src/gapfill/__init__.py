"""`Gapfill` - cloud/shadow detection and gap-free reconstruction of satellite time series.

Subpackages:
- core: Dates, bands, raster buffers, validity masks
- imagery: Detection, connected components, gap filling, Poisson blending, raster IO
- pipeline: Approximation store, per-date processor, orchestrator
- analysis: Spectral index images, multi-year summaries, location time series
- visualization: Quicklook plots
"""

__version__ = "0.1.0"
