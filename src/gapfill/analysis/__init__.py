"""Analysis of processed dates.

- choices: Which data (observed or filled) and which pixels an analysis reads
- indices: Per-date spectral index images and their statistics
- summary: Multi-year fraction-above-threshold summaries
- time_series: Band values at one location over nearby dates
"""

from gapfill.analysis.choices import ApproximatedData, DataChoice, RealData, choice_from_config
from gapfill.analysis.indices import IndexCalculator, IndexImage, compute_indices_for_all_dates
from gapfill.analysis.summary import IndexSummary, SummaryResult, summarize_index
from gapfill.analysis.time_series import TimeSeriesPoint, band_for_location, pixel_at

__all__ = [
    "RealData",
    "ApproximatedData",
    "DataChoice",
    "choice_from_config",
    "IndexCalculator",
    "IndexImage",
    "compute_indices_for_all_dates",
    "IndexSummary",
    "SummaryResult",
    "summarize_index",
    "TimeSeriesPoint",
    "band_for_location",
    "pixel_at",
]
