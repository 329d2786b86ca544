"""Which pixels of which dates an index analysis reads.

- ``RealData``: the observed bands of every detected date. Cloudy and shadow
  pixels can be excluded through the saved mask, and whole dates can be
  skipped when too much of them is invalid. Pixels of the INVALID class are
  always excluded.
- ``ApproximatedData``: the filled bands. Every pixel counts.
"""

from dataclasses import dataclass
from typing import Optional, Union

__all__ = ['RealData', 'ApproximatedData', 'DataChoice', 'choice_from_config']


@dataclass(frozen=True)
class RealData:
    """Observed band values, optionally masked."""

    exclude_cloudy_pixels: bool = False
    exclude_shadow_pixels: bool = False
    skip_threshold: Optional[float] = None

    def __post_init__(self):
        if self.skip_threshold is not None and not 0.0 <= self.skip_threshold <= 1.0:
            raise ValueError(f"skip_threshold must be within [0, 1], got {self.skip_threshold}")

    @property
    def use_approximated_data(self) -> bool:
        return False


@dataclass(frozen=True)
class ApproximatedData:
    """Filled band values produced by the gap filler."""

    # class attributes, not fields: nothing is masked or skipped
    exclude_cloudy_pixels = False
    exclude_shadow_pixels = False
    skip_threshold = None

    @property
    def use_approximated_data(self) -> bool:
        return True


DataChoice = Union[RealData, ApproximatedData]


def choice_from_config(analysis) -> DataChoice:
    """Build the data choice described by an ``InternalAnalysisConfig``."""
    if analysis.use_approximated_data:
        return ApproximatedData()
    return RealData(
        exclude_cloudy_pixels=analysis.exclude_cloudy_pixels,
        exclude_shadow_pixels=analysis.exclude_shadow_pixels,
        skip_threshold=analysis.skip_threshold,
    )
