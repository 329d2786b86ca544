"""Error taxonomy for per-date processing.

Key distinction:
- MissingBandError / DataError / NotFoundError: a date cannot be processed;
  the processor logs it and moves on to the next date
- StoreError: the approximation store failed; fatal for the current date,
  fatal for the run only when raised while opening the store
- ContractViolation (gapfill.contracts): pipeline bug

Poisson blending failures are not errors at all: they are reported through
``BlendResult.degraded``.
"""

__all__ = [
    'GapfillError',
    'MissingBandError',
    'DataError',
    'StoreError',
    'NotFoundError',
]


class GapfillError(Exception):
    """Base class for recoverable processing errors."""
    pass


class MissingBandError(GapfillError):
    """A band required by a stage is absent for a date."""

    def __init__(self, date, band, detail: str = ""):
        self.date = date
        self.band = band
        name = getattr(band, "value", band)
        message = f"Band {name} missing for {date}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DataError(GapfillError):
    """Pixel buffer is corrupt, undecodable or inconsistent with its band."""
    pass


class StoreError(GapfillError):
    """The approximation store could not be read or written."""
    pass


class NotFoundError(GapfillError):
    """A raster collaborator has no file for the requested (date, band)."""
    pass
