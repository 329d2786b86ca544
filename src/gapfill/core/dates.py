"""Calendar date key used by the approximation store and the processor."""

import datetime as _dt
import re
from dataclasses import dataclass

__all__ = ['Date', 'DATE_PATTERN']

# Directory names produced by the acquisition step (YYYY-MM-DD)
DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


@dataclass(frozen=True, order=True)
class Date:
    """Immutable (year, month, day) key with calendar ordering.

    Field order makes the dataclass ordering identical to calendar order.

    Raises
    ------
    ValueError
        If the triple is not a valid Gregorian date.
    """

    year: int
    month: int
    day: int

    def __post_init__(self):
        # Delegate calendar validation to the datetime module
        _dt.date(self.year, self.month, self.day)

    @classmethod
    def parse(cls, text: str) -> "Date":
        """Parse ``YYYY-MM-DD``."""
        match = DATE_PATTERN.match(text.strip())
        if match is None:
            raise ValueError(f"Not a YYYY-MM-DD date: {text!r}")
        year, month, day = (int(g) for g in match.groups())
        return cls(year, month, day)

    @classmethod
    def from_date(cls, value: _dt.date) -> "Date":
        return cls(value.year, value.month, value.day)

    def to_date(self) -> _dt.date:
        return _dt.date(self.year, self.month, self.day)

    def days_between(self, other: "Date") -> int:
        """Signed number of days from ``self`` to ``other``."""
        return (other.to_date() - self.to_date()).days

    def shift(self, days: int) -> "Date":
        return Date.from_date(self.to_date() + _dt.timedelta(days=days))

    def isoformat(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    def __str__(self) -> str:
        return self.isoformat()
