"""Enumerate acquisition dates present on disk."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from gapfill.core.bands import Band
from gapfill.core.dates import DATE_PATTERN, Date

__all__ = ['DateEntry', 'DateDirectoryDiscovery', 'MULTISPECTRAL', 'RADAR']

logger = logging.getLogger(__name__)

MULTISPECTRAL = "MultiSpectral"
RADAR = "Radar"


@dataclass(frozen=True)
class DateEntry:
    """One date directory."""

    date: Date
    path: Path
    kind: str


class DateDirectoryDiscovery:
    """Find ``YYYY-MM-DD`` directories under ``data_dir``.

    A directory holding ``B04.tif`` is MultiSpectral, anything else is
    treated as Radar. Names that look like dates but are not valid calendar
    days are skipped with a warning.
    """

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)

    def discover(self, start: Optional[Date] = None, end: Optional[Date] = None) -> List[DateEntry]:
        if not self.data_dir.is_dir():
            logger.warning("Data directory %s does not exist", self.data_dir)
            return []

        entries = []
        for path in self.data_dir.iterdir():
            if not path.is_dir() or not DATE_PATTERN.fullmatch(path.name):
                continue
            try:
                date = Date.parse(path.name)
            except ValueError:
                logger.warning("Skipping %s: not a calendar date", path.name)
                continue
            if start is not None and date < start:
                continue
            if end is not None and date > end:
                continue
            kind = MULTISPECTRAL if (path / Band.B04.filename).exists() else RADAR
            entries.append(DateEntry(date=date, path=path, kind=kind))

        entries.sort(key=lambda e: e.date)
        logger.info("Discovered %d dates in %s", len(entries), self.data_dir)
        return entries

    @staticmethod
    def missing_bands(entry: DateEntry, bands: Iterable[Band]) -> List[Band]:
        return [band for band in bands if not (entry.path / band.filename).exists()]
