"""SQLite-backed temporal approximation store.

Keeps one record per acquisition date with the detection statistics the gap
filler needs to pick temporal neighbours, plus a log of which bands were
approximated on which date.

**Database Schema:**

Table `dates` (primary key year, month, day):

- clouds_computed, shadows_computed: 0/1 flags
- percent_cloudy, percent_shadows, percent_invalid: fractions in [0, 1]

Table `approximated_data`:

- id, band_name, method, using_denoised, year, month, day
- at most one row per (date, band_name)

Table `index_data` (one row per date, index and data choice):

- index_name, using_approximated_data, min, max, mean, valid_pixels

Table `single_image_summary` (multi-year index summaries, see
``gapfill.analysis``):

- the settings a summary was computed with, and its min, max, mean and
  num_days_used

**Thread Safety:**

Writes go through a single connection guarded by a lock, so upserts and
detection records are serialized per store instance. Reads use one
connection per thread on a WAL database and never take the write lock.
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from gapfill.core.dates import Date
from gapfill.core.errors import StoreError

logger = logging.getLogger(__name__)

__all__ = ['DateRecord', 'NeighborDate', 'TemporalApproximationStore']


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS dates(
      year INTEGER NOT NULL,
      month INTEGER NOT NULL,
      day INTEGER NOT NULL,
      clouds_computed INTEGER,
      shadows_computed INTEGER,
      percent_cloudy REAL,
      percent_shadows REAL,
      percent_invalid REAL,
      PRIMARY KEY(year, month, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS approximated_data(
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      band_name TEXT,
      method TEXT,
      using_denoised INTEGER,
      year INTEGER,
      month INTEGER,
      day INTEGER,
      FOREIGN KEY(year, month, day) REFERENCES dates(year, month, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS index_data(
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      index_name TEXT NOT NULL,
      using_approximated_data INTEGER NOT NULL,
      min REAL,
      max REAL,
      mean REAL,
      valid_pixels INTEGER,
      year INTEGER NOT NULL,
      month INTEGER NOT NULL,
      day INTEGER NOT NULL,
      UNIQUE(index_name, using_approximated_data, year, month, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS single_image_summary(
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      index_name TEXT NOT NULL,
      threshold REAL NOT NULL,
      start_year INTEGER NOT NULL,
      end_year INTEGER NOT NULL,
      use_approximated_data INTEGER NOT NULL,
      exclude_cloudy_pixels INTEGER NOT NULL,
      exclude_shadow_pixels INTEGER NOT NULL,
      skip_threshold REAL,
      min REAL,
      max REAL,
      mean REAL,
      num_days_used INTEGER
    )
    """,
)


@dataclass(frozen=True)
class DateRecord:
    """One row of the `dates` table."""

    date: Date
    clouds_computed: bool
    shadows_computed: bool
    percent_cloudy: Optional[float]
    percent_shadows: Optional[float]
    percent_invalid: Optional[float]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DateRecord":
        return cls(
            date=Date(row['year'], row['month'], row['day']),
            clouds_computed=bool(row['clouds_computed']),
            shadows_computed=bool(row['shadows_computed']),
            percent_cloudy=row['percent_cloudy'],
            percent_shadows=row['percent_shadows'],
            percent_invalid=row['percent_invalid'],
        )


@dataclass(frozen=True)
class NeighborDate:
    """A candidate temporal neighbour and its ranking distance.

    ``distance = weight * |days_apart| + (1 - weight) * percent_invalid``
    """

    date: Date
    days_apart: int
    percent_invalid: float
    distance: float


def _check_fraction(name: str, value: Optional[float]) -> None:
    if value is not None and not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


class TemporalApproximationStore:
    """Per-date validity index used to find temporal neighbours.

    Parameters
    ----------
    db_path : Path or str
        SQLite database file. Created with its parent directory if needed.

    Raises
    ------
    StoreError
        The database cannot be opened or initialized. Callers treat this as
        fatal for the whole run.

    Examples
    --------
    ::

        with TemporalApproximationStore(base_dir / "approximation.db") as store:
            store.upsert_if_absent(date)
            store.record_detection(date, 0.1, 0.05, 0.02)
            record = store.query(date)
            best = store.neighbors(date, "B04", max_gap=31)
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn = None
        self._local = threading.local()
        self._readers: List[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create store directory {self.db_path.parent}: {e}") from e

        self._init_database()
        logger.info(f"Approximation store initialized: {self.db_path}")

    @contextmanager
    def _errors(self, action: str):
        try:
            yield
        except sqlite3.Error as e:
            raise StoreError(f"Store {action} failed ({self.db_path}): {e}") from e

    def _get_connection(self) -> sqlite3.Connection:
        """Writer connection, shared by all threads under the write lock."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _reader(self) -> sqlite3.Connection:
        """Thread-local reader connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    def _init_database(self):
        with self._errors("initialization"), self._lock:
            conn = self._get_connection()
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_approx_date ON approximated_data(year, month, day)"
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_if_absent(self, date: Date) -> bool:
        """Create a bare record for ``date`` unless one exists.

        Returns
        -------
        bool
            True if a record was created; False if it already existed, in
            which case nothing was changed.
        """
        with self._errors("upsert"), self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                "INSERT OR IGNORE INTO dates(year, month, day) VALUES (?, ?, ?)",
                (date.year, date.month, date.day),
            )
            conn.commit()
            created = cursor.rowcount == 1

        if created:
            logger.debug(f"Registered date: {date}")
        return created

    def record_detection(self, date: Date, percent_cloudy: float,
                         percent_shadows: Optional[float], percent_invalid: float) -> None:
        """Store detection statistics for ``date``.

        Sets clouds_computed, and shadows_computed unless ``percent_shadows``
        is None (shadow detection skipped). Re-recording a date overwrites
        its values in place.

        Raises
        ------
        ValueError
            A percentage lies outside [0, 1].
        """
        _check_fraction("percent_cloudy", percent_cloudy)
        _check_fraction("percent_shadows", percent_shadows)
        _check_fraction("percent_invalid", percent_invalid)
        shadows_computed = 0 if percent_shadows is None else 1

        with self._errors("record_detection"), self._lock:
            conn = self._get_connection()
            conn.execute("""
                INSERT INTO dates(year, month, day, clouds_computed, shadows_computed,
                                  percent_cloudy, percent_shadows, percent_invalid)
                VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                ON CONFLICT(year, month, day) DO UPDATE SET
                    clouds_computed = 1,
                    shadows_computed = excluded.shadows_computed,
                    percent_cloudy = excluded.percent_cloudy,
                    percent_shadows = excluded.percent_shadows,
                    percent_invalid = excluded.percent_invalid
            """, (
                date.year, date.month, date.day,
                shadows_computed,
                float(percent_cloudy),
                None if percent_shadows is None else float(percent_shadows),
                float(percent_invalid),
            ))
            conn.commit()

        logger.debug(f"Recorded detection for {date}: cloudy={percent_cloudy:.3f} "
                     f"shadows={percent_shadows} invalid={percent_invalid:.3f}")

    def write_approx_results(self, date: Date, band: str, method: str,
                             using_denoised: bool = False) -> int:
        """Log that ``band`` was approximated on ``date``; returns the row id.

        A date keeps at most one row per band: rewriting replaces the
        earlier row, so re-filling a date never piles up duplicates.
        """
        with self._errors("write_approx_results"), self._lock:
            conn = self._get_connection()
            conn.execute("""
                DELETE FROM approximated_data
                WHERE band_name = ? AND year = ? AND month = ? AND day = ?
            """, (band, date.year, date.month, date.day))
            cursor = conn.execute("""
                INSERT INTO approximated_data(band_name, method, using_denoised, year, month, day)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (band, method, int(using_denoised), date.year, date.month, date.day))
            conn.commit()
            return int(cursor.lastrowid)

    def store_index_info(self, date: Date, index_name: str, using_approximated_data: bool,
                         minimum: Optional[float], maximum: Optional[float],
                         mean: Optional[float], valid_pixels: int) -> None:
        """Store the statistics of one index image; replaces an earlier row."""
        with self._errors("store_index_info"), self._lock:
            conn = self._get_connection()
            conn.execute("""
                INSERT INTO index_data(index_name, using_approximated_data, min, max, mean,
                                       valid_pixels, year, month, day)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(index_name, using_approximated_data, year, month, day) DO UPDATE SET
                    min = excluded.min,
                    max = excluded.max,
                    mean = excluded.mean,
                    valid_pixels = excluded.valid_pixels
            """, (index_name, int(using_approximated_data), minimum, maximum, mean,
                  int(valid_pixels), date.year, date.month, date.day))
            conn.commit()

    def save_summary_result(self, *, index_name: str, threshold: float, start_year: int,
                            end_year: int, use_approximated_data: bool,
                            exclude_cloudy_pixels: bool, exclude_shadow_pixels: bool,
                            skip_threshold: Optional[float], minimum: Optional[float],
                            maximum: Optional[float], mean: Optional[float],
                            num_days_used: int) -> int:
        """Insert one index summary row; returns its id."""
        with self._errors("save_summary_result"), self._lock:
            conn = self._get_connection()
            cursor = conn.execute("""
                INSERT INTO single_image_summary(index_name, threshold, start_year, end_year,
                    use_approximated_data, exclude_cloudy_pixels, exclude_shadow_pixels,
                    skip_threshold, min, max, mean, num_days_used)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (index_name, float(threshold), int(start_year), int(end_year),
                  int(use_approximated_data), int(exclude_cloudy_pixels),
                  int(exclude_shadow_pixels), skip_threshold, minimum, maximum, mean,
                  int(num_days_used)))
            conn.commit()
            return int(cursor.lastrowid)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, date: Date) -> Optional[DateRecord]:
        """Record for ``date``, or None."""
        with self._errors("query"):
            row = self._reader().execute(
                "SELECT * FROM dates WHERE year = ? AND month = ? AND day = ?",
                (date.year, date.month, date.day),
            ).fetchone()
        return DateRecord.from_row(row) if row else None

    def dates(self) -> List[Date]:
        """All known dates in calendar order."""
        with self._errors("dates"):
            rows = self._reader().execute(
                "SELECT year, month, day FROM dates ORDER BY year, month, day"
            ).fetchall()
        return [Date(r['year'], r['month'], r['day']) for r in rows]

    def get_approx_status(self, date: Date) -> Dict[str, int]:
        """``{band_name: id}`` of the bands approximated on ``date``."""
        with self._errors("get_approx_status"):
            rows = self._reader().execute("""
                SELECT id, band_name FROM approximated_data
                WHERE year = ? AND month = ? AND day = ?
                ORDER BY id
            """, (date.year, date.month, date.day)).fetchall()
        return {row['band_name']: row['id'] for row in rows}

    def neighbors(self, date: Date, band: str, max_gap: int, weight: float = 0.5,
                  max_percent_invalid: float = 1.0) -> List[NeighborDate]:
        """Nearest usable dates around ``date`` for ``band``, best first.

        Candidates have clouds_computed set, lie within ``max_gap`` days,
        have percent_invalid <= ``max_percent_invalid`` and did not have
        ``band`` approximated themselves. ``date`` itself is excluded.

        Raises
        ------
        ValueError
            ``weight`` is outside [0, 1] or ``max_gap`` is negative.
        """
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"weight must be within [0, 1], got {weight}")
        if max_gap < 0:
            raise ValueError(f"max_gap must be non-negative, got {max_gap}")

        with self._errors("neighbors"):
            rows = self._reader().execute("""
                SELECT year, month, day, percent_invalid FROM dates AS d
                WHERE clouds_computed = 1
                  AND percent_invalid IS NOT NULL
                  AND percent_invalid <= ?
                  AND NOT (year = ? AND month = ? AND day = ?)
                  AND NOT EXISTS (
                      SELECT 1 FROM approximated_data AS a
                      WHERE a.band_name = ?
                        AND a.year = d.year AND a.month = d.month AND a.day = d.day
                  )
            """, (max_percent_invalid, date.year, date.month, date.day, band)).fetchall()

        candidates = []
        for row in rows:
            other = Date(row['year'], row['month'], row['day'])
            days = date.days_between(other)
            if abs(days) > max_gap:
                continue
            distance = weight * abs(days) + (1.0 - weight) * row['percent_invalid']
            candidates.append(NeighborDate(other, days, row['percent_invalid'], distance))

        candidates.sort(key=lambda n: (n.distance, abs(n.days_apart), n.date))
        return candidates

    def find_good_close_image(self, date: Date, band: str, weight: float, max_gap: int,
                              max_percent_invalid: float = 1.0) -> Date:
        """Best date to take ``band`` from when approximating ``date``.

        Returns ``date`` itself when it has no usable neighbour or when its
        own percent_invalid is lower than the best neighbour's, meaning a
        spatial approximation of the date is preferable.
        """
        candidates = self.neighbors(date, band, max_gap, weight, max_percent_invalid)
        if not candidates:
            return date

        best = candidates[0]
        own = self.query(date)
        if own is not None and own.percent_invalid is not None and own.percent_invalid < best.percent_invalid:
            return date
        return best.date

    def index_info(self, date: Date, index_name: str,
                   using_approximated_data: bool) -> Optional[Dict[str, float]]:
        """``{min, max, mean, valid_pixels}`` stored for one index image, or None."""
        with self._errors("index_info"):
            row = self._reader().execute("""
                SELECT min, max, mean, valid_pixels FROM index_data
                WHERE index_name = ? AND using_approximated_data = ?
                  AND year = ? AND month = ? AND day = ?
            """, (index_name, int(using_approximated_data),
                  date.year, date.month, date.day)).fetchone()
        return dict(row) if row else None

    def summary_result_exists(self, *, index_name: str, threshold: float, start_year: int,
                              end_year: int, use_approximated_data: bool,
                              exclude_cloudy_pixels: bool, exclude_shadow_pixels: bool,
                              skip_threshold: Optional[float]) -> Optional[int]:
        """Id of the newest summary computed with these settings, or None."""
        with self._errors("summary_result_exists"):
            row = self._reader().execute("""
                SELECT id FROM single_image_summary
                WHERE index_name = ? AND threshold = ? AND start_year = ? AND end_year = ?
                  AND use_approximated_data = ? AND exclude_cloudy_pixels = ?
                  AND exclude_shadow_pixels = ? AND skip_threshold IS ?
                ORDER BY id DESC LIMIT 1
            """, (index_name, float(threshold), int(start_year), int(end_year),
                  int(use_approximated_data), int(exclude_cloudy_pixels),
                  int(exclude_shadow_pixels), skip_threshold)).fetchone()
        return int(row['id']) if row else None

    def get_summary_result(self, summary_id: int) -> Optional[Dict[str, object]]:
        """Row of ``single_image_summary`` as a dict, or None."""
        with self._errors("get_summary_result"):
            row = self._reader().execute(
                "SELECT * FROM single_image_summary WHERE id = ?", (int(summary_id),)
            ).fetchone()
        return dict(row) if row else None

    def to_dataframe(self) -> pd.DataFrame:
        """The `dates` table as a DataFrame (one row per date)."""
        with self._errors("to_dataframe"):
            return pd.read_sql_query(
                "SELECT * FROM dates ORDER BY year, month, day", self._reader()
            )

    def close(self):
        """Close all connections. Safe to call multiple times."""
        with self._readers_lock:
            for conn in self._readers:
                conn.close()
            self._readers.clear()
        self._local = threading.local()
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
