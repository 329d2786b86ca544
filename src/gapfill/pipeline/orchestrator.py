"""Batch pipeline orchestration.

Discovers date directories, runs the detection stage for every date on a
worker pool, then the filling stage, and reports a per-status summary.
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from gapfill.analysis import IndexSummary, SummaryResult, choice_from_config, compute_indices_for_all_dates
from gapfill.core.bands import Indices
from gapfill.core.dates import Date
from gapfill.core.errors import GapfillError
from gapfill.imagery.discovery import DateDirectoryDiscovery, DateEntry, RADAR
from gapfill.imagery.raster_io import GeoTiffRasterIO
from gapfill.log_config import setup_logging
from gapfill.pipeline.approximation_store import TemporalApproximationStore
from gapfill.pipeline.processor import COMPLETED, FAILED, SKIPPED, DateOutcome, DateProcessor
from gapfill.setup_directories import setup_output_directories

if TYPE_CHECKING:
    from gapfill.schemas import InternalConfig

__all__ = ['PipelineOrchestrator', 'RunSummary']

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Per-status counts of one run."""

    completed: int = 0
    skipped: int = 0
    failed: int = 0
    outcomes: List[DateOutcome] = field(default_factory=list)
    elapsed_sec: float = 0.0
    index_summaries: List[SummaryResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.completed + self.skipped + self.failed

    @property
    def failed_dates(self) -> List[Date]:
        return [o.date for o in self.outcomes if o.status == FAILED]

    @classmethod
    def from_outcomes(cls, outcomes: List[DateOutcome], elapsed_sec: float = 0.0) -> "RunSummary":
        summary = cls(outcomes=sorted(outcomes, key=lambda o: o.date), elapsed_sec=elapsed_sec)
        for outcome in outcomes:
            if outcome.status == COMPLETED:
                summary.completed += 1
            elif outcome.status == SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1
        return summary


class PipelineOrchestrator:
    """Runs the gapfill pipeline over every date found under ``data_dir``.

    This is the main entry point for running ``gapfill``. Dates are
    independent units of work, so each stage fans out over a thread pool
    of ``pipeline.workers`` workers. The approximation store is the only
    shared resource.

    **Stages:**

    1. **Detection**: every date gets its mask and store record.
    2. **Filling**: every date that was detected (now or in an earlier
       run) is filled using its neighbours.
    3. **Index summary** (``analysis.enabled``): index images and their
       statistics for every date, then the multi-year summaries. A failure
       here is logged and leaves the date outcomes untouched.

    **Failure model:**

    - A date that fails (missing band, corrupt data, store error) is logged
      and counted; the run continues.
    - A store that cannot be opened aborts the run with StoreError.
    - A ContractViolation under the ``fail_fast`` policy aborts the run.

    **Logging:**

    All output goes to both console and ``logs/gapfill_pipeline.log``.

    Example usage::

        config = resolve_config(ParamConfig(), user_cfg, cli_cfg)
        summary = PipelineOrchestrator(config).run()
        print(summary.completed, summary.failed)
    """

    def __init__(self, config: "InternalConfig", raster_io=None):
        if not config.base_dir:
            raise ValueError("base_dir is required to run the pipeline")
        if not config.data_dir:
            raise ValueError("data_dir is required to run the pipeline")

        self.config = config
        self.base_dir = Path(config.base_dir).expanduser()
        self.data_dir = Path(config.data_dir).expanduser()
        self.output_dirs: Dict[str, Path] = {}
        self.raster_io = raster_io
        self.store: Optional[TemporalApproximationStore] = None

    def _setup_logging(self):
        log_path = Path(self.output_dirs["logs"]) / "gapfill_pipeline.log"
        setup_logging(self.config.logging.level, log_path)
        logger.info("Logging: level=%s, file=%s", self.config.logging.level, log_path)

    def _discover(self) -> List[DateEntry]:
        pipeline = self.config.pipeline
        start = Date.parse(pipeline.start_date) if pipeline.start_date else None
        end = Date.parse(pipeline.end_date) if pipeline.end_date else None
        return DateDirectoryDiscovery(self.data_dir).discover(start, end)

    def _run_stage(self, name: str, func: Callable[[Date], DateOutcome],
                   dates: List[Date]) -> Dict[Date, DateOutcome]:
        """Apply ``func`` to every date on the worker pool.

        A ContractViolation raised by a worker cancels the pending dates
        and propagates.
        """
        if not dates:
            return {}

        logger.info("Stage %s: %d dates, %d workers", name, len(dates), self.config.pipeline.workers)
        outcomes = {}
        executor = ThreadPoolExecutor(max_workers=self.config.pipeline.workers,
                                      thread_name_prefix=f"gapfill-{name}")
        try:
            futures = {executor.submit(func, date): date for date in dates}
            for future, date in futures.items():
                outcomes[date] = future.result()
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
        return outcomes

    def _run_analysis(self, dates: List[Date]) -> List[SummaryResult]:
        analysis = self.config.analysis
        index = Indices[analysis.index]
        choice = choice_from_config(analysis)
        scale = self.config.detection.reflectance_scale
        logger.info("Stage analysis: %s >= %.2f over %d dates (%s)", index.name, analysis.threshold,
                    len(dates), type(choice).__name__)
        try:
            compute_indices_for_all_dates(dates, index, self.store, self.raster_io, choice,
                                          reflectance_scale=scale, use_cache=analysis.use_cache)
            return IndexSummary(self.store, self.raster_io, scale).run(
                dates, index, analysis.threshold, choice,
                start_year=analysis.start_year, end_year=analysis.end_year,
                use_cache=analysis.use_cache,
            )
        except GapfillError as e:
            logger.error("Index summary failed: %s: %s", type(e).__name__, e)
            return []

    def run(self) -> RunSummary:
        """Process all discovered dates and return the run summary.

        Raises
        ------
        StoreError
            The approximation store cannot be opened or created.
        ContractViolation
            A stage broke its contract and the policy is ``fail_fast``.
        """
        start_time = time.time()
        self.output_dirs = setup_output_directories(self.base_dir)
        self._setup_logging()

        logger.info("=" * 60)
        logger.info("Starting Gapfill Pipeline")
        logger.info("=" * 60)
        logger.info("Data: %s", self.data_dir)
        logger.info("Output: %s", self.output_dirs["base"])

        db_path = self.output_dirs["base"] / self.config.store.db_filename
        self.store = TemporalApproximationStore(db_path)

        if self.raster_io is None:
            self.raster_io = GeoTiffRasterIO(self.data_dir, self.output_dirs["filled"],
                                             mask_dir=self.output_dirs["masks"],
                                             analysis_dir=self.output_dirs["analysis"])

        try:
            entries = self._discover()
            outcomes: Dict[Date, DateOutcome] = {}
            optical = []
            for entry in entries:
                if entry.kind == RADAR:
                    logger.info("Skipping %s: radar acquisition, no optical bands", entry.date)
                    outcomes[entry.date] = DateOutcome(entry.date, SKIPPED)
                else:
                    optical.append(entry.date)

            processor = DateProcessor(self.config, self.store, self.raster_io, self.output_dirs)

            detected = self._run_stage("detect", processor.detect_date, optical)
            fillable = [d for d in optical if detected[d].status != FAILED]
            filled = self._run_stage("fill", processor.fill_date, fillable)

            for date in optical:
                detection = detected[date]
                if detection.status == FAILED:
                    outcomes[date] = detection
                    continue
                filling = filled[date]
                if filling.status == FAILED:
                    outcomes[date] = filling
                elif detection.status == SKIPPED and filling.status == SKIPPED:
                    outcomes[date] = DateOutcome(date, SKIPPED)
                else:
                    outcomes[date] = DateOutcome(date, COMPLETED, filled_bands=filling.filled_bands)

            index_summaries = []
            if self.config.analysis.enabled:
                usable = [d for d in optical if outcomes[d].status != FAILED]
                index_summaries = self._run_analysis(usable)

        finally:
            self.store.close()

        summary = RunSummary.from_outcomes(list(outcomes.values()), time.time() - start_time)
        summary.index_summaries = index_summaries

        logger.info("=" * 60)
        logger.info("Pipeline finished. Runtime: %.1f seconds", summary.elapsed_sec)
        logger.info("Statistics: total=%d, completed=%d, skipped=%d, failed=%d",
                    summary.total, summary.completed, summary.skipped, summary.failed)
        for outcome in summary.outcomes:
            if outcome.status == FAILED:
                logger.info("  failed %s: %s", outcome.date, outcome.error)
        logger.info("=" * 60)
        return summary
