"""Pipeline modules.

- orchestrator: Main pipeline controller
- processor: Per-date detection and filling
- approximation_store: SQLite-based per-date validity index
"""

from gapfill.pipeline.orchestrator import PipelineOrchestrator, RunSummary
from gapfill.pipeline.processor import DateProcessor, DateOutcome
from gapfill.pipeline.approximation_store import TemporalApproximationStore, DateRecord, NeighborDate

__all__ = [
    "PipelineOrchestrator",
    "RunSummary",
    "DateProcessor",
    "DateOutcome",
    "TemporalApproximationStore",
    "DateRecord",
    "NeighborDate",
]
