"""Per-date processing: detection, bookkeeping and gap filling.

Each date goes through two stages:

1. **Detection** (`detect_date`): register the date, load the detection
   bands, classify clouds/shadows/invalid pixels, refine the mask by
   component analysis, save the mask (plus an optional NetCDF summary) and
   only then record the summary in the approximation store, so a date
   marked detected always has its mask on disk.

2. **Filling** (`fill_date`): load the saved mask and fill every configured
   band spatially and from temporal neighbours, then save the filled band
   with its provenance grid.

The orchestrator runs all detections before any filling so that temporal
neighbours already have their masks and store records. `process_date` runs
both stages back to back for a single date.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

import numpy as np
import xarray as xr

from gapfill.core.bands import Band
from gapfill.core.dates import Date
from gapfill.core.errors import GapfillError, MissingBandError, NotFoundError
from gapfill.core.raster import PixelClass, RasterBuffer
from gapfill.contracts import (
    ContractViolation,
    FailurePolicy,
    assert_components,
    assert_filled,
    assert_mask,
)
from gapfill.imagery.blender import SeamlessBlender
from gapfill.imagery.detector import CloudShadowDetector, DetectionResult
from gapfill.imagery.gap_filler import GapFiller, single_image_summary
from gapfill.setup_directories import get_quicklook_path, get_summary_path

if TYPE_CHECKING:
    from gapfill.schemas import InternalConfig

__all__ = ['DateOutcome', 'DateProcessor', 'COMPLETED', 'SKIPPED', 'FAILED']

logger = logging.getLogger(__name__)

COMPLETED = "completed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class DateOutcome:
    """Result of one stage (or both) for one date."""

    date: Date
    status: str
    error: Optional[str] = None
    filled_bands: List[str] = field(default_factory=list)


class DateProcessor:
    """Runs the detection and filling stages for individual dates.

    Parameters
    ----------
    config : InternalConfig
        Fully validated runtime configuration.
    store : TemporalApproximationStore
        Shared store; its own locking serializes the writes.
    raster_io : RasterIO
        Band, mask and result storage.
    output_dirs : dict
        Paths from setup_output_directories().

    Notes
    -----
    Stateless between dates, so one instance may be shared by all worker
    threads. MissingBandError, DataError, NotFoundError and StoreError fail
    the date only. A ContractViolation is a pipeline bug: with the
    ``fail_fast`` policy it propagates and stops the run.

    Example usage (typically called by orchestrator)::

        processor = DateProcessor(config, store, raster_io, output_dirs)
        outcome = processor.process_date(Date(2023, 5, 1))
    """

    def __init__(self, config: "InternalConfig", store, raster_io,
                 output_dirs: Dict[str, Path]):
        self.config = config
        self.store = store
        self.raster_io = raster_io
        self.output_dirs = output_dirs
        self.policy = FailurePolicy(config.pipeline.on_contract_violation)

        self.detector = CloudShadowDetector(config.detection)
        self.blender = SeamlessBlender(config.blender) if config.blender.enabled else None
        self.filler = GapFiller(config, store=store, raster_io=raster_io, blender=self.blender)
        self.fill_bands = [Band.from_name(name) for name in config.filler.bands]

        self.plotter = None
        if config.visualization.enabled:
            from gapfill.visualization.plotter import QuicklookPlotter
            self.plotter = QuicklookPlotter(config.visualization)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _run_stage(self, stage: str, date: Date, func) -> DateOutcome:
        try:
            return func(date)

        except ContractViolation as e:
            logger.critical("CRITICAL: Pipeline contract violated for %s (%s): %s", date, stage, e)
            if self.policy is FailurePolicy.FAIL_FAST:
                logger.critical("This indicates a bug in pipeline logic. Stopping pipeline.")
                raise
            return DateOutcome(date, FAILED, f"Contract violation: {e}")

        except GapfillError as e:
            logger.error("Skipping %s (%s): %s: %s", date, stage, type(e).__name__, e)
            return DateOutcome(date, FAILED, f"{type(e).__name__}: {e}")

        except Exception as e:
            logger.exception("Error processing %s (%s)", date, stage)
            return DateOutcome(date, FAILED, str(e))

    # ------------------------------------------------------------------
    # Detection stage
    # ------------------------------------------------------------------

    def _load_bands(self, date: Date, bands) -> Dict[Band, RasterBuffer]:
        loaded = {}
        for band in bands:
            try:
                loaded[band] = self.raster_io.load_band(date, band)
            except NotFoundError as e:
                raise MissingBandError(date, band, str(e)) from e
        return loaded

    def _save_summary(self, date: Date, result: DetectionResult, reference: RasterBuffer) -> Path:
        """NetCDF summary of the detection (scipy engine, classic format)."""
        template = reference.to_dataarray()
        coords = {"y": template["y"], "x": template["x"]}
        cloudy, shadows, invalid = single_image_summary(result.mask)

        ds = xr.Dataset(
            {
                "validity_mask": (("y", "x"), result.mask.codes.astype(np.int16)),
                "component_labels": (("y", "x"), result.components.labels.astype(np.int32)),
                "potential_shadow": (("y", "x"), result.potential_shadow.astype(np.int16)),
            },
            coords=coords,
            attrs={
                "date": date.isoformat(),
                "percent_cloudy": cloudy,
                "percent_shadows": shadows,
                "percent_invalid": invalid,
                "shadows_computed": int(result.shadows_computed),
                "num_components": result.components.count,
                "resolution": reference.resolution,
            },
        )
        ds["validity_mask"].attrs["flag_values"] = np.array([int(c) for c in PixelClass], dtype=np.int16)
        ds["validity_mask"].attrs["flag_meanings"] = " ".join(c.name.lower() for c in PixelClass)

        path = get_summary_path(self.output_dirs, date)
        path.parent.mkdir(parents=True, exist_ok=True)
        ds.to_netcdf(path, engine="scipy")
        return path

    def _detect(self, date: Date) -> DateOutcome:
        if self.config.pipeline.skip_processed:
            record = self.store.query(date)
            if record is not None and record.clouds_computed:
                logger.info("Skipping already detected: %s", date)
                return DateOutcome(date, SKIPPED)

        self.store.upsert_if_absent(date)
        bands = self._load_bands(date, self.detector.required_bands())
        reference = bands[Band.B08]

        result = self.detector.detect(bands, date=date)
        assert_mask(result.mask, reference.shape)
        assert_components(result.components, result.mask)

        self.raster_io.save_mask(date, result.mask, reference)
        if self.config.pipeline.save_netcdf:
            self._save_summary(date, result, reference)

        # Recorded last: clouds_computed implies the mask is on disk
        cloudy, shadows, invalid = single_image_summary(result.mask)
        self.store.record_detection(
            date, cloudy, shadows if result.shadows_computed else None, invalid
        )

        logger.info("Detected %s: cloudy=%.1f%% shadows=%s invalid=%.1f%% components=%d",
                    date, cloudy * 100,
                    f"{shadows * 100:.1f}%" if result.shadows_computed else "skipped",
                    invalid * 100, result.components.count)
        return DateOutcome(date, COMPLETED)

    def detect_date(self, date: Date) -> DateOutcome:
        """Detection stage for one date."""
        return self._run_stage("detection", date, self._detect)

    # ------------------------------------------------------------------
    # Filling stage
    # ------------------------------------------------------------------

    def _fill(self, date: Date) -> DateOutcome:
        if self.config.pipeline.skip_processed and all(
            self.raster_io.has_result(date, band) for band in self.fill_bands
        ):
            logger.info("Skipping already filled: %s", date)
            return DateOutcome(date, SKIPPED)

        mask = self.raster_io.load_mask(date)
        own_data = bool(mask.is_class(PixelClass.VALID).any())
        filled = []
        first = None

        for band in self.fill_bands:
            try:
                buffer = self.raster_io.load_band(date, band)
            except NotFoundError as e:
                raise MissingBandError(date, band, str(e)) from e

            result = self.filler.fill(buffer, mask, date=date)
            assert_filled(result, mask)
            self.raster_io.save_result(date, result.buffer, result.provenance)
            filled.append(band.value)
            if first is None:
                first = result

            # A band without any observed pixel of its own is approximated
            if not own_data:
                method = "temporal" if result.temporal_mask.any() else "spatial"
                self.store.write_approx_results(date, band.value, method, using_denoised=False)

            logger.debug("Filled %s %s: %.1f%% approximated, neighbours=%s", date, band.value,
                         result.approximated_fraction * 100,
                         [d.isoformat() for d in result.neighbor_dates])

        if self.plotter is not None and first is not None:
            self.plotter.plot_date(date, mask, first.buffer, first.provenance,
                                   get_quicklook_path(self.output_dirs, date, first.buffer.band.value))

        logger.info("Filled %s: %s", date, ", ".join(filled))
        return DateOutcome(date, COMPLETED, filled_bands=filled)

    def fill_date(self, date: Date) -> DateOutcome:
        """Filling stage for one date; needs a saved mask."""
        return self._run_stage("filling", date, self._fill)

    def process_date(self, date: Date) -> DateOutcome:
        """Detection followed by filling for a single date."""
        detection = self.detect_date(date)
        if detection.status == FAILED:
            return detection
        filling = self.fill_date(date)
        if filling.status == FAILED:
            return filling
        status = SKIPPED if detection.status == filling.status == SKIPPED else COMPLETED
        return DateOutcome(date, status, filled_bands=filling.filled_bands)
