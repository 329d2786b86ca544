"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and every field is required - there are no defaults here.

CloudParams and SkipShadowDetection live here as well: they are the frozen
detection bundle that the detector and the component analyzer take as an
explicit argument. Building one by hand requires every threshold.
"""

from typing import Literal, Optional
from pydantic import ConfigDict, Field, model_validator
from gapfill.schemas.base import GapfillBaseModel


FROZEN = ConfigDict(
    extra='forbid',
    validate_assignment=True,
    use_enum_values=True,
    str_strip_whitespace=True,
    frozen=True,  # Immutable after construction
)


class SkipShadowDetection(GapfillBaseModel):
    """Shadow detection is skipped when ``decision`` is set and the cloudy
    fraction of the date is at least ``threshold``."""
    decision: bool
    threshold: float = Field(ge=0, le=1.0)

    model_config = FROZEN

    def applies(self, cloudy_fraction: float) -> bool:
        return self.decision and cloudy_fraction >= self.threshold


class CloudParams(GapfillBaseModel):
    """Detection thresholds for one run.

    Immutable, and no field has a default: every threshold is supplied
    either by resolve_config() or explicitly by the caller.
    """
    cloud_probability_threshold: float = Field(ge=0, le=1.0)
    cloud_probability_sigma: float = Field(ge=0)
    cloud_mask_threshold: float = Field(ge=0, le=1.0)
    scl_cloud_classes: tuple[int, ...]
    scl_invalid_classes: tuple[int, ...]
    nodata_value: float
    cloud_dilation_radius: int = Field(ge=0)
    cloud_closing_radius: int = Field(ge=0)
    skip_shadow_detection: SkipShadowDetection
    shadow_reflectance_threshold: float = Field(ge=0, le=1.0)
    pit_fill_difference: float = Field(ge=0)
    potential_shadow_sigma: float = Field(ge=0)
    cloud_height_min: float = Field(ge=0)
    cloud_height_max: float = Field(gt=0)
    shadow_search_step: float = Field(gt=0)
    shadow_match_threshold: float = Field(ge=0, le=1.0)
    min_cloud_size_for_ray_casting: int = Field(ge=1)
    max_sun_zenith: float = Field(gt=0, lt=90.0)
    reflectance_scale: float = Field(gt=0)
    water_index_threshold: Optional[float]
    min_component_area: int = Field(ge=1)
    connectivity: Literal[4, 8]

    model_config = FROZEN

    @model_validator(mode="after")
    def check_height_range(self):
        if self.cloud_height_max < self.cloud_height_min:
            raise ValueError(
                f"cloud_height_max ({self.cloud_height_max}) < cloud_height_min ({self.cloud_height_min})"
            )
        return self


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalStoreConfig(GapfillBaseModel):
    """Runtime store configuration."""
    db_filename: str
    neighbor_max_gap_days: int
    distance_weight: float = Field(ge=0, le=1.0)
    max_percent_invalid: float


class InternalFillerConfig(GapfillBaseModel):
    """Runtime gap filling configuration."""
    neighborhood_size: int
    temporal_fallback_fraction: float
    use_temporal: bool
    bands: list[str]


class InternalBlenderConfig(GapfillBaseModel):
    """Runtime blending configuration."""
    enabled: bool
    tolerance: float
    max_iterations: Optional[int]
    time_limit_sec: float
    feather_radius: float


class InternalPipelineConfig(GapfillBaseModel):
    """Runtime processing loop configuration."""
    workers: int
    start_date: Optional[str]
    end_date: Optional[str]
    skip_processed: bool
    save_netcdf: bool
    on_contract_violation: Literal["fail_fast", "skip_date"]


class InternalVisualizationConfig(GapfillBaseModel):
    """Runtime quicklook configuration."""
    enabled: bool
    dpi: int
    output_format: Literal["png", "pdf", "jpeg"]


class InternalAnalysisConfig(GapfillBaseModel):
    """Runtime index summary configuration."""
    enabled: bool
    index: Literal["NDVI", "NDMI", "MNDWI", "SWI"]
    threshold: float
    start_year: Optional[int]
    end_year: Optional[int]
    use_approximated_data: bool
    exclude_cloudy_pixels: bool
    exclude_shadow_pixels: bool
    skip_threshold: Optional[float]
    use_cache: bool

    @model_validator(mode="after")
    def check_year_order(self):
        if self.start_year and self.end_year and self.start_year > self.end_year:
            raise ValueError(f"end_year {self.end_year} is before start_year {self.start_year}")
        return self


class InternalLoggingConfig(GapfillBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(GapfillBaseModel):
    """Authoritative runtime configuration.

    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.params = config.detection          # CloudParams
            self.workers = config.pipeline.workers  # NOT .get()

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO validation in runtime code

    All of that happens during config resolution, not in runtime code.
    """

    base_dir: Optional[str]
    data_dir: Optional[str]
    detection: CloudParams
    store: InternalStoreConfig
    filler: InternalFillerConfig
    blender: InternalBlenderConfig
    pipeline: InternalPipelineConfig
    visualization: InternalVisualizationConfig
    analysis: InternalAnalysisConfig
    logging: InternalLoggingConfig

    model_config = FROZEN
