"""ParamConfig: Expert defaults for the gapfill pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from gapfill.schemas.base import GapfillBaseModel
from gapfill.core.bands import Band
from gapfill.core.dates import Date


def normalize_band_names(values):
    """Map enum names or file stems to canonical file stems."""
    if values is None:
        return values
    return [Band.from_name(str(v).strip()).value for v in values]


def check_date_string(value):
    """Validate an optional YYYY-MM-DD string."""
    if value is None:
        return value
    return Date.parse(str(value)).isoformat()


# =============================================================================
# Nested Configuration Models
# =============================================================================

class SkipShadowConfig(GapfillBaseModel):
    """Skip the (slow) shadow search on heavily clouded dates."""
    decision: bool = False
    threshold: float = Field(1.0, ge=0, le=1.0, description="Cloudy fraction at which shadows are skipped")


class DetectionConfig(GapfillBaseModel):
    """Cloud and shadow detection thresholds."""
    cloud_probability_threshold: float = Field(0.5, ge=0, le=1.0)
    cloud_probability_sigma: float = Field(4.0, ge=0)
    cloud_mask_threshold: float = Field(0.2, ge=0, le=1.0)
    scl_cloud_classes: list[int] = Field(default_factory=lambda: [8, 9])
    scl_invalid_classes: list[int] = Field(default_factory=lambda: [0, 1])
    nodata_value: float = 0.0
    cloud_dilation_radius: int = Field(15, ge=0)
    cloud_closing_radius: int = Field(5, ge=0)
    skip_shadow_detection: SkipShadowConfig = Field(default_factory=SkipShadowConfig)
    shadow_reflectance_threshold: float = Field(0.15, ge=0, le=1.0)
    pit_fill_difference: float = Field(0.02, ge=0)
    potential_shadow_sigma: float = Field(1.0, ge=0)
    cloud_height_min: float = Field(200.0, ge=0, description="Lowest cloud height searched (m)")
    cloud_height_max: float = Field(12000.0, gt=0, description="Highest cloud height searched (m)")
    shadow_search_step: float = Field(100.0, gt=0, description="Height increment of the shadow search (m)")
    shadow_match_threshold: float = Field(0.15, ge=0, le=1.0)
    min_cloud_size_for_ray_casting: int = Field(3, ge=1)
    max_sun_zenith: float = Field(85.0, gt=0, lt=90.0)
    reflectance_scale: float = Field(10000.0, gt=0)
    water_index_threshold: Optional[float] = None
    min_component_area: int = Field(4, ge=1)
    connectivity: Literal[4, 8] = 8


class StoreConfig(GapfillBaseModel):
    """Temporal approximation store."""
    db_filename: str = "approximation.db"
    neighbor_max_gap_days: int = Field(31, ge=1)
    distance_weight: float = Field(0.5, ge=0, le=1.0)
    max_percent_invalid: float = Field(0.9, ge=0, le=1.0)


class FillerConfig(GapfillBaseModel):
    """Gap filling settings."""
    neighborhood_size: int = Field(15, ge=3)
    temporal_fallback_fraction: float = Field(0.6, ge=0, le=1.0)
    use_temporal: bool = True
    bands: list[str] = Field(default_factory=lambda: ["B02", "B03", "B04", "B08", "B11"])

    @field_validator("bands", mode="before")
    @classmethod
    def normalize_bands(cls, v):
        return normalize_band_names(v)


class BlenderConfig(GapfillBaseModel):
    """Poisson blending numeric policy."""
    enabled: bool = True
    tolerance: float = Field(1e-5, gt=0)
    max_iterations: Optional[int] = Field(None, ge=1, description="None: half the number of unknowns")
    time_limit_sec: float = Field(30.0, gt=0)
    feather_radius: float = Field(5.0, gt=0)


class PipelineConfig(GapfillBaseModel):
    """Per-date processing loop."""
    workers: int = Field(4, ge=1)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    skip_processed: bool = True
    save_netcdf: bool = True
    on_contract_violation: Literal["fail_fast", "skip_date"] = "fail_fast"

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def validate_dates(cls, v):
        return check_date_string(v)

    @model_validator(mode="after")
    def check_date_order(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError(f"end_date {self.end_date} is before start_date {self.start_date}")
        return self


class VisualizationConfig(GapfillBaseModel):
    """Quicklook settings."""
    enabled: bool = False
    dpi: int = Field(150, ge=50)
    output_format: Literal["png", "pdf", "jpeg"] = "png"


class AnalysisConfig(GapfillBaseModel):
    """Multi-year spectral index summary, run after filling."""
    enabled: bool = False
    index: Literal["NDVI", "NDMI", "MNDWI", "SWI"] = "NDVI"
    threshold: float = 0.5
    start_year: Optional[int] = Field(None, ge=1900)
    end_year: Optional[int] = Field(None, ge=1900)
    use_approximated_data: bool = False
    exclude_cloudy_pixels: bool = True
    exclude_shadow_pixels: bool = True
    skip_threshold: Optional[float] = Field(None, ge=0, le=1.0, description="Skip dates at least this invalid")
    use_cache: bool = True

    @model_validator(mode="after")
    def check_year_order(self):
        if self.start_year and self.end_year and self.start_year > self.end_year:
            raise ValueError(f"end_year {self.end_year} is before start_year {self.start_year}")
        return self


class LoggingConfig(GapfillBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(GapfillBaseModel):
    """Complete expert configuration with all defaults.

    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    base_dir: Optional[str] = None
    data_dir: Optional[str] = None
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    filler: FillerConfig = Field(default_factory=FillerConfig)
    blender: BlenderConfig = Field(default_factory=BlenderConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
