"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., BASE_DIR -> base_dir, WORKERS -> workers).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults.
"""

from typing import Any, Optional
from pydantic import Field, field_validator
from gapfill.schemas.base import GapfillBaseModel
from gapfill.schemas.param import normalize_band_names, check_date_string


class UserDetectionConfig(GapfillBaseModel):
    """User-facing detection overrides (any DetectionConfig field)."""
    cloud_probability_threshold: Optional[float] = None
    cloud_probability_sigma: Optional[float] = None
    cloud_mask_threshold: Optional[float] = None
    scl_cloud_classes: Optional[list[int]] = None
    scl_invalid_classes: Optional[list[int]] = None
    nodata_value: Optional[float] = None
    cloud_dilation_radius: Optional[int] = None
    cloud_closing_radius: Optional[int] = None
    skip_shadow_detection: Optional[dict[str, Any]] = None
    shadow_reflectance_threshold: Optional[float] = None
    pit_fill_difference: Optional[float] = None
    potential_shadow_sigma: Optional[float] = None
    cloud_height_min: Optional[float] = None
    cloud_height_max: Optional[float] = None
    shadow_search_step: Optional[float] = None
    shadow_match_threshold: Optional[float] = None
    min_cloud_size_for_ray_casting: Optional[int] = None
    max_sun_zenith: Optional[float] = None
    reflectance_scale: Optional[float] = None
    water_index_threshold: Optional[float] = None
    min_component_area: Optional[int] = None
    connectivity: Optional[int] = None


class UserStoreConfig(GapfillBaseModel):
    """User-facing store overrides."""
    db_filename: Optional[str] = None
    neighbor_max_gap_days: Optional[int] = None
    distance_weight: Optional[float] = None
    max_percent_invalid: Optional[float] = None


class UserFillerConfig(GapfillBaseModel):
    """User-facing filler overrides."""
    neighborhood_size: Optional[int] = None
    temporal_fallback_fraction: Optional[float] = None
    use_temporal: Optional[bool] = None
    bands: Optional[list[str]] = None

    @field_validator("bands", mode="before")
    @classmethod
    def normalize_bands(cls, v):
        return normalize_band_names(v)


class UserBlenderConfig(GapfillBaseModel):
    """User-facing blender overrides."""
    enabled: Optional[bool] = None
    tolerance: Optional[float] = None
    max_iterations: Optional[int] = None
    time_limit_sec: Optional[float] = None
    feather_radius: Optional[float] = None


class UserAnalysisConfig(GapfillBaseModel):
    """User-facing index summary overrides."""
    enabled: Optional[bool] = None
    index: Optional[str] = None
    threshold: Optional[float] = None
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    use_approximated_data: Optional[bool] = None
    exclude_cloudy_pixels: Optional[bool] = None
    exclude_shadow_pixels: Optional[bool] = None
    skip_threshold: Optional[float] = None
    use_cache: Optional[bool] = None

    @field_validator("index", mode="before")
    @classmethod
    def normalize_index(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v


class UserConfig(GapfillBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    Usage
    -----
        user_cfg = UserConfig(
            base_dir="/scratch/gapfill",
            data_dir="/data/sentinel/field_12",
            cloud_threshold=0.4,
            skip_shadows=True,
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Top-level locations
    base_dir: Optional[str] = Field(None, alias="BASE_DIR")
    data_dir: Optional[str] = Field(None, alias="DATA_DIR")

    # Date range
    start_date: Optional[str] = Field(None, alias="START_DATE")
    end_date: Optional[str] = Field(None, alias="END_DATE")

    # Detection (flat aliases)
    cloud_threshold: Optional[float] = Field(None, alias="CLOUD_THRESHOLD")
    shadow_threshold: Optional[float] = Field(None, alias="SHADOW_THRESHOLD")
    skip_shadows: Optional[bool] = Field(None, alias="SKIP_SHADOWS")
    skip_shadows_threshold: Optional[float] = Field(None, alias="SKIP_SHADOWS_THRESHOLD")
    min_component_area: Optional[int] = Field(None, alias="MIN_COMPONENT_AREA")
    connectivity: Optional[int] = Field(None, alias="CONNECTIVITY")

    # Filling / blending (flat aliases)
    fill_bands: Optional[list[str]] = Field(None, alias="FILL_BANDS")
    max_gap_days: Optional[int] = Field(None, alias="MAX_GAP_DAYS")
    blend: Optional[bool] = Field(None, alias="BLEND")

    # Processing loop
    workers: Optional[int] = Field(None, alias="WORKERS")
    skip_processed: Optional[bool] = Field(None, alias="SKIP_PROCESSED")
    quicklooks: Optional[bool] = Field(None, alias="QUICKLOOKS")
    log_level: Optional[str] = Field(None, alias="LOG_LEVEL")

    # Index summary (flat alias)
    index_summary: Optional[bool] = Field(None, alias="INDEX_SUMMARY")

    # Nested overrides (advanced users)
    detection: Optional[UserDetectionConfig] = None
    store: Optional[UserStoreConfig] = None
    filler: Optional[UserFillerConfig] = None
    blender: Optional[UserBlenderConfig] = None
    analysis: Optional[UserAnalysisConfig] = None

    model_config = GapfillBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def validate_dates(cls, v):
        return check_date_string(v)

    @field_validator("cloud_threshold", "shadow_threshold", "skip_shadows_threshold", mode="before")
    @classmethod
    def coerce_numeric_fields(cls, v):
        """Accept int or float for numeric fields."""
        if v is not None:
            return float(v)
        return v

    @field_validator("fill_bands", mode="before")
    @classmethod
    def normalize_bands(cls, v):
        return normalize_band_names(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)
        if self.data_dir is not None:
            overrides["data_dir"] = str(self.data_dir)

        # Detection section
        detection = {}
        if self.cloud_threshold is not None:
            detection["cloud_probability_threshold"] = self.cloud_threshold
        if self.shadow_threshold is not None:
            detection["shadow_reflectance_threshold"] = self.shadow_threshold
        skip = {}
        if self.skip_shadows is not None:
            skip["decision"] = self.skip_shadows
        if self.skip_shadows_threshold is not None:
            skip["threshold"] = self.skip_shadows_threshold
        if skip:
            detection["skip_shadow_detection"] = skip
        if self.min_component_area is not None:
            detection["min_component_area"] = self.min_component_area
        if self.connectivity is not None:
            detection["connectivity"] = self.connectivity

        # Merge with explicit detection config
        if self.detection is not None:
            detection.update(self.detection.model_dump(exclude_none=True))

        if detection:
            overrides["detection"] = detection

        # Store section
        store = {}
        if self.max_gap_days is not None:
            store["neighbor_max_gap_days"] = self.max_gap_days
        if self.store is not None:
            store.update(self.store.model_dump(exclude_none=True))
        if store:
            overrides["store"] = store

        # Filler section
        filler = {}
        if self.fill_bands is not None:
            filler["bands"] = self.fill_bands
        if self.filler is not None:
            filler.update(self.filler.model_dump(exclude_none=True))
        if filler:
            overrides["filler"] = filler

        # Blender section
        blender = {}
        if self.blend is not None:
            blender["enabled"] = self.blend
        if self.blender is not None:
            blender.update(self.blender.model_dump(exclude_none=True))
        if blender:
            overrides["blender"] = blender

        # Pipeline section
        pipeline = {}
        if self.start_date is not None:
            pipeline["start_date"] = self.start_date
        if self.end_date is not None:
            pipeline["end_date"] = self.end_date
        if self.workers is not None:
            pipeline["workers"] = self.workers
        if self.skip_processed is not None:
            pipeline["skip_processed"] = self.skip_processed
        if pipeline:
            overrides["pipeline"] = pipeline

        if self.quicklooks is not None:
            overrides["visualization"] = {"enabled": self.quicklooks}

        analysis = {}
        if self.index_summary is not None:
            analysis["enabled"] = self.index_summary
        if self.analysis is not None:
            analysis.update(self.analysis.model_dump(exclude_none=True))
        if analysis:
            overrides["analysis"] = analysis

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
