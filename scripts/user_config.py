"""Gapfill User Configuration.

This is the user-facing configuration file. Modify settings here to customize
the pipeline behavior. Advanced settings are the defaults in
src/gapfill/schemas/param.py and can be overridden through the nested
"detection", "store", "filler" and "blender" sections.

Usage:
    python scripts/run_gapfill_pipeline.py scripts/user_config.py
    python scripts/run_gapfill_pipeline.py scripts/user_config.py --start-date 2023-04-01
    python scripts/run_gapfill_pipeline.py scripts/user_config.py --workers 8
"""

CONFIG = {
    # ========================================================================
    # LOCATIONS
    # ========================================================================
    "DATA_DIR": "./data",     # One YYYY-MM-DD folder per acquisition
    "BASE_DIR": "./output",   # All outputs go here

    # ========================================================================
    # DATE RANGE (None = everything found in DATA_DIR)
    # ========================================================================
    "START_DATE": None,       # "2023-04-01"
    "END_DATE": None,         # "2023-09-30"

    # ========================================================================
    # DETECTION SETTINGS
    # ========================================================================
    "CLOUD_THRESHOLD": 0.5,   # Smoothed cloud probability (0-1)
    "SHADOW_THRESHOLD": 0.15, # NIR reflectance below which a candidate is a shadow
    "SKIP_SHADOWS": False,    # Skip the shadow search on heavily clouded dates
    "SKIP_SHADOWS_THRESHOLD": 0.8,  # Cloudy fraction at which shadows are skipped
    "MIN_COMPONENT_AREA": 4,  # Smaller cloud/shadow blobs are treated as noise
    "CONNECTIVITY": 8,        # 4 or 8

    # ========================================================================
    # FILLING SETTINGS
    # ========================================================================
    "FILL_BANDS": ["B02", "B03", "B04", "B08", "B11"],
    "MAX_GAP_DAYS": 31,       # Temporal neighbours within this many days
    "BLEND": True,            # Poisson-blend temporal patches

    # ========================================================================
    # PROCESSING
    # ========================================================================
    "WORKERS": 4,
    "SKIP_PROCESSED": True,
    "QUICKLOOKS": False,      # PNG quicklook per date
    "LOG_LEVEL": "INFO",
}
