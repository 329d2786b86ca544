"""Formal pipeline invariants.

This file documents what each stage MUST produce. Use it as a reviewer
anchor and system reference.
"""

PIPELINE_INVARIANTS = {
    "detection": [
        "ValidityMask has exactly the dimensions of the input bands",
        "Codes are PixelClass values (VALID, CLOUD, SHADOW, INVALID)",
        "INVALID takes precedence over CLOUD and SHADOW",
        "CLOUD pixels are never overwritten to SHADOW",
    ],

    "components": [
        "Label 0 is background (VALID and INVALID pixels)",
        "Labels are contiguous 1..K in row-major first-pixel order",
        "Every CLOUD/SHADOW pixel belongs to exactly one label",
        "Regions smaller than min_component_area were reset to VALID",
    ],

    "store": [
        "At most one dates row per (year, month, day)",
        "percent_* fields written together with their *_computed flags",
        "Each percentage lies in [0, 1]",
    ],

    "filling": [
        "Filled buffer has the band dtype and the mask dimensions",
        "Every non-VALID pixel is tagged approximated or came from a temporal neighbor",
        "A fully VALID input is returned unchanged and tagged real",
    ],

    "blending": [
        "Composite equals the target outside the blend region",
        "Non-convergence yields a feathered composite and degraded=True",
    ],
}

# Which stages are optional vs required
STAGE_REQUIREMENTS = {
    "detection": "REQUIRED",
    "components": "REQUIRED",
    "store": "REQUIRED",
    "filling": "REQUIRED",
    "blending": "OPTIONAL",    # Only when temporal neighbors were used
}
