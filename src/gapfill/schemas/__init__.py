"""Pydantic configuration schemas for the gapfill pipeline.

All configuration validation, coercion, and normalization happens at schema
validation time via Pydantic.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
CloudParams, SkipShadowDetection : class
    Frozen detection bundle
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
CLIConfig : class
    Command-line operational overrides
"""

from gapfill.schemas.resolve import resolve_config
from gapfill.schemas.internal import InternalConfig, CloudParams, SkipShadowDetection
from gapfill.schemas.param import ParamConfig
from gapfill.schemas.user import UserConfig
from gapfill.schemas.cli import CLIConfig

__all__ = [
    'resolve_config',
    'InternalConfig',
    'CloudParams',
    'SkipShadowDetection',
    'ParamConfig',
    'UserConfig',
    'CLIConfig',
]
