"""Command-line entry points."""

from gapfill.cli.run_pipeline import run_gapfill_pipeline, load_user_config_dict, main

__all__ = ["run_gapfill_pipeline", "load_user_config_dict", "main"]
