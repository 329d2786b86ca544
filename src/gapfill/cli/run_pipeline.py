"""Command line runner for the gapfill pipeline.

``main`` parses flags; ``run_gapfill_pipeline`` does the work and can be
called directly from scripts or notebooks.
"""

import argparse
import json
import logging
import importlib.util
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from gapfill.pipeline.orchestrator import PipelineOrchestrator, RunSummary
from gapfill.schemas import resolve_config, ParamConfig, UserConfig, CLIConfig
from gapfill.schemas.internal import InternalConfig


logger = logging.getLogger(__name__)

_RULE = "=" * 60


def load_user_config_dict(config_path: str) -> dict:
    """Execute a Python config file and return its ``CONFIG`` dict.

    The first module-level dict whose name starts with ``CONFIG`` is used,
    unvalidated.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file defines no CONFIG dict.
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config not found: {path}")

    module_spec = importlib.util.spec_from_file_location(f"gapfill_user_config_{path.stem}", path)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)

    found = [
        value for name, value in sorted(vars(module).items())
        if name.startswith("CONFIG") and isinstance(value, dict)
    ]
    if not found:
        raise ValueError(f"No CONFIG dict found in {path}")
    return found[0]


def _clean_output(base_dir: Path) -> None:
    if base_dir.exists():
        print(f"Removing previous outputs in {base_dir}")
        shutil.rmtree(base_dir)


def _print_banner(config: InternalConfig, source: Optional[str], verbose: bool) -> None:
    print(f"\n{_RULE}\nGapfill: cloud detection and gap filling\n{_RULE}")
    print(f"Config: {source or '(defaults)'}")
    print(f"Data:   {config.data_dir}")
    print(f"Dates:  {config.pipeline.start_date or 'first'} .. {config.pipeline.end_date or 'last'}")
    print(f"Output: {config.base_dir}")
    if verbose:
        print(json.dumps(config.model_dump(mode="json"), indent=2))
    print(_RULE)


def run_gapfill_pipeline(
    user_config_path: Optional[str] = None,
    cli_args: Optional[Dict[str, Any]] = None,
    rerun: bool = False,
    verbose: bool = False
) -> RunSummary:
    """Resolve configuration and run detection and filling over the archive.

    Parameters
    ----------
    user_config_path : str, optional
        Python file holding a ``CONFIG`` dict.
    cli_args : dict, optional
        Flag overrides (base_dir, data_dir, start_date, end_date, workers,
        log_level). ``None`` values are ignored.
    rerun : bool, optional
        Delete the output directory first.
    verbose : bool, optional
        DEBUG logging unless a level is given, and dump the resolved config.

    Returns
    -------
    RunSummary

    Raises
    ------
    FileNotFoundError
        If ``user_config_path`` does not exist.
    ValueError
        If the configuration is invalid.
    StoreError
        If the approximation store cannot be opened.

    Examples
    --------
    ::

        run_gapfill_pipeline("scripts/user_config.py",
                             cli_args={"start_date": "2023-04-01", "workers": 8})
    """
    user_cfg = None
    if user_config_path is not None:
        user_cfg = UserConfig.model_validate(load_user_config_dict(user_config_path))

    overrides = {k: v for k, v in (cli_args or {}).items() if v is not None}
    if verbose:
        overrides.setdefault("log_level", "DEBUG")

    config = resolve_config(ParamConfig(), user_cfg, CLIConfig.model_validate(overrides))

    if rerun and config.base_dir:
        _clean_output(Path(config.base_dir))

    _print_banner(config, user_config_path, verbose)

    summary = PipelineOrchestrator(config).run()

    print(f"Completed: {summary.completed}  Skipped: {summary.skipped}  Failed: {summary.failed}")
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detect clouds and shadows and fill the gaps they leave")
    parser.add_argument("config", nargs="?", help="Path to user config file")
    parser.add_argument("--data-dir", help="Directory with one YYYY-MM-DD folder per date")
    parser.add_argument("--base-dir", help="Output directory")
    parser.add_argument("--start-date", help="First date to process (YYYY-MM-DD)")
    parser.add_argument("--end-date", help="Last date to process (YYYY-MM-DD)")
    parser.add_argument("--workers", type=int, help="Number of worker threads")
    parser.add_argument("--rerun", action="store_true", help="Delete output directory before running")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    summary = run_gapfill_pipeline(
        args.config,
        cli_args={
            "data_dir": args.data_dir,
            "base_dir": args.base_dir,
            "start_date": args.start_date,
            "end_date": args.end_date,
            "workers": args.workers,
        },
        rerun=args.rerun,
        verbose=args.verbose,
    )
    return 1 if summary.failed else 0
