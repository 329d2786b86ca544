"""
Directory setup for the gapfill pipeline.

Per-date products live in date-first folders (YYYY-MM-DD) below each
output type, matching the layout of the input data directory.
"""

from pathlib import Path

from gapfill.core.dates import Date


def setup_output_directories(base_output_dir):
    """
    Set up organized output directory structure.

    Parameters
    ----------
    base_output_dir : str or Path
        Base output directory.

    Returns
    -------
    dict
        Dictionary with paths: 'base', 'masks', 'filled', 'summaries',
        'quicklooks', 'analysis', 'logs'
    """
    base_output_dir = Path(base_output_dir).expanduser().resolve()

    directories = {
        "base": base_output_dir,
        "masks": base_output_dir / "masks",
        "filled": base_output_dir / "filled",
        "summaries": base_output_dir / "summaries",
        "quicklooks": base_output_dir / "quicklooks",
        "analysis": base_output_dir / "analysis",
        "logs": base_output_dir / "logs",
    }

    for path in directories.values():
        path.mkdir(parents=True, exist_ok=True)

    return directories


def get_summary_path(output_dirs, date: Date) -> Path:
    """NetCDF summary path: summaries/<date>_summary.nc"""
    return Path(output_dirs["summaries"]) / f"{date.isoformat()}_summary.nc"


def get_quicklook_path(output_dirs, date: Date, band: str) -> Path:
    """Quicklook path without extension: quicklooks/<date>_<band>"""
    return Path(output_dirs["quicklooks"]) / f"{date.isoformat()}_{band}"
