#!/usr/bin/env python3
"""Gapfill Cloud Detection and Gap Filling Pipeline Runner.

Usage:
    python scripts/run_gapfill_pipeline.py scripts/user_config.py
    python scripts/run_gapfill_pipeline.py scripts/user_config.py --data-dir /data/field_12
    python scripts/run_gapfill_pipeline.py scripts/user_config.py --start-date 2023-04-01 --end-date 2023-09-30

Note: User config in scripts/user_config.py, expert defaults in src/gapfill/schemas/param.py
"""

import sys

from gapfill.cli.run_pipeline import main


if __name__ == "__main__":
    sys.exit(main())
