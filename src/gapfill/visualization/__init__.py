"""Quicklook visualization."""

from gapfill.visualization.plotter import QuicklookPlotter

__all__ = ["QuicklookPlotter"]
