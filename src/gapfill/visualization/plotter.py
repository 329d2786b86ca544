"""Quicklook rendering of detection masks and filled bands.

Renders a two-panel figure per date: the validity mask and a filled band
with reconstructed pixels outlined.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.colors import BoundaryNorm, ListedColormap

from gapfill.core.raster import PixelClass, RasterBuffer, ValidityMask

__all__ = ['QuicklookPlotter']

logger = logging.getLogger(__name__)

# VALID, CLOUD, SHADOW, INVALID
_MASK_COLORS = ['#2b8a3e', '#f1f3f5', '#343a40', '#e03131']


class QuicklookPlotter:
    """Generates per-date quicklooks.

    Parameters
    ----------
    config : InternalVisualizationConfig
        ``dpi`` and ``output_format``.

    Example usage::

        plotter = QuicklookPlotter(config.visualization)
        plotter.plot_date(date, mask, filled, provenance, output_dirs["quicklooks"] / "2023-05-01")
    """

    def __init__(self, config, figsize: Tuple[float, float] = (12, 5.5)):
        self.dpi = config.dpi
        self.output_format = config.output_format
        self.figsize = figsize

    def _setup_figure(self):
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=self.figsize, dpi=self.dpi)
        return fig, ax1, ax2

    def _plot_mask(self, ax, mask: ValidityMask) -> None:
        cmap = ListedColormap(_MASK_COLORS)
        norm = BoundaryNorm(np.arange(len(PixelClass) + 1) - 0.5, cmap.N)
        im = ax.imshow(mask.codes, cmap=cmap, norm=norm, interpolation='nearest')
        cbar = plt.colorbar(im, ax=ax, fraction=0.046, pad=0.04, ticks=list(range(len(PixelClass))))
        cbar.ax.set_yticklabels([cls.name.title() for cls in PixelClass])

    def _plot_filled(self, ax, buffer: RasterBuffer, provenance: Optional[np.ndarray]) -> None:
        data = buffer.data.astype(np.float64)
        finite = data[np.isfinite(data)]
        vmin, vmax = (np.percentile(finite, [2, 98]) if finite.size else (0.0, 1.0))
        im = ax.imshow(data, cmap='gray', vmin=vmin, vmax=vmax, interpolation='nearest')
        plt.colorbar(im, ax=ax, label=buffer.band.value, fraction=0.046, pad=0.04)
        if provenance is not None and np.any(provenance):
            ax.contour(provenance.astype(float), levels=[0.5], colors='orange', linewidths=0.6)

    def _save_figure(self, fig, output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_file = output_path.with_suffix(f'.{self.output_format}')
        fig.savefig(output_file, dpi=self.dpi, bbox_inches='tight', format=self.output_format)
        plt.close(fig)
        logger.info(f"Quicklook saved: {output_file}")
        return output_file

    def plot_date(self, date, mask: ValidityMask, buffer: RasterBuffer,
                  provenance: Optional[np.ndarray], output_path: Path) -> Path:
        """Render mask and filled band for one date."""
        fig, ax1, ax2 = self._setup_figure()

        self._plot_mask(ax1, mask)
        ax1.set_title(f"Validity mask {date}")
        ax1.set_axis_off()

        self._plot_filled(ax2, buffer, provenance)
        ax2.set_title(f"{buffer.band.value} filled (reconstructed outlined)")
        ax2.set_axis_off()

        plt.tight_layout()
        return self._save_figure(fig, Path(output_path))
