"""Connected-component labeling of cloud and shadow regions.

Pixels of the same class (CLOUD or SHADOW) that touch through 8 (or 4)
neighbours form one component. VALID and INVALID pixels are background.

Labels are renumbered by the row-major position of each component's first
pixel, so identical masks always receive identical labels. Components
smaller than the configured minimum area are reset to VALID in the mask
they came from: the analyzer deliberately mutates the mask it refines to
suppress isolated detector noise.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
from scipy.ndimage import find_objects
from skimage.measure import label

from gapfill.core.raster import PixelClass, ValidityMask

__all__ = [
    'Region',
    'ConnectedComponents',
    'ConnectedComponentAnalyzer',
    'find_connected_components',
]

logger = logging.getLogger(__name__)

# skimage expresses connectivity as the number of orthogonal hops
_SKIMAGE_CONNECTIVITY = {4: 1, 8: 2}


@dataclass(frozen=True)
class Region:
    """Summary of one labeled component.

    ``bbox`` is (min_row, min_col, max_row, max_col) with exclusive maxima,
    matching skimage regionprops.
    """

    label: int
    pixel_count: int
    bbox: Tuple[int, int, int, int]
    dominant_class: PixelClass


@dataclass
class ConnectedComponents:
    """Label grid plus per-label region summaries."""

    labels: np.ndarray
    regions: Dict[int, Region] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.regions)

    def sizes(self) -> Dict[int, int]:
        return {lab: region.pixel_count for lab, region in self.regions.items()}

    def of_class(self, cls: PixelClass) -> Dict[int, Region]:
        return {lab: r for lab, r in self.regions.items() if r.dominant_class == cls}


def _relabel_row_major(labels: np.ndarray, keep: Optional[np.ndarray] = None) -> np.ndarray:
    """Renumber labels 1..K by first occurrence in row-major order.

    ``keep`` optionally restricts the output to a subset of the input labels;
    every other label becomes background.
    """
    flat = labels.ravel()
    present, first_index = np.unique(flat, return_index=True)
    nonzero = present > 0
    present, first_index = present[nonzero], first_index[nonzero]
    if keep is not None:
        kept = np.isin(present, keep)
        present, first_index = present[kept], first_index[kept]

    order = np.argsort(first_index, kind="stable")
    old_to_new = np.zeros(int(labels.max()) + 1 if labels.size else 1, dtype=np.int32)
    old_to_new[present[order]] = np.arange(1, len(present) + 1, dtype=np.int32)
    return old_to_new[labels]


def _summarize(labels: np.ndarray, codes: np.ndarray) -> Dict[int, Region]:
    regions = {}
    for index, slc in enumerate(find_objects(labels), start=1):
        if slc is None:
            continue
        inside = labels[slc] == index
        classes = np.bincount(codes[slc][inside], minlength=len(PixelClass))
        regions[index] = Region(
            label=index,
            pixel_count=int(inside.sum()),
            bbox=(slc[0].start, slc[1].start, slc[0].stop, slc[1].stop),
            dominant_class=PixelClass(int(np.argmax(classes))),
        )
    return regions


class ConnectedComponentAnalyzer:
    """Label contiguous CLOUD/SHADOW regions and suppress small ones.

    Parameters
    ----------
    connectivity : {4, 8}
        Neighbourhood used to join pixels.
    min_area : int
        Components with fewer pixels are reset to VALID. ``1`` disables
        suppression.

    Examples
    --------
    >>> analyzer = ConnectedComponentAnalyzer(connectivity=8, min_area=4)
    >>> components = analyzer.analyze(mask)   # mask is refined in place
    >>> components.count
    """

    def __init__(self, connectivity: int = 8, min_area: int = 1):
        if connectivity not in _SKIMAGE_CONNECTIVITY:
            raise ValueError(f"connectivity must be 4 or 8, got {connectivity}")
        if min_area < 1:
            raise ValueError(f"min_area must be >= 1, got {min_area}")
        self.connectivity = connectivity
        self.min_area = min_area

    @classmethod
    def from_params(cls, params) -> "ConnectedComponentAnalyzer":
        """Build from CloudParams (connectivity, min_component_area)."""
        return cls(connectivity=params.connectivity, min_area=params.min_component_area)

    def label(self, mask: ValidityMask) -> np.ndarray:
        """Row-major labels without any suppression."""
        flagged = np.where(
            mask.is_class(PixelClass.CLOUD) | mask.is_class(PixelClass.SHADOW),
            mask.codes,
            0,
        )
        if not flagged.any():
            return np.zeros(mask.shape, dtype=np.int32)
        # Labeling the class-code image joins only pixels of equal class
        raw = label(flagged, background=0, connectivity=_SKIMAGE_CONNECTIVITY[self.connectivity])
        return _relabel_row_major(raw.astype(np.int32))

    def remove_small_regions(self, mask: ValidityMask, labels: np.ndarray) -> np.ndarray:
        """Reset components below ``min_area`` to VALID and relabel the rest.

        Mutates ``mask``.
        """
        if self.min_area <= 1 or labels.max() == 0:
            return labels

        ids, counts = np.unique(labels[labels > 0], return_counts=True)
        small = ids[counts < self.min_area]
        if small.size == 0:
            return labels

        mask.codes[np.isin(labels, small)] = PixelClass.VALID
        logger.debug("Removed %d components smaller than %d pixels", small.size, self.min_area)
        return _relabel_row_major(labels, keep=ids[counts >= self.min_area])

    def analyze(self, mask: ValidityMask) -> ConnectedComponents:
        """Label ``mask`` and suppress small components.

        Returns
        -------
        ConnectedComponents
            Labels and region summaries of the refined mask.
        """
        labels = self.label(mask)
        labels = self.remove_small_regions(mask, labels)
        components = ConnectedComponents(labels=labels, regions=_summarize(labels, mask.codes))
        logger.debug("Components: %d (connectivity=%d, min_area=%d)",
                     components.count, self.connectivity, self.min_area)
        return components


def find_connected_components(mask: ValidityMask, connectivity: int = 8,
                              min_area: int = 1) -> ConnectedComponents:
    """Label CLOUD/SHADOW components of ``mask``.

    With the default ``min_area=1`` the mask is left untouched; larger
    values reset small components to VALID in place.
    """
    return ConnectedComponentAnalyzer(connectivity, min_area).analyze(mask)
