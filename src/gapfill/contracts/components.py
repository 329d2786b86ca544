"""Component analysis contract.

Labels are 0 on VALID and INVALID pixels, contiguous 1..K, and cover every
CLOUD and SHADOW pixel of the (refined) mask.
"""

import numpy as np
from gapfill.contracts.base import require
from gapfill.core.raster import PixelClass


def assert_components(components, mask) -> None:
    """Enforce component analysis contract.

    Parameters
    ----------
    components : ConnectedComponents
        Output of ConnectedComponentAnalyzer.analyze()
    mask : ValidityMask
        The mask after small-region suppression.

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    labels = components.labels

    require(
        labels.shape == mask.shape,
        f"Component contract violated: labels shape {labels.shape} != mask shape {mask.shape}"
    )
    require(
        labels.dtype.kind in {"i", "u"},
        f"Component contract violated: labels dtype is {labels.dtype}, expected integer"
    )

    flagged = mask.is_class(PixelClass.CLOUD) | mask.is_class(PixelClass.SHADOW)
    require(
        np.all(labels[~flagged] == 0),
        "Component contract violated: VALID/INVALID pixel carries a label"
    )
    require(
        np.all(labels[flagged] >= 1),
        "Component contract violated: CLOUD/SHADOW pixel is unlabeled"
    )

    present = np.unique(labels[labels > 0])
    expected = np.arange(1, components.count + 1)
    require(
        np.array_equal(present, expected),
        f"Component contract violated: labels are not contiguous 1..{components.count}"
    )
