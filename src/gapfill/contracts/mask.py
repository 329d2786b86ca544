"""Detection stage contract.

Enforces the guarantee that the detector produced a mask of PixelClass
codes with the exact dimensions of the bands it was computed from.
"""

import numpy as np
from gapfill.contracts.base import require
from gapfill.core.raster import PixelClass, ValidityMask


def assert_mask(mask, shape) -> None:
    """Enforce detection stage contract.

    Parameters
    ----------
    mask : ValidityMask
        Output of CloudShadowDetector.
    shape : tuple of int
        Dimensions of the input bands.

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    require(
        isinstance(mask, ValidityMask),
        f"Mask contract violated: expected ValidityMask, got {type(mask).__name__}"
    )
    require(
        mask.shape == tuple(shape),
        f"Mask contract violated: mask shape {mask.shape} != band shape {tuple(shape)}"
    )
    require(
        mask.codes.dtype == np.uint8,
        f"Mask contract violated: codes dtype is {mask.codes.dtype}, expected uint8"
    )
    require(
        mask.size == 0 or int(mask.codes.max()) <= PixelClass.INVALID,
        "Mask contract violated: codes outside PixelClass"
    )
