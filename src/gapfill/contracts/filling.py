"""Gap filling contract.

Every pixel that was not VALID must either come from a temporal neighbor
or be tagged approximated, and the filled buffer must be finite.
"""

import numpy as np
from gapfill.contracts.base import require
from gapfill.imagery.gap_filler import Provenance


def assert_filled(result, mask) -> None:
    """Enforce gap filling contract.

    Parameters
    ----------
    result : FillResult
        Output of GapFiller.fill()
    mask : ValidityMask
        The mask the fill was computed from.

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """

    data = result.buffer.data
    provenance = result.provenance

    require(
        data.shape == mask.shape and provenance.shape == mask.shape,
        f"Fill contract violated: shapes {data.shape}/{provenance.shape} != mask {mask.shape}"
    )
    require(
        np.all(np.isfinite(data)),
        "Fill contract violated: filled buffer contains non-finite values"
    )

    untagged = mask.invalid_mask() & ~result.temporal_mask & (provenance != Provenance.UseApproximatedData)
    require(
        not np.any(untagged),
        f"Fill contract violated: {int(untagged.sum())} reconstructed pixels tagged as real data"
    )
