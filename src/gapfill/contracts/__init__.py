"""Pipeline contracts - fail-fast enforcement of stage invariants.

Contracts fail immediately and loudly when pipeline stages don't produce
their promised invariants.

Key principle:
- Pydantic validates config correctness
- Contracts validate pipeline correctness
- Algorithms handle data edge cases
"""

from gapfill.contracts.failure import ContractViolation, FailurePolicy
from gapfill.contracts.base import require
from gapfill.contracts.mask import assert_mask
from gapfill.contracts.components import assert_components
from gapfill.contracts.filling import assert_filled

__all__ = [
    "ContractViolation",
    "FailurePolicy",
    "require",
    "assert_mask",
    "assert_components",
    "assert_filled",
]
