"""What happens when a stage breaks one of its output invariants.

Every violation raises ContractViolation; the configured policy decides
whether the run stops or only the offending date is marked failed.
"""

from enum import Enum


class FailurePolicy(str, Enum):
    """Failure policy for contract violations.

    FAIL_FAST (default): Raise immediately and stop the run
    SKIP_DATE: Mark the date failed and continue with the next one
    """
    FAIL_FAST = "fail_fast"
    SKIP_DATE = "skip_date"


class ContractViolation(RuntimeError):
    """Raised when a pipeline contract is violated.

    A stage produced output that breaks its own guarantees; this is a bug,
    not bad input.

    Key distinction:
    - ValueError: User/config error (handled by Pydantic)
    - GapfillError subclasses: bad or missing data for one date
    - ContractViolation: Pipeline bug (programmer error)
    """
