"""Custom exceptions for the mip_core library."""

from __future__ import annotations


class MipCoreError(Exception):
    """Base exception for all mip_core errors.

    All custom exceptions in the mip_core package inherit from this class,
    allowing callers to catch every library error with a single except clause.

    Numerical outcomes of the ratio test (stagnation, an empty candidate set)
    are not exceptions: they are reported through ``RatioTestResult.status`` so
    the surrounding simplex loop can pick a fallback without unwinding.

    Example:
        try:
            cut = pool.add_cut(indices, values, rhs)
        except MipCoreError as e:
            print(f"Cut rejected: {e}")
    """


class InvalidInputError(MipCoreError):
    """Raised when data handed to the library is malformed.

    This includes:
    - Index and value arrays of different lengths
    - Column indices outside the known column range
    - Cuts whose coefficients are all zero
    - Work state arrays whose sizes do not match the matrix dimensions

    Example:
        InvalidInputError("Cut has no nonzero coefficients after normalisation")
    """


class InvariantViolationError(MipCoreError):
    """Raised when the caller's bookkeeping contradicts the library's state.

    These are defects rather than recoverable runtime conditions:
    - A tracked free column that is basic or not a structural column
    - An operation on a cut id that was never issued or has been evicted
    - A pivot mismatch between the two grouping orders when strict checks are on

    Example:
        InvariantViolationError("Free column 4 is basic", column=4)
    """

    def __init__(self, message: str, column: int | None = None):
        """Initialize with message and the offending column or cut id."""
        super().__init__(message)
        self.column = column


class SolverConfigurationError(MipCoreError):
    """Raised when engine or pool configuration is invalid.

    This includes:
    - Non-positive tolerances
    - Negative age limits
    - Parallelism tolerances outside (0, 1)

    Example:
        SolverConfigurationError("age_limit must be non-negative, got -1")
    """
