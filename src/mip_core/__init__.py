"""High-level entrypoints for the mip_core library.

Two subsystems of a dual simplex / branch-and-cut solver:

- the bound-flipping dual ratio test (``DualRatioTestEngine``) with its
  candidate packing and free-column tracking, and
- the cut pool (``CutPool``) storing, deduplicating, ageing and separating
  cutting planes.
"""

from .cut_pool import CutPool, CutPoolObserver, support_signature
from .data import (
    CutSet,
    DomainBounds,
    PricingCandidate,
    RatioTestOptions,
    RatioTestResult,
    SimplexWorkState,
    SparseRowView,
)
from .diagnostics import RatioTestMonitor, compare_work_groups, format_work_groups
from .dual_row import CandidatePacker, DualRatioTestEngine
from .exceptions import (
    InvalidInputError,
    InvariantViolationError,
    MipCoreError,
    SolverConfigurationError,
)
from .free_list import FreeVariableTracker
from .row_matrix import DynamicRowMatrix
from .utils import get_norm2, is_infinity, pivot_threshold, relative_difference

__version__ = "0.1.0"

__all__ = [
    # Ratio test
    "DualRatioTestEngine",
    "CandidatePacker",
    "FreeVariableTracker",
    "RatioTestOptions",
    "RatioTestResult",
    "SimplexWorkState",
    "SparseRowView",
    "PricingCandidate",
    # Cut pool
    "CutPool",
    "CutPoolObserver",
    "CutSet",
    "DomainBounds",
    "DynamicRowMatrix",
    "support_signature",
    # Diagnostics
    "RatioTestMonitor",
    "format_work_groups",
    "compare_work_groups",
    # Utilities
    "get_norm2",
    "is_infinity",
    "relative_difference",
    "pivot_threshold",
    # Exceptions
    "MipCoreError",
    "InvalidInputError",
    "InvariantViolationError",
    "SolverConfigurationError",
    # Version
    "__version__",
]
