"""Class-independent numeric helpers shared by the ratio test and the cut pool."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

# Values at or beyond this magnitude are treated as infinite bounds.
INFINITY = math.inf

# Tiered pivot tolerance: looser right after refactorisation, tighter as
# basis updates accumulate error.
PIVOT_TOLERANCE_FRESH = 1e-9
PIVOT_TOLERANCE_MEDIUM = 3e-8
PIVOT_TOLERANCE_STALE = 1e-6


def get_norm2(values: Sequence[float] | np.ndarray) -> float:
    """Return the squared Euclidean norm of ``values``."""
    arr = np.asarray(values, dtype=float)
    return float(np.dot(arr, arr))


def is_infinity(value: float) -> bool:
    """Logical check of ``value`` being +infinity."""
    return value >= INFINITY


def relative_difference(v0: float, v1: float) -> float:
    """Return the difference of two values relative to the larger magnitude (at least 1)."""
    return abs(v0 - v1) / max(abs(v0), abs(v1), 1.0)


def pivot_threshold(update_count: int) -> float:
    """Return the pivot magnitude threshold for the given number of basis updates.

    Args:
        update_count: Basis updates since the last refactorisation.

    Returns:
        1e-9 below 10 updates, 3e-8 below 20 updates, 1e-6 otherwise.
    """
    if update_count < 10:
        return PIVOT_TOLERANCE_FRESH
    if update_count < 20:
        return PIVOT_TOLERANCE_MEDIUM
    return PIVOT_TOLERANCE_STALE
