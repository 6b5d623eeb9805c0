"""Cut pool: storage, duplicate rejection, ageing and separation of cutting planes.

Cuts are ``<=`` rows ``a x <= rhs`` kept in a shared ``DynamicRowMatrix``.
Each cut carries an age: a negative age marks a cut that currently sits in
the LP relaxation (``-1`` just entered, more negative means longer resident)
and a non-negative age counts pool-wide ageing passes since the cut last left
the LP. Eviction is decided by the caller from the ids that ``perform_aging``
reports.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Sequence
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from .data import CutSet, DomainBounds
from .exceptions import InvalidInputError, InvariantViolationError, SolverConfigurationError
from .row_matrix import DynamicRowMatrix
from .utils import get_norm2, relative_difference

logger = logging.getLogger(__name__)

# Same-support cuts whose cosine is within this of 1 are duplicates.
DEFAULT_PARALLELISM_TOLERANCE = 1e-6
# A duplicate only tightens the stored rhs by more than this relative amount.
RHS_TIGHTENING_TOLERANCE = 1e-9


class CutPoolObserver(Protocol):
    """Propagation context that keeps per-cut state and must hear about changes."""

    def cut_added(self, cut: int) -> None: ...

    def cut_deleted(self, cut: int) -> None: ...

    def lp_cut_removed(self, cut: int) -> None: ...


def support_signature(columns: Sequence[int]) -> int:
    """Hash of a sorted support set, used as duplicate bucket key."""
    return hash(tuple(int(c) for c in columns))


class CutPool:
    """Stores cutting planes and hands violated ones back to the LP.

    Attributes:
        num_col: Number of structural columns cuts may reference.
        age_limit: Inactive age beyond which a cut is eviction-eligible.
        parallelism_tolerance: Duplicate threshold on ``1 - cosine``.
        epochs: Number of ageing passes performed.
        matrix: Row storage of the cut coefficients.

    Examples:
        >>> pool = CutPool(num_col=3, age_limit=5)
        >>> cut = pool.add_cut([0, 2], [1.0, 1.0], rhs=1.0)
        >>> pool.add_cut([2, 0], [2.0, 2.0], rhs=2.0) == cut
        True
        >>> cutset = pool.separate(np.array([1.0, 0.0, 1.0]), None, 1e-6)
        >>> cutset.cut_indices
        [0]
    """

    def __init__(
        self,
        num_col: int,
        age_limit: int,
        parallelism_tolerance: float = DEFAULT_PARALLELISM_TOLERANCE,
    ):
        if num_col < 0:
            raise SolverConfigurationError(f"num_col must be non-negative, got {num_col}")
        if age_limit < 0:
            raise SolverConfigurationError(f"age_limit must be non-negative, got {age_limit}")
        if not 0 < parallelism_tolerance < 1:
            raise SolverConfigurationError(
                f"parallelism_tolerance must lie in (0, 1), got {parallelism_tolerance}"
            )
        self.num_col = num_col
        self.age_limit = age_limit
        self.parallelism_tolerance = parallelism_tolerance
        self.epochs = 0
        self.matrix = DynamicRowMatrix(num_col)

        self._rhs: list[float] = []
        self._modification: list[int] = []
        self._ages: list[int] = []
        self._norms: list[float] = []
        self._max_abs_coef: list[float] = []
        self._integral: list[bool] = []
        self._signatures: list[int] = []
        self._support_map: defaultdict[int, list[int]] = defaultdict(list)
        self._observers: dict[int, CutPoolObserver] = {}
        self._next_handle = 0

    def add_cut(
        self,
        indices: Sequence[int] | NDArray[np.int64],
        values: Sequence[float] | NDArray[np.float64],
        rhs: float,
        integral: bool = False,
    ) -> int:
        """Admit the cut ``sum(values[k] * x[indices[k]]) <= rhs``.

        Repeated columns are summed and exact zeros dropped. A cut on the same
        support that is parallel to a stored one within the tolerance is a
        duplicate: the stored id is returned and no row is added. If the
        duplicate's normalised right-hand side is tighter, the stored rhs is
        tightened and its modification count bumped.

        Returns:
            Id of the new cut, or of the stored cut it duplicates.

        Raises:
            InvalidInputError: If the arrays differ in length, reference unknown
                columns, hold non-finite numbers, or no nonzero remains.
        """
        columns, coefs = self._normalise_row(indices, values)
        if not math.isfinite(rhs):
            raise InvalidInputError(f"Cut right-hand side must be finite, got {rhs}.")
        norm = math.sqrt(get_norm2(coefs))
        max_abs_coef = float(np.max(np.abs(coefs)))
        signature = support_signature(columns)

        duplicate = self._find_duplicate(signature, norm, columns, coefs)
        if duplicate is not None:
            scaled_rhs = rhs * self._norms[duplicate] / norm
            stored_rhs = self._rhs[duplicate]
            if (
                scaled_rhs < stored_rhs
                and relative_difference(scaled_rhs, stored_rhs) > RHS_TIGHTENING_TOLERANCE
            ):
                self._rhs[duplicate] = scaled_rhs
                self._modification[duplicate] += 1
                logger.debug(f"Duplicate cut tightened cut {duplicate}: rhs {stored_rhs} -> {scaled_rhs}")
            else:
                logger.debug(f"Rejected duplicate of cut {duplicate}")
            return duplicate

        cut = self.matrix.add_row(columns, coefs)
        if cut == len(self._rhs):
            self._rhs.append(float(rhs))
            self._modification.append(0)
            self._ages.append(0)
            self._norms.append(norm)
            self._max_abs_coef.append(max_abs_coef)
            self._integral.append(bool(integral))
            self._signatures.append(signature)
        else:
            self._rhs[cut] = float(rhs)
            self._modification[cut] += 1
            self._ages[cut] = 0
            self._norms[cut] = norm
            self._max_abs_coef[cut] = max_abs_coef
            self._integral[cut] = bool(integral)
            self._signatures[cut] = signature
        self._support_map[signature].append(cut)

        for observer in list(self._observers.values()):
            observer.cut_added(cut)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Added cut {cut} with {columns.size} nonzeros, rhs={rhs}")
        return cut

    def remove_cut(self, cut: int) -> None:
        """Evict a cut: observers are told first, then its slot is freed."""
        self._check_cut(cut)
        for observer in list(self._observers.values()):
            observer.cut_deleted(cut)
        bucket = self._support_map[self._signatures[cut]]
        bucket.remove(cut)
        if not bucket:
            del self._support_map[self._signatures[cut]]
        self.matrix.remove_row(cut)
        self._modification[cut] += 1
        self._ages[cut] = 0
        self._rhs[cut] = math.inf
        logger.debug(f"Evicted cut {cut}")

    def separate(
        self,
        sol: Sequence[float] | NDArray[np.float64],
        domain: DomainBounds | None = None,
        feastol: float = 1e-6,
    ) -> CutSet:
        """Collect every stored cut violated by more than ``feastol`` at ``sol``.

        Cuts already in the LP (negative age) are skipped. Trial values are
        first clipped into the domain's column bounds when a domain is given.
        The pool is not modified.

        Returns:
            The violated cuts in increasing id order.
        """
        x = np.asarray(sol, dtype=float)
        if x.shape[0] < self.num_col:
            raise InvalidInputError(
                f"Trial solution has {x.shape[0]} entries, expected at least {self.num_col}."
            )
        if domain is not None:
            x = np.clip(x[: self.num_col], domain.col_lower, domain.col_upper)

        cutset = CutSet()
        for cut in self.matrix.rows():
            if self._ages[cut] < 0:
                continue
            columns, coefs = self.matrix.get_row(cut)
            violation = float(np.dot(coefs, x[columns])) - self._rhs[cut]
            if violation <= feastol:
                continue
            cutset.cut_indices.append(cut)
            cutset.ar_index.extend(columns.tolist())
            cutset.ar_value.extend(coefs.tolist())
            cutset.ar_start.append(len(cutset.ar_index))
            cutset.lower.append(-math.inf)
            cutset.upper.append(self._rhs[cut])
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Separation found {cutset.num_cuts()} violated cuts among {self.get_num_cuts()}"
            )
        return cutset

    def get_parallelism(self, row1: int, row2: int) -> float:
        """Return the cosine of the angle between two stored cuts."""
        idx1, val1 = self.matrix.get_row(row1)
        idx2, val2 = self.matrix.get_row(row2)
        _, pos1, pos2 = np.intersect1d(idx1, idx2, assume_unique=True, return_indices=True)
        dot = float(np.dot(val1[pos1], val2[pos2]))
        return dot / (self._norms[row1] * self._norms[row2])

    def reset_age(self, cut: int, in_lp: bool = True) -> None:
        """Restart a cut's age.

        With ``in_lp`` the cut is marked as having just entered the LP (age
        -1). Otherwise a resident cut restarts its residency at -1 and an
        inactive cut has its age reset to 0.
        """
        self._check_cut(cut)
        if in_lp or self._ages[cut] < 0:
            self._ages[cut] = -1
        else:
            self._ages[cut] = 0

    def age_lp_cut(self, cut: int, age_limit: int | None = None) -> bool:
        """Count one more round of LP residency for ``cut``.

        Returns True, and demotes the cut to inactive age 0, on the first call
        that makes the number of counted rounds exceed the limit.

        Raises:
            InvariantViolationError: If ``cut`` is not currently in the LP.
        """
        self._check_cut(cut)
        limit = self.age_limit if age_limit is None else age_limit
        if self._ages[cut] >= 0:
            raise InvariantViolationError(
                f"Cut {cut} is not in the LP and cannot be aged as an LP cut.", column=cut
            )
        self._ages[cut] -= 1
        if -self._ages[cut] - 1 > limit:
            self._ages[cut] = 0
            return True
        return False

    def perform_aging(self, evict: bool = False) -> list[int]:
        """Age every inactive cut by one epoch.

        Args:
            evict: Remove the eviction-eligible cuts right away.

        Returns:
            Ids of inactive cuts whose age now exceeds the age limit.
        """
        self.epochs += 1
        eligible: list[int] = []
        for cut in self.matrix.rows():
            if self._ages[cut] < 0:
                continue
            self._ages[cut] += 1
            if self._ages[cut] > self.age_limit:
                eligible.append(cut)
        if evict:
            for cut in eligible:
                self.remove_cut(cut)
        if eligible:
            logger.debug(f"Ageing epoch {self.epochs}: {len(eligible)} cuts eligible for eviction")
        return eligible

    def lp_cut_removed(self, cut: int) -> None:
        """Record that ``cut`` left the LP and tell every observer."""
        self._check_cut(cut)
        self._ages[cut] = 0
        for observer in list(self._observers.values()):
            observer.lp_cut_removed(cut)

    def add_propagation_domain(self, domain: CutPoolObserver) -> int:
        """Register an observer and return its handle."""
        handle = self._next_handle
        self._next_handle += 1
        self._observers[handle] = domain
        return handle

    def remove_propagation_domain(self, handle: int | CutPoolObserver) -> None:
        """Unregister an observer by handle, or by identity."""
        if isinstance(handle, int):
            self._observers.pop(handle, None)
            return
        for key, observer in list(self._observers.items()):
            if observer is handle:
                del self._observers[key]
                return

    def set_age_limit(self, age_limit: int) -> None:
        if age_limit < 0:
            raise SolverConfigurationError(f"age_limit must be non-negative, got {age_limit}")
        self.age_limit = age_limit

    def get_num_cuts(self) -> int:
        return self.matrix.get_num_rows() - self.matrix.get_num_del_rows()

    def get_num_observers(self) -> int:
        return len(self._observers)

    def get_cut(self, cut: int) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
        """Return copies of the column indices and coefficients of ``cut``."""
        return self.matrix.get_row(cut)

    def get_rhs(self, cut: int) -> float:
        self._check_cut(cut)
        return self._rhs[cut]

    def get_row_length(self, cut: int) -> int:
        return self.matrix.get_row_end(cut) - self.matrix.get_row_start(cut)

    def get_max_abs_cut_coef(self, cut: int) -> float:
        self._check_cut(cut)
        return self._max_abs_coef[cut]

    def get_norm(self, cut: int) -> float:
        self._check_cut(cut)
        return self._norms[cut]

    def get_age(self, cut: int) -> int:
        self._check_cut(cut)
        return self._ages[cut]

    def is_lp_cut(self, cut: int) -> bool:
        self._check_cut(cut)
        return self._ages[cut] < 0

    def cut_is_integral(self, cut: int) -> bool:
        self._check_cut(cut)
        return self._integral[cut]

    def get_modification_count(self, cut: int) -> int:
        """Modification count of a cut id; still readable after eviction."""
        if cut < 0 or cut >= len(self._modification):
            raise InvariantViolationError(f"Cut {cut} was never added.", column=cut)
        return self._modification[cut]

    def _normalise_row(
        self,
        indices: Sequence[int] | NDArray[np.int64],
        values: Sequence[float] | NDArray[np.float64],
    ) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
        idx = np.asarray(indices, dtype=np.int64).reshape(-1)
        vals = np.asarray(values, dtype=float).reshape(-1)
        if idx.shape[0] != vals.shape[0]:
            raise InvalidInputError(f"Cut has {idx.shape[0]} indices but {vals.shape[0]} values.")
        if idx.size and (idx.min() < 0 or idx.max() >= self.num_col):
            raise InvalidInputError(
                f"Cut column indices must lie in [0, {self.num_col}), got [{idx.min()}, {idx.max()}]."
            )
        if not np.all(np.isfinite(vals)):
            raise InvalidInputError("Cut coefficients must be finite.")
        columns, inverse = np.unique(idx, return_inverse=True)
        coefs = np.zeros(columns.shape[0], dtype=float)
        np.add.at(coefs, inverse, vals)
        keep = coefs != 0
        columns = columns[keep]
        coefs = coefs[keep]
        if columns.size == 0:
            raise InvalidInputError("Cut has no nonzero coefficients after normalisation.")
        return columns, coefs

    def _find_duplicate(
        self,
        signature: int,
        norm: float,
        columns: NDArray[np.int64],
        coefs: NDArray[np.float64],
    ) -> int | None:
        for cut in self._support_map.get(signature, ()):
            stored_columns, stored_coefs = self.matrix.get_row(cut)
            if not np.array_equal(stored_columns, columns):
                continue
            parallelism = float(np.dot(stored_coefs, coefs)) / (self._norms[cut] * norm)
            if parallelism >= 1 - self.parallelism_tolerance:
                return cut
        return None

    def _check_cut(self, cut: int) -> None:
        if cut < 0 or cut >= len(self._ages):
            raise InvariantViolationError(f"Cut {cut} was never added.", column=cut)
        if self.matrix.is_deleted(cut):
            raise InvariantViolationError(f"Cut {cut} has been evicted.", column=cut)
