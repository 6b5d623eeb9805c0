"""Core data structures exchanged between the surrounding solver and mip_core."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csc_matrix, csr_matrix

from .exceptions import InvalidInputError, SolverConfigurationError


@dataclass
class SparseRowView:
    """A sparse vector held as packed (index, value) pairs.

    This is one row of the working tableau as the surrounding simplex code
    hands it over, either the structural part (``row_ap``) or the logical
    part (``row_ep``).

    Attributes:
        index: Positions of the stored entries.
        value: Values aligned with ``index``.

    Examples:
        >>> row = SparseRowView.from_pairs({3: 2.0, 7: 1.0})
        >>> row.count
        2
        >>> row.to_dense(8)[3]
        2.0
    """

    index: NDArray[np.int64]
    value: NDArray[np.float64]

    def __post_init__(self) -> None:
        self.index = np.asarray(self.index, dtype=np.int64).reshape(-1)
        self.value = np.asarray(self.value, dtype=float).reshape(-1)
        if self.index.shape[0] != self.value.shape[0]:
            raise InvalidInputError(
                f"Sparse row has {self.index.shape[0]} indices but {self.value.shape[0]} values."
            )

    @property
    def count(self) -> int:
        return int(self.index.shape[0])

    @classmethod
    def from_pairs(cls, pairs: dict[int, float] | Sequence[tuple[int, float]]) -> SparseRowView:
        items = list(pairs.items()) if isinstance(pairs, dict) else list(pairs)
        return cls(
            index=np.array([i for i, _ in items], dtype=np.int64),
            value=np.array([v for _, v in items], dtype=float),
        )

    @classmethod
    def from_dense(cls, array: Sequence[float] | NDArray[np.float64]) -> SparseRowView:
        dense = np.asarray(array, dtype=float)
        nz = np.flatnonzero(dense)
        return cls(index=nz, value=dense[nz])

    def to_dense(self, size: int) -> NDArray[np.float64]:
        dense = np.zeros(size, dtype=float)
        if self.count:
            np.add.at(dense, self.index, self.value)
        return dense


@dataclass(frozen=True)
class PricingCandidate:
    """A column that passed the pivot threshold, with its signed scaled magnitude."""

    column: int
    alpha: float


@dataclass
class SimplexWorkState:
    """Dual and bound bookkeeping borrowed from the surrounding simplex solver.

    Columns ``0..num_col-1`` are structural and their coefficients live in
    ``matrix``; columns ``num_col..num_col+num_row-1`` are logical columns
    whose coefficient column is the unit vector of the matching row.

    The ratio test reads these arrays and the update operations
    (``update_dual``, ``update_flip``, free-move assignment) write them in
    place. Nothing here is owned by the engine.

    Attributes:
        matrix: Constraint matrix in CSC form, shape ``(num_row, num_col)``.
        work_dual: Reduced costs of all ``num_tot`` columns.
        work_lower: Lower bounds (``-inf`` when absent).
        work_upper: Upper bounds (``+inf`` when absent).
        work_range: ``work_upper - work_lower``.
        work_value: Current value of each nonbasic column.
        nonbasic_flag: 1 for nonbasic columns, 0 for basic ones.
        nonbasic_move: +1 when the column may increase, -1 when it may
            decrease, 0 for basic or fixed/free-unresolved columns.
        devex_index: Devex reference weights (0 or 1 per column).
        permutation: Fixed column order used to break ties.
        update_count: Basis updates since the last refactorisation.
        cost_scale: Cost scaling factor applied to dual objective changes.
        updated_dual_objective_value: Running dual objective, updated in place.
    """

    matrix: csc_matrix
    work_dual: NDArray[np.float64]
    work_lower: NDArray[np.float64]
    work_upper: NDArray[np.float64]
    work_range: NDArray[np.float64]
    work_value: NDArray[np.float64]
    nonbasic_flag: NDArray[np.int8]
    nonbasic_move: NDArray[np.int8]
    devex_index: NDArray[np.float64]
    permutation: NDArray[np.int64]
    update_count: int = 0
    cost_scale: float = 1.0
    updated_dual_objective_value: float = 0.0

    def __post_init__(self) -> None:
        num_tot = self.num_tot
        for name in (
            "work_dual",
            "work_lower",
            "work_upper",
            "work_range",
            "work_value",
            "nonbasic_flag",
            "nonbasic_move",
            "devex_index",
            "permutation",
        ):
            size = np.asarray(getattr(self, name)).shape[0]
            if size != num_tot:
                raise InvalidInputError(
                    f"Work array '{name}' has length {size}, expected num_col + num_row = {num_tot}."
                )

    @property
    def num_row(self) -> int:
        return int(self.matrix.shape[0])

    @property
    def num_col(self) -> int:
        return int(self.matrix.shape[1])

    @property
    def num_tot(self) -> int:
        return self.num_row + self.num_col

    @classmethod
    def build(
        cls,
        matrix: csc_matrix | NDArray[np.float64],
        work_lower: Sequence[float],
        work_upper: Sequence[float],
        work_dual: Sequence[float],
        nonbasic_flag: Sequence[int] | None = None,
        nonbasic_move: Sequence[int] | None = None,
        permutation: Sequence[int] | None = None,
        update_count: int = 0,
        cost_scale: float = 1.0,
    ) -> SimplexWorkState:
        """Build a work state, deriving ranges, nonbasic values and defaults.

        Nonbasic values are placed at the lower bound when the move is +1, at
        the upper bound when it is -1, and at zero for free columns. When no
        moves are given they are derived from the bounds: +1 at a finite lower
        bound, -1 at a finite upper bound only, 0 for free or fixed columns.

        Examples:
            >>> state = SimplexWorkState.build(
            ...     np.zeros((1, 2)), [0, 0, 0], [1, 1, 1], [0.5, 0.0, 0.0],
            ...     nonbasic_flag=[1, 1, 0],
            ... )
            >>> state.nonbasic_move.tolist()
            [1, 1, 0]
        """
        sparse = matrix if isinstance(matrix, csc_matrix) else csc_matrix(np.asarray(matrix, dtype=float))
        num_tot = sparse.shape[0] + sparse.shape[1]
        lower = np.asarray(work_lower, dtype=float).copy()
        upper = np.asarray(work_upper, dtype=float).copy()
        dual = np.asarray(work_dual, dtype=float).copy()
        flag = (
            np.ones(num_tot, dtype=np.int8)
            if nonbasic_flag is None
            else np.asarray(nonbasic_flag, dtype=np.int8).copy()
        )
        if nonbasic_move is None:
            move = np.zeros(num_tot, dtype=np.int8)
            finite_lower = np.isfinite(lower)
            finite_upper = np.isfinite(upper)
            move[finite_lower & (lower != upper)] = 1
            move[~finite_lower & finite_upper] = -1
            move[flag == 0] = 0
        else:
            move = np.asarray(nonbasic_move, dtype=np.int8).copy()
        value = np.zeros(num_tot, dtype=float)
        at_lower = move == 1
        at_upper = move == -1
        value[at_lower] = lower[at_lower]
        value[at_upper] = upper[at_upper]
        fixed = (move == 0) & np.isfinite(lower)
        value[fixed] = lower[fixed]
        order = (
            np.arange(num_tot, dtype=np.int64)
            if permutation is None
            else np.asarray(permutation, dtype=np.int64).copy()
        )
        return cls(
            matrix=sparse,
            work_dual=dual,
            work_lower=lower,
            work_upper=upper,
            work_range=upper - lower,
            work_value=value,
            nonbasic_flag=flag,
            nonbasic_move=move,
            devex_index=np.ones(num_tot, dtype=float),
            permutation=order,
            update_count=update_count,
            cost_scale=cost_scale,
        )


@dataclass
class RatioTestOptions:
    """Configuration options for the dual ratio test.

    Attributes:
        dual_feasibility_tolerance: Td, the slack allowed on dual feasibility
            when computing breakpoints (default: 1e-7).
        cross_check: Also group the breakpoints by a heap ordering and compare
            the chosen pivot with the primary grouping (default: False).
            Disagreements are logged with both work-group reports.
        strict_checks: Raise ``InvariantViolationError`` on a cross-check
            mismatch instead of only logging it (default: False).

    Examples:
        >>> options = RatioTestOptions(dual_feasibility_tolerance=1e-9, cross_check=True)
    """

    dual_feasibility_tolerance: float = 1e-7
    cross_check: bool = False
    strict_checks: bool = False

    def __post_init__(self) -> None:
        if not self.dual_feasibility_tolerance > 0 or not math.isfinite(
            self.dual_feasibility_tolerance
        ):
            raise SolverConfigurationError(
                f"dual_feasibility_tolerance must be positive and finite, got "
                f"{self.dual_feasibility_tolerance}."
            )


@dataclass
class RatioTestResult:
    """Outcome of one dual ratio test.

    Attributes:
        status: "ok" when an entering column was chosen, "no_candidate" when
            no column passed the pivot threshold (step zero, nothing flipped),
            or "stagnated" when breakpoint grouping made no progress.
        entering: Entering column, or None.
        theta: Dual step length.
        alpha: Pivot value of the entering column, sign of the packed row.
        flips: ``(column, move * range)`` pairs sorted by column.
        work_group: Bucket offsets into the ordered candidate list.
        candidates: Candidates in grouping order (admitted ones first).
        cross_check_mismatch: True when the heap ordering chose another pivot.
    """

    status: str
    entering: int | None = None
    theta: float = 0.0
    alpha: float = 0.0
    flips: list[tuple[int, float]] = field(default_factory=list)
    work_group: list[int] = field(default_factory=list)
    candidates: list[PricingCandidate] = field(default_factory=list)
    cross_check_mismatch: bool = False

    @property
    def failed(self) -> bool:
        return self.status == "stagnated"

    @property
    def flip_columns(self) -> list[int]:
        return [col for col, _ in self.flips]


@dataclass
class CutSet:
    """Separated cuts packed row-wise, ready to be appended to an LP.

    Attributes:
        cut_indices: Pool ids of the included cuts.
        ar_start: Row start offsets, ``num_cuts + 1`` entries.
        ar_index: Concatenated column indices.
        ar_value: Concatenated coefficients.
        lower: Row lower bounds (always ``-inf``).
        upper: Row upper bounds (the cut right-hand sides).
    """

    cut_indices: list[int] = field(default_factory=list)
    ar_start: list[int] = field(default_factory=lambda: [0])
    ar_index: list[int] = field(default_factory=list)
    ar_value: list[float] = field(default_factory=list)
    lower: list[float] = field(default_factory=list)
    upper: list[float] = field(default_factory=list)

    def num_cuts(self) -> int:
        return len(self.cut_indices)

    def empty(self) -> bool:
        return not self.cut_indices

    def clear(self) -> None:
        self.cut_indices.clear()
        self.ar_start[:] = [0]
        self.ar_index.clear()
        self.ar_value.clear()
        self.lower.clear()
        self.upper.clear()

    def to_csr(self, num_col: int) -> csr_matrix:
        """Return the cut rows as a ``(num_cuts, num_col)`` CSR matrix."""
        return csr_matrix(
            (
                np.asarray(self.ar_value, dtype=float),
                np.asarray(self.ar_index, dtype=np.int64),
                np.asarray(self.ar_start, dtype=np.int64),
            ),
            shape=(self.num_cuts(), num_col),
        )


@dataclass
class DomainBounds:
    """Column bounds of a propagation domain, queried during separation.

    Trial values are clipped into ``[col_lower, col_upper]`` before cut
    violations are evaluated.
    """

    col_lower: NDArray[np.float64]
    col_upper: NDArray[np.float64]

    def __post_init__(self) -> None:
        self.col_lower = np.asarray(self.col_lower, dtype=float)
        self.col_upper = np.asarray(self.col_upper, dtype=float)
        if self.col_lower.shape != self.col_upper.shape:
            raise InvalidInputError(
                f"Domain has {self.col_lower.shape[0]} lower bounds but "
                f"{self.col_upper.shape[0]} upper bounds."
            )
