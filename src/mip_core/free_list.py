"""Tracking of free nonbasic columns for the dual simplex ratio test."""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from .data import SimplexWorkState, SparseRowView
from .exceptions import InvariantViolationError
from .utils import is_infinity, pivot_threshold

logger = logging.getLogger(__name__)


class FreeVariableTracker:
    """Maintains the set of nonbasic columns with no finite bound.

    Free nonbasic columns have no natural direction of movement, so the ratio
    test cannot use them until a pivot row gives them one. ``create_freemove``
    assigns the direction from the projection of the column onto the pivot
    row; ``delete_freemove`` resets it to neutral when a phase ends.

    Attributes:
        state: Borrowed solver bookkeeping, whose ``nonbasic_move`` is written.
        free_list: Columns currently tracked as free and nonbasic.
    """

    def __init__(self, state: SimplexWorkState):
        self.state = state
        self.free_list: set[int] = set()

    def __len__(self) -> int:
        return len(self.free_list)

    def __contains__(self, column: int) -> bool:
        return column in self.free_list

    def clear(self) -> None:
        self.free_list.clear()

    def create_freelist(self) -> None:
        """Rebuild the set from every nonbasic column with both bounds infinite."""
        state = self.state
        self.free_list.clear()
        for col in range(state.num_tot):
            if (
                state.nonbasic_flag[col]
                and is_infinity(-state.work_lower[col])
                and is_infinity(state.work_upper[col])
            ):
                self.free_list.add(col)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Free list rebuilt with {len(self.free_list)} columns")

    def create_freemove(self, row_ep: SparseRowView | NDArray[np.float64], work_delta: float) -> None:
        """Give each free column a nonbasic move from its pivot row entry.

        The entry is ``a_j . row_ep``. Entries no larger than the tiered pivot
        threshold leave the column unresolved.

        Args:
            row_ep: Row of the basis inverse for the leaving row, dense or sparse.
            work_delta: Signed primal infeasibility of the leaving row.
        """
        if not self.free_list:
            return
        state = self.state
        ta = pivot_threshold(state.update_count)
        source_out = -1 if work_delta < 0 else 1
        dense_ep = row_ep.to_dense(state.num_row) if isinstance(row_ep, SparseRowView) else row_ep
        for col in sorted(self.free_list):
            self._check_column(col)
            alpha = self._compute_dot(dense_ep, col)
            if abs(alpha) > ta:
                state.nonbasic_move[col] = 1 if alpha * source_out > 0 else -1

    def delete_freemove(self) -> None:
        """Reset the move of every tracked column to neutral."""
        for col in self.free_list:
            self._check_column(col)
            self.state.nonbasic_move[col] = 0

    def delete_freelist(self, column: int) -> None:
        """Stop tracking ``column``, typically because it became basic."""
        self.free_list.discard(column)

    def _check_column(self, col: int) -> None:
        state = self.state
        if col >= state.num_col:
            raise InvariantViolationError(
                f"Free list holds logical column {col}; only structural columns "
                f"(< {state.num_col}) can be free.",
                column=col,
            )
        if not state.nonbasic_flag[col]:
            raise InvariantViolationError(
                f"Free list holds column {col}, which is basic.", column=col
            )

    def _compute_dot(self, dense_ep: NDArray[np.float64], col: int) -> float:
        matrix = self.state.matrix
        start, end = matrix.indptr[col], matrix.indptr[col + 1]
        return float(np.dot(matrix.data[start:end], dense_ep[matrix.indices[start:end]]))
