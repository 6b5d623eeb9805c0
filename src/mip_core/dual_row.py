"""Dual simplex pricing row: candidate packing and the bound-flipping ratio test.

The entering variable of a dual simplex iteration is chosen from the pivot
row by a bound-flipping ratio test (BFRT). Breakpoints are the ratios of the
signed duals to the signed pivot magnitudes. Instead of stopping at the first
breakpoint, the test keeps passing breakpoints while the bound ranges of the
passed columns can absorb the primal infeasibility ``work_delta``; those
columns are flipped to their opposite bound and only one column enters the
basis.

The choice proceeds in stages:

1. ``choose_possible`` keeps columns whose signed pivot magnitude beats the
   tiered pivot threshold and records the tightest step bound.
2. A coarse expansion admits candidates under a threshold that grows by a
   factor of ten until their ranges cover the required step.
3. The admitted candidates are grouped into buckets of increasing breakpoint
   ratio until the accumulated range reaches the required step.
4. Scanning buckets backwards, the first bucket holding a large enough pivot
   supplies the entering column; ties go to the smaller permutation index.
5. Every candidate in earlier buckets is flipped.
"""

from __future__ import annotations

import heapq
import logging
import math

import numpy as np
from numpy.typing import NDArray

from .data import (
    PricingCandidate,
    RatioTestOptions,
    RatioTestResult,
    SimplexWorkState,
    SparseRowView,
)
from .diagnostics import RatioTestMonitor, compare_work_groups, format_work_groups
from .exceptions import InvalidInputError, InvariantViolationError
from .utils import pivot_threshold

logger = logging.getLogger(__name__)

# Buckets are never opened beyond this breakpoint ratio.
GROUP_THETA_LIMIT = 1e18
# Initial value of the smallest excluded ratio in a grouping pass.
REMAIN_THETA_INIT = 1e100
# Seed of the accumulated range so a zero required step still terminates.
TOTAL_CHANGE_INIT = 1e-12
# Offset added to the coarse expansion's first threshold.
COARSE_THETA_OFFSET = 1e-7


class CandidatePacker:
    """Packs the nonzeros of one or more sparse rows into a single candidate row.

    The structural part of the pivot row is packed at offset 0 and the logical
    part at offset ``num_col`` so every packed index addresses the combined
    column space of size ``num_tot``. Buffers are sized once and reused.
    """

    def __init__(self, size: int):
        self.size = size
        self.pack_index = np.zeros(size, dtype=np.int64)
        self.pack_value = np.zeros(size, dtype=float)
        self.pack_count = 0

    def clear(self) -> None:
        self.pack_count = 0

    def make_pack(self, row: SparseRowView, offset: int = 0) -> None:
        """Append the entries of ``row`` with their indices shifted by ``offset``."""
        count = row.count
        if count == 0:
            return
        end = self.pack_count + count
        if end > self.size:
            raise InvalidInputError(
                f"Packing {count} entries would exceed the pack capacity of {self.size}."
            )
        columns = row.index + offset
        if columns.min() < 0 or columns.max() >= self.size:
            raise InvalidInputError(
                f"Packed column indices must lie in [0, {self.size}), got "
                f"[{columns.min()}, {columns.max()}]."
            )
        self.pack_index[self.pack_count : end] = columns
        self.pack_value[self.pack_count : end] = row.value
        self.pack_count = end

    @property
    def indices(self) -> NDArray[np.int64]:
        return self.pack_index[: self.pack_count]

    @property
    def values(self) -> NDArray[np.float64]:
        return self.pack_value[: self.pack_count]


class DualRatioTestEngine:
    """Chooses the entering column and bound flips for a dual simplex iteration.

    The engine borrows a ``SimplexWorkState``: the ratio test only reads it,
    while ``update_dual`` and ``update_flip`` write duals, moves, values and the
    running dual objective back into it.

    Attributes:
        state: Borrowed solver bookkeeping.
        options: Tolerances and cross-check switches.
        monitor: Optional statistics collector.
        packer: Packed pivot row of the current iteration.
        work_data: Candidates of the current iteration in grouping order.
        work_group: Bucket offsets into ``work_data``.
        work_theta: Step bound from filtering, then the chosen step length.
        work_delta: Signed primal infeasibility of the leaving row.
        work_pivot: Entering column of the last successful choice.
        work_alpha: Pivot value of the entering column.
        flips: Bound flips of the last successful choice.

    Examples:
        >>> engine = DualRatioTestEngine(state)
        >>> result = engine.choose(row_ap, row_ep, work_delta=-1.5)
        >>> if result.failed:
        ...     refactorise_and_retry()
        ... else:
        ...     column, change = engine.update_flip()
        ...     engine.update_dual(result.theta)
    """

    def __init__(
        self,
        state: SimplexWorkState,
        options: RatioTestOptions | None = None,
        monitor: RatioTestMonitor | None = None,
    ):
        self.state = state
        self.options = options if options is not None else RatioTestOptions()
        self.monitor = monitor
        self.packer = CandidatePacker(state.num_tot)
        self.work_data: list[PricingCandidate] = []
        self.work_group: list[int] = []
        self.work_theta = math.inf
        self.work_delta = 0.0
        self.work_pivot: int | None = None
        self.work_alpha = 0.0
        self.flips: list[tuple[int, float]] = []
        self.computed_edge_weight = 0.0

    def clear(self) -> None:
        """Drop the packed row and all per-iteration work data."""
        self.packer.clear()
        self.work_data = []
        self.work_group = []
        self.work_theta = math.inf
        self.work_pivot = None
        self.work_alpha = 0.0
        self.flips = []

    def choose_makepack(self, row: SparseRowView, offset: int = 0) -> None:
        self.packer.make_pack(row, offset)

    def choose(
        self,
        row_ap: SparseRowView,
        row_ep: SparseRowView | None,
        work_delta: float,
    ) -> RatioTestResult:
        """Pack the pivot row and run the full ratio test.

        Args:
            row_ap: Structural part of the pivot row.
            row_ep: Logical part of the pivot row (indexed by row), or None.
            work_delta: Signed primal infeasibility of the leaving variable.

        Returns:
            The ratio test outcome.
        """
        self.clear()
        self.choose_makepack(row_ap, 0)
        if row_ep is not None:
            self.choose_makepack(row_ep, self.state.num_col)
        self.choose_possible(work_delta)
        return self.choose_final()

    def choose_possible(self, work_delta: float) -> list[PricingCandidate]:
        """Filter the packed row down to the columns eligible to enter.

        A column qualifies when its pivot value, signed by the leaving
        direction and its own nonbasic move, exceeds the pivot threshold for
        the current update count. ``work_theta`` becomes the smallest relaxed
        breakpoint ``(move * dual + Td) / alpha`` over the candidates.
        """
        state = self.state
        self.work_delta = work_delta
        ta = pivot_threshold(state.update_count)
        td = self.options.dual_feasibility_tolerance
        source_out = -1 if work_delta < 0 else 1

        columns = self.packer.indices
        move = state.nonbasic_move[columns].astype(float)
        alpha = self.packer.values * source_out * move
        keep = alpha > ta
        cand_columns = columns[keep]
        cand_alpha = alpha[keep]

        self.work_data = [
            PricingCandidate(int(col), float(a)) for col, a in zip(cand_columns, cand_alpha)
        ]
        self.work_theta = math.inf
        if cand_columns.size:
            relax = state.work_dual[cand_columns] * move[keep] + td
            self.work_theta = float(np.min(relax / cand_alpha))
        return list(self.work_data)

    def choose_join_pack(self, other: DualRatioTestEngine) -> None:
        """Merge the candidates filtered by another slice of the same pivot row."""
        self.work_data.extend(other.work_data)
        self.work_theta = min(self.work_theta, other.work_theta)

    def choose_final(self) -> RatioTestResult:
        """Choose the entering column and the flip set from the filtered candidates."""
        state = self.state
        move = state.nonbasic_move
        dual = state.work_dual
        work_range = state.work_range
        data = self.work_data
        full_count = len(data)

        if full_count == 0:
            return self._finish(RatioTestResult(status="no_candidate"))

        # 1. Reduce by large step BFRT
        work_count = 0
        total_change = 0.0
        total_delta = abs(self.work_delta)
        select_theta = 10 * self.work_theta + COARSE_THETA_OFFSET
        while True:
            for i in range(work_count, full_count):
                cand = data[i]
                tight = move[cand.column] * dual[cand.column]
                if cand.alpha * select_theta >= tight:
                    data[work_count], data[i] = data[i], data[work_count]
                    work_count += 1
                    total_change += work_range[cand.column] * cand.alpha
            select_theta *= 10
            if total_change >= total_delta or work_count == full_count:
                break
            if not math.isfinite(select_theta):
                break

        original_data = list(data)
        coarse_count = work_count
        filter_theta = self.work_theta

        # 2. Choose by small step BFRT
        grouping = self._choose_final_work_group_quad(data, coarse_count)
        if grouping is None:
            return self._finish(
                RatioTestResult(status="stagnated", candidates=list(data), work_group=list(self.work_group))
            )
        work_group, work_count = grouping
        self.work_group = work_group

        # 3. Choose large alpha
        break_index, break_group = self._choose_final_large_alpha(data, work_group, work_count)
        if break_index < 0:
            self._report_failure("no bucket holds a usable pivot", data, work_group)
            return self._finish(
                RatioTestResult(status="stagnated", candidates=list(data), work_group=list(work_group))
            )

        source_out = -1 if self.work_delta < 0 else 1
        pivot = data[break_index].column
        self.work_pivot = pivot
        self.work_alpha = data[break_index].alpha * source_out * move[pivot]
        if dual[pivot] * move[pivot] > 0:
            self.work_theta = dual[pivot] / self.work_alpha
        else:
            self.work_theta = 0.0

        mismatch = False
        if self.options.cross_check:
            mismatch = self._cross_check(
                original_data, coarse_count, filter_theta, data, work_group, work_count, pivot
            )

        # 4. Determine BFRT flip index: flip all
        flips: list[tuple[int, float]] = []
        if self.work_theta != 0:
            for i in range(work_group[break_group]):
                col = data[i].column
                flips.append((col, float(move[col] * work_range[col])))
        flips.sort()
        self.flips = flips

        return self._finish(
            RatioTestResult(
                status="ok",
                entering=pivot,
                theta=float(self.work_theta),
                alpha=float(self.work_alpha),
                flips=list(flips),
                work_group=list(work_group),
                candidates=list(data),
                cross_check_mismatch=mismatch,
            )
        )

    def _choose_final_work_group_quad(
        self, data: list[PricingCandidate], full_count: int
    ) -> tuple[list[int], int] | None:
        """Group candidates by repeated passes over the not-yet-admitted ones.

        Each pass admits every candidate whose signed dual is within
        ``select_theta`` times its magnitude and sets the next threshold to
        the smallest relaxed ratio among those left out. Returns None when a
        pass changes neither the admitted count nor the thresholds.
        """
        state = self.state
        move = state.nonbasic_move
        dual_values = state.work_dual
        work_range = state.work_range
        td = self.options.dual_feasibility_tolerance
        total_delta = abs(self.work_delta)

        work_count = 0
        total_change = TOTAL_CHANGE_INIT
        select_theta = self.work_theta
        work_group = [0]
        prev_work_count = work_count
        prev_remain_theta = REMAIN_THETA_INIT
        prev_select_theta = select_theta

        while select_theta < GROUP_THETA_LIMIT:
            remain_theta = REMAIN_THETA_INIT
            for i in range(work_count, full_count):
                cand = data[i]
                dual = move[cand.column] * dual_values[cand.column]
                if dual <= select_theta * cand.alpha:
                    data[work_count], data[i] = data[i], data[work_count]
                    work_count += 1
                    total_change += cand.alpha * work_range[cand.column]
                elif dual + td < remain_theta * cand.alpha:
                    remain_theta = (dual + td) / cand.alpha
            work_group.append(work_count)

            select_theta = remain_theta
            if (
                work_count == prev_work_count
                and prev_select_theta == select_theta
                and prev_remain_theta == remain_theta
            ):
                self.work_group = work_group
                self._report_failure("breakpoint grouping stagnated", data[:full_count], work_group)
                return None
            prev_work_count = work_count
            prev_remain_theta = remain_theta
            prev_select_theta = select_theta
            if total_change >= total_delta or work_count == full_count:
                break

        if work_count == 0:
            self.work_group = work_group
            self._report_failure("no breakpoint below the grouping limit", data[:full_count], work_group)
            return None
        return work_group, work_count

    def _choose_final_work_group_heap(
        self, data: list[PricingCandidate], full_count: int, work_theta: float
    ) -> tuple[list[PricingCandidate], list[int]]:
        """Group candidates by popping breakpoints from a ratio-ordered heap."""
        state = self.state
        move = state.nonbasic_move
        dual_values = state.work_dual
        work_range = state.work_range
        td = self.options.dual_feasibility_tolerance
        total_delta = abs(self.work_delta)

        heap: list[tuple[float, int]] = []
        for i in range(full_count):
            cand = data[i]
            ratio = move[cand.column] * dual_values[cand.column] / cand.alpha
            if ratio < GROUP_THETA_LIMIT:
                heap.append((ratio, i))
        heapq.heapify(heap)

        total_change = TOTAL_CHANGE_INIT
        select_theta = work_theta
        sorted_data: list[PricingCandidate] = []
        alt_group = [0]
        group_first = 0
        while heap:
            _, i = heapq.heappop(heap)
            cand = data[i]
            dual = move[cand.column] * dual_values[cand.column]
            if dual > select_theta * cand.alpha:
                # Breakpoint opens the next group
                alt_group.append(len(sorted_data))
                group_first = len(sorted_data)
                select_theta = (dual + td) / cand.alpha
                if total_change >= total_delta:
                    break
            sorted_data.append(cand)
            total_change += cand.alpha * work_range[cand.column]
        if len(sorted_data) > group_first:
            alt_group.append(len(sorted_data))
        return sorted_data, alt_group

    def _choose_final_large_alpha(
        self,
        data: list[PricingCandidate],
        work_group: list[int],
        work_count: int,
    ) -> tuple[int, int]:
        """Return ``(break_index, break_group)`` of the entering candidate.

        Buckets are scanned from the last one backwards. The first bucket whose
        largest magnitude exceeds ``min(0.1 * max_alpha, 1)`` wins; within it
        equal magnitudes go to the column earlier in the fixed permutation.
        Returns ``(-1, -1)`` when no bucket qualifies.
        """
        permutation = self.state.permutation
        final_compare = max((cand.alpha for cand in data[:work_count]), default=0.0)
        final_compare = min(0.1 * final_compare, 1.0)
        for group in range(len(work_group) - 2, -1, -1):
            max_alpha = 0.0
            max_index = -1
            for i in range(work_group[group], work_group[group + 1]):
                alpha = data[i].alpha
                if max_alpha < alpha:
                    max_alpha = alpha
                    max_index = i
                elif max_index >= 0 and max_alpha == alpha:
                    if permutation[data[i].column] < permutation[data[max_index].column]:
                        max_index = i
            if max_index >= 0 and max_alpha > final_compare:
                return max_index, group
        return -1, -1

    def _cross_check(
        self,
        original_data: list[PricingCandidate],
        full_count: int,
        work_theta: float,
        data: list[PricingCandidate],
        work_group: list[int],
        work_count: int,
        pivot: int,
    ) -> bool:
        """Regroup with the heap ordering and report a pivot disagreement.

        Both groupings start from the step bound found by filtering, and both
        pivot choices compare against the primary admitted count. The primary
        grouping's choice stands either way.
        """
        alt_data, alt_group = self._choose_final_work_group_heap(
            original_data, full_count, work_theta
        )
        alt_index, _ = self._choose_final_large_alpha(alt_data, alt_group, work_count)
        alt_pivot = alt_data[alt_index].column if alt_index >= 0 else None
        differences = compare_work_groups(data, work_group, alt_data, alt_group)
        if alt_pivot == pivot:
            if differences and logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    f"Heap grouping differs but agrees on pivot {pivot}: " + "; ".join(differences)
                )
            return False

        if self.monitor is not None:
            self.monitor.record_mismatch()
        state = self.state
        reports = "\n".join(
            [
                format_work_groups(
                    "Original",
                    data[: work_group[-1]],
                    work_group,
                    state.work_dual,
                    state.nonbasic_move,
                    state.work_range,
                    abs(self.work_delta),
                ),
                format_work_groups(
                    "Heap-derived",
                    alt_data,
                    alt_group,
                    state.work_dual,
                    state.nonbasic_move,
                    state.work_range,
                    abs(self.work_delta),
                ),
            ]
        )
        logger.warning(f"Quad pivot = {pivot}; heap pivot = {alt_pivot}\n{reports}")
        if self.options.strict_checks:
            raise InvariantViolationError(
                f"Breakpoint groupings disagree on the entering column: {pivot} != {alt_pivot}",
                column=pivot,
            )
        return True

    def _report_failure(
        self, reason: str, data: list[PricingCandidate], work_group: list[int]
    ) -> None:
        state = self.state
        logger.warning(
            f"Dual ratio test failed ({reason}) with {len(data)} candidates, "
            f"work_theta = {self.work_theta:.4g}"
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                format_work_groups(
                    "Failed",
                    data,
                    work_group,
                    state.work_dual,
                    state.nonbasic_move,
                    state.work_range,
                    abs(self.work_delta),
                )
            )

    def _finish(self, result: RatioTestResult) -> RatioTestResult:
        if result.status != "ok":
            self.work_pivot = None
            self.work_alpha = 0.0
            self.flips = []
            if result.status == "no_candidate":
                self.work_theta = 0.0
        if self.monitor is not None:
            self.monitor.record(result.status, result.theta, len(result.flips))
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Ratio test {result.status}: entering={result.entering} "
                f"theta={result.theta:.6g} flips={len(result.flips)}"
            )
        return result

    def update_flip(
        self, flips: list[tuple[int, float]] | None = None
    ) -> tuple[NDArray[np.float64], float]:
        """Flip the listed columns to their opposite bound.

        Args:
            flips: ``(column, change)`` pairs; defaults to the last choice's flips.

        Returns:
            Tuple of (row-space accumulation of ``change * a_j`` over the flipped
            columns, dual objective change). The change is also added to the
            state's running dual objective.
        """
        state = self.state
        flips = self.flips if flips is None else flips
        bfrt_column = np.zeros(state.num_row, dtype=float)
        dual_objective_change = 0.0
        for col, change in flips:
            dual_objective_change += change * state.work_dual[col] * state.cost_scale
            self._flip_bound(col)
            self._collect_aj(bfrt_column, col, change)
        state.updated_dual_objective_value += dual_objective_change
        return bfrt_column, dual_objective_change

    def update_dual(self, theta: float) -> float:
        """Move the duals of the packed columns by ``theta`` along the pivot row.

        Returns:
            Dual objective change, also added to the state's running value.
        """
        state = self.state
        columns = self.packer.indices
        delta_dual = theta * self.packer.values
        np.subtract.at(state.work_dual, columns, delta_dual)
        local_change = state.nonbasic_flag[columns] * (-state.work_value[columns] * delta_dual)
        dual_objective_change = float(np.sum(local_change)) * state.cost_scale
        state.updated_dual_objective_value += dual_objective_change
        return dual_objective_change

    def compute_devex_weight(self, slice_index: int = -1) -> float:
        """Return the devex edge weight of the packed row.

        Sums ``(devex_index[j] * value) ** 2`` over the packed nonbasic columns.
        """
        state = self.state
        columns = self.packer.indices
        nonbasic = state.nonbasic_flag[columns] != 0
        pv = state.devex_index[columns[nonbasic]] * self.packer.values[nonbasic]
        self.computed_edge_weight = float(np.dot(pv, pv))
        if slice_index >= 0 and logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Slice {slice_index}: computed_edge_weight = {self.computed_edge_weight:11.4g}"
            )
        return self.computed_edge_weight

    def _flip_bound(self, col: int) -> None:
        state = self.state
        move = -int(state.nonbasic_move[col])
        state.nonbasic_move[col] = move
        state.work_value[col] = state.work_lower[col] if move == 1 else state.work_upper[col]

    def _collect_aj(self, column: NDArray[np.float64], col: int, multiplier: float) -> None:
        state = self.state
        if col < state.num_col:
            matrix = state.matrix
            start, end = matrix.indptr[col], matrix.indptr[col + 1]
            column[matrix.indices[start:end]] += multiplier * matrix.data[start:end]
        else:
            column[col - state.num_col] += multiplier
