"""Ratio-test diagnostics: work-group reports, grouping comparison and statistics.

This module provides utilities to inspect how the bound-flipping ratio test
partitioned its breakpoints and to detect trouble such as repeated grouping
stagnation or disagreement between the two grouping orders.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from .data import PricingCandidate


def format_work_groups(
    message: str,
    candidates: Sequence[PricingCandidate],
    work_group: Sequence[int],
    work_dual: np.ndarray,
    work_move: np.ndarray,
    work_range: np.ndarray,
    total_delta: float,
) -> str:
    """Render the candidate list and its bucket boundaries as a table.

    Each candidate line shows the signed dual, the pivot magnitude, the
    breakpoint ratio and the running bound-flip range. Each group line lists
    the candidate positions it holds.

    Args:
        message: Heading for the report.
        candidates: Candidates in grouping order.
        work_group: Bucket offsets into ``candidates``.
        work_dual: Dual values of all columns.
        work_move: Nonbasic move of all columns.
        work_range: Bound ranges of all columns.
        total_delta: Required step magnitude.

    Returns:
        Multi-line report text.
    """
    lines = [
        f"{message}: totalDelta = {total_delta:10.4g}",
        "workData",
        "  En iCol       Dual      Value      Ratio     Change",
    ]
    total_change = 1e-12
    for en, cand in enumerate(candidates):
        dual = work_move[cand.column] * work_dual[cand.column]
        total_change += cand.alpha * work_range[cand.column]
        lines.append(
            f"{en:4d} {cand.column:4d} {dual:10.4g} {cand.alpha:10.4g} "
            f"{dual / cand.alpha:10.4g} {total_change:10.4g}"
        )
    lines.append("workGroup")
    lines.append("  Ix: Entries")
    for group in range(len(work_group) - 1):
        entries = " ".join(f"{en:4d}" for en in range(work_group[group], work_group[group + 1]))
        lines.append(f"{group:4d}: {entries}")
    return "\n".join(lines)


def compare_work_groups(
    candidates: Sequence[PricingCandidate],
    work_group: Sequence[int],
    alt_candidates: Sequence[PricingCandidate],
    alt_work_group: Sequence[int],
) -> list[str]:
    """Compare two breakpoint groupings bucket by bucket.

    Returns:
        Human-readable differences; empty when both groupings agree on the
        bucket boundaries and on the columns inside every bucket. Comparison
        stops at the first bucket whose end offsets differ.
    """
    if len(work_group) != len(alt_work_group):
        return [f"Group counts differ: {len(work_group) - 1} != {len(alt_work_group) - 1}"]
    differences: list[str] = []
    for group in range(len(work_group) - 1):
        if work_group[group + 1] != alt_work_group[group + 1]:
            differences.append(
                f"Group {group} ends at {work_group[group + 1]} != {alt_work_group[group + 1]}"
            )
            return differences
        primary = {c.column for c in candidates[work_group[group] : work_group[group + 1]]}
        alternate = {
            c.column for c in alt_candidates[alt_work_group[group] : alt_work_group[group + 1]]
        }
        for column in sorted(alternate - primary):
            differences.append(f"Group {group} does not contain column {column}")
        for column in sorted(primary - alternate):
            differences.append(f"Alternate group {group} does not contain column {column}")
    return differences


@dataclass
class RatioTestMonitor:
    """Accumulates per-call ratio-test outcomes.

    Tracks how often the ratio test stagnates, finds no candidate, takes a
    degenerate (zero) step, and how many bound flips it schedules, so the
    caller can decide when to refactorise or refresh duals.

    Attributes:
        window_size: Number of recent step lengths kept.
        degeneracy_threshold: Ratio of zero steps above which the run is
            reported as highly degenerate.

    Examples:
        >>> monitor = RatioTestMonitor()
        >>> engine = DualRatioTestEngine(state, monitor=monitor)
        >>> ...
        >>> if monitor.is_highly_degenerate():
        ...     print("Many zero dual steps")
    """

    window_size: int = 50
    degeneracy_threshold: float = 0.5

    theta_history: deque[float] = field(default_factory=lambda: deque(maxlen=50))
    total_calls: int = 0
    stagnations: int = 0
    empty_rows: int = 0
    degenerate_steps: int = 0
    total_flips: int = 0
    mismatches: int = 0

    def __post_init__(self) -> None:
        """Initialize history with correct maxlen."""
        self.theta_history = deque(maxlen=self.window_size)

    def record(self, status: str, theta: float = 0.0, num_flips: int = 0) -> None:
        self.total_calls += 1
        if status == "stagnated":
            self.stagnations += 1
            return
        if status == "no_candidate":
            self.empty_rows += 1
            return
        self.theta_history.append(theta)
        if theta == 0:
            self.degenerate_steps += 1
        self.total_flips += num_flips

    def record_mismatch(self) -> None:
        self.mismatches += 1

    def get_degeneracy_ratio(self) -> float:
        steps = self.total_calls - self.stagnations - self.empty_rows
        if steps <= 0:
            return 0.0
        return self.degenerate_steps / steps

    def is_highly_degenerate(self) -> bool:
        if self.total_calls < 10:
            return False
        return self.get_degeneracy_ratio() > self.degeneracy_threshold

    def get_statistics(self) -> dict[str, float]:
        """Return counters and the mean recent step length."""
        return {
            "total_calls": self.total_calls,
            "stagnations": self.stagnations,
            "empty_rows": self.empty_rows,
            "degenerate_steps": self.degenerate_steps,
            "total_flips": self.total_flips,
            "mismatches": self.mismatches,
            "degeneracy_ratio": self.get_degeneracy_ratio(),
            "mean_theta": float(np.mean(self.theta_history)) if self.theta_history else 0.0,
        }
