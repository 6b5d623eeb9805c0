"""Tests for the data structures shared with the surrounding solver."""

import math

import numpy as np
import pytest
from scipy.sparse import csc_matrix

from mip_core import (
    CutSet,
    DomainBounds,
    InvalidInputError,
    PricingCandidate,
    RatioTestOptions,
    RatioTestResult,
    SimplexWorkState,
    SolverConfigurationError,
    SparseRowView,
)

INF = math.inf


class TestSparseRowView:
    """Tests for SparseRowView."""

    def test_from_pairs_dict_and_list(self):
        from_dict = SparseRowView.from_pairs({3: 2.0, 7: 1.0})
        from_list = SparseRowView.from_pairs([(3, 2.0), (7, 1.0)])
        assert from_dict.index.tolist() == from_list.index.tolist() == [3, 7]
        assert from_dict.value.tolist() == [2.0, 1.0]
        assert from_dict.count == 2

    def test_empty(self):
        row = SparseRowView.from_pairs({})
        assert row.count == 0
        assert row.to_dense(3).tolist() == [0.0, 0.0, 0.0]

    def test_dense_round_trip(self):
        row = SparseRowView.from_dense([0.0, 1.5, 0.0, -2.0])
        assert row.index.tolist() == [1, 3]
        np.testing.assert_allclose(row.to_dense(4), [0.0, 1.5, 0.0, -2.0])

    def test_to_dense_sums_repeated_entries(self):
        row = SparseRowView(index=[1, 1], value=[1.0, 2.0])
        assert row.to_dense(2).tolist() == [0.0, 3.0]

    def test_length_mismatch(self):
        with pytest.raises(InvalidInputError):
            SparseRowView(index=[0, 1], value=[1.0])


class TestSimplexWorkState:
    """Tests for SimplexWorkState construction."""

    def test_dimensions(self):
        state = SimplexWorkState.build(np.zeros((2, 3)), [0] * 5, [1] * 5, [0] * 5)
        assert isinstance(state.matrix, csc_matrix)
        assert state.num_row == 2
        assert state.num_col == 3
        assert state.num_tot == 5

    def test_default_moves_and_values(self):
        lower = [0.0, -INF, -INF, 2.0, 1.0]
        upper = [4.0, 3.0, INF, 2.0, INF]
        state = SimplexWorkState.build(
            np.zeros((1, 4)), lower, upper, [0.0] * 5, nonbasic_flag=[1, 1, 1, 1, 0]
        )
        assert state.nonbasic_move.tolist() == [1, -1, 0, 0, 0]
        assert state.work_value.tolist() == [0.0, 3.0, 0.0, 2.0, 1.0]
        assert state.work_range[0] == 4.0
        assert state.work_range[2] == INF

    def test_explicit_moves(self):
        state = SimplexWorkState.build(
            np.zeros((1, 1)), [0.0, 0.0], [5.0, 1.0], [0.0, 0.0], nonbasic_move=[-1, 1]
        )
        assert state.work_value.tolist() == [5.0, 0.0]

    def test_defaults(self):
        state = SimplexWorkState.build(np.zeros((1, 2)), [0] * 3, [1] * 3, [0] * 3)
        assert state.devex_index.tolist() == [1.0, 1.0, 1.0]
        assert state.permutation.tolist() == [0, 1, 2]
        assert state.update_count == 0
        assert state.cost_scale == 1.0
        assert state.updated_dual_objective_value == 0.0

    def test_inputs_are_copied(self):
        duals = np.array([1.0, 2.0])
        state = SimplexWorkState.build(np.zeros((1, 1)), [0, 0], [1, 1], duals)
        state.work_dual[0] = 5.0
        assert duals[0] == 1.0

    def test_wrong_length_is_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            SimplexWorkState.build(np.zeros((1, 2)), [0] * 3, [1] * 3, [0] * 2)
        assert "work_dual" in str(exc_info.value)


class TestRatioTestOptions:
    """Tests for RatioTestOptions."""

    def test_defaults(self):
        options = RatioTestOptions()
        assert options.dual_feasibility_tolerance == 1e-7
        assert not options.cross_check
        assert not options.strict_checks

    @pytest.mark.parametrize("tolerance", [0.0, -1e-7, INF, math.nan])
    def test_invalid_tolerance(self, tolerance):
        with pytest.raises(SolverConfigurationError):
            RatioTestOptions(dual_feasibility_tolerance=tolerance)


class TestRatioTestResult:
    """Tests for RatioTestResult."""

    def test_failed_only_on_stagnation(self):
        assert RatioTestResult(status="stagnated").failed
        assert not RatioTestResult(status="no_candidate").failed
        assert not RatioTestResult(status="ok", entering=1).failed

    def test_flip_columns(self):
        result = RatioTestResult(status="ok", entering=4, flips=[(1, 0.5), (3, -2.0)])
        assert result.flip_columns == [1, 3]

    def test_candidate_is_immutable(self):
        candidate = PricingCandidate(column=2, alpha=1.5)
        with pytest.raises(AttributeError):
            candidate.alpha = 2.0


class TestCutSetAndDomain:
    """Tests for CutSet and DomainBounds."""

    def test_empty_cutset(self):
        cutset = CutSet()
        assert cutset.empty()
        assert cutset.num_cuts() == 0
        assert cutset.to_csr(3).shape == (0, 3)

    def test_domain_shape_mismatch(self):
        with pytest.raises(InvalidInputError):
            DomainBounds(col_lower=[0.0, 0.0], col_upper=[1.0])

    def test_domain_converts_to_arrays(self):
        domain = DomainBounds(col_lower=[0, 1], col_upper=[2, 3])
        assert domain.col_lower.dtype == float
        assert domain.col_upper.tolist() == [2.0, 3.0]
