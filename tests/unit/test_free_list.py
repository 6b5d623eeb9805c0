"""Unit tests for free nonbasic column tracking."""

import math

import numpy as np
import pytest

from mip_core import FreeVariableTracker, InvariantViolationError, SimplexWorkState, SparseRowView

INF = math.inf


def make_state():
    """Columns 1 and 3 are free and nonbasic, column 2 is free but basic."""
    matrix = np.array([[1.0, 0.0, 2.0, 0.0], [0.0, -1.0, 0.0, 3.0]])
    lower = [0.0, -INF, -INF, -INF, 0.0, 0.0]
    upper = [1.0, INF, INF, INF, INF, INF]
    duals = [0.0] * 6
    flag = [1, 1, 0, 1, 1, 0]
    return SimplexWorkState.build(matrix, lower, upper, duals, nonbasic_flag=flag)


class TestFreeVariableTracker:
    """Tests for FreeVariableTracker."""

    def test_create_freelist(self):
        tracker = FreeVariableTracker(make_state())
        tracker.create_freelist()
        assert tracker.free_list == {1, 3}
        assert 1 in tracker
        assert len(tracker) == 2

    def test_free_columns_start_neutral(self):
        state = make_state()
        assert state.nonbasic_move[1] == 0
        assert state.nonbasic_move[3] == 0
        assert state.work_value[1] == 0.0

    def test_create_freemove_positive_delta(self):
        state = make_state()
        tracker = FreeVariableTracker(state)
        tracker.create_freelist()
        tracker.create_freemove(np.array([1.0, 1.0]), work_delta=1.0)
        assert state.nonbasic_move[1] == -1
        assert state.nonbasic_move[3] == 1

    def test_create_freemove_negative_delta(self):
        state = make_state()
        tracker = FreeVariableTracker(state)
        tracker.create_freelist()
        tracker.create_freemove(SparseRowView.from_pairs({0: 1.0, 1: 1.0}), work_delta=-1.0)
        assert state.nonbasic_move[1] == 1
        assert state.nonbasic_move[3] == -1

    def test_small_projection_left_unresolved(self):
        state = make_state()
        tracker = FreeVariableTracker(state)
        tracker.create_freelist()
        tracker.create_freemove(np.array([1.0, 1e-12]), work_delta=1.0)
        assert state.nonbasic_move[1] == 0
        assert state.nonbasic_move[3] == 0

    def test_delete_freemove_resets_moves(self):
        state = make_state()
        tracker = FreeVariableTracker(state)
        tracker.create_freelist()
        tracker.create_freemove(np.array([1.0, 1.0]), work_delta=1.0)
        tracker.delete_freemove()
        assert state.nonbasic_move[1] == 0
        assert state.nonbasic_move[3] == 0

    def test_delete_freelist_drops_column(self):
        tracker = FreeVariableTracker(make_state())
        tracker.create_freelist()
        tracker.delete_freelist(1)
        tracker.delete_freelist(99)
        assert tracker.free_list == {3}

    def test_clear(self):
        tracker = FreeVariableTracker(make_state())
        tracker.create_freelist()
        tracker.clear()
        assert len(tracker) == 0

    def test_basic_column_in_list_is_invariant_violation(self):
        state = make_state()
        tracker = FreeVariableTracker(state)
        tracker.create_freelist()
        state.nonbasic_flag[3] = 0
        with pytest.raises(InvariantViolationError) as exc_info:
            tracker.create_freemove(np.array([1.0, 1.0]), work_delta=1.0)
        assert exc_info.value.column == 3

    def test_free_logical_column_is_invariant_violation(self):
        state = make_state()
        state.work_lower[4] = -INF
        tracker = FreeVariableTracker(state)
        tracker.create_freelist()
        assert 4 in tracker
        with pytest.raises(InvariantViolationError):
            tracker.delete_freemove()

    def test_empty_list_is_noop(self):
        state = make_state()
        tracker = FreeVariableTracker(state)
        tracker.create_freemove(np.array([1.0, 1.0]), work_delta=1.0)
        assert state.nonbasic_move.tolist() == make_state().nonbasic_move.tolist()
