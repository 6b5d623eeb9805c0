"""Unit tests for the dynamic row matrix."""

import pytest

from mip_core import DynamicRowMatrix, InvalidInputError, InvariantViolationError


class TestDynamicRowMatrix:
    """Tests for DynamicRowMatrix."""

    def test_add_and_get_row(self):
        matrix = DynamicRowMatrix(num_col=5)
        row = matrix.add_row([1, 4], [2.0, -1.0])
        indices, values = matrix.get_row(row)
        assert row == 0
        assert indices.tolist() == [1, 4]
        assert values.tolist() == [2.0, -1.0]
        assert matrix.get_row_start(row) == 0
        assert matrix.get_row_end(row) == 2

    def test_rows_are_appended(self):
        matrix = DynamicRowMatrix(num_col=5)
        matrix.add_row([0], [1.0])
        second = matrix.add_row([1, 2, 3], [1.0, 1.0, 1.0])
        assert second == 1
        assert matrix.get_row_start(second) == 1
        assert matrix.get_row_end(second) == 4
        assert matrix.get_num_rows() == 2

    def test_lowest_deleted_id_is_reused(self):
        matrix = DynamicRowMatrix(num_col=5)
        for col in range(4):
            matrix.add_row([col], [1.0])
        matrix.remove_row(2)
        matrix.remove_row(0)
        assert matrix.get_num_del_rows() == 2
        assert matrix.add_row([4], [1.0]) == 0
        assert matrix.add_row([4], [1.0]) == 2
        assert matrix.add_row([4], [1.0]) == 4
        assert matrix.get_num_del_rows() == 0

    def test_free_space_is_reused_best_fit(self):
        matrix = DynamicRowMatrix(num_col=6)
        long_row = matrix.add_row([0, 1, 2, 3], [1.0] * 4)
        short_row = matrix.add_row([0, 1], [1.0] * 2)
        matrix.add_row([5], [1.0])
        matrix.remove_row(long_row)
        matrix.remove_row(short_row)

        fitted = matrix.add_row([4, 5], [3.0, 4.0])
        assert matrix.get_row_start(fitted) == 4
        assert matrix.get_row_end(fitted) == 6

        split = matrix.add_row([2], [7.0])
        assert matrix.get_row_start(split) == 0
        assert matrix.get_row(split)[1].tolist() == [7.0]

    def test_oversized_row_goes_to_the_end(self):
        matrix = DynamicRowMatrix(num_col=6)
        row = matrix.add_row([0], [1.0])
        matrix.add_row([1], [1.0])
        matrix.remove_row(row)
        reused = matrix.add_row([0, 1, 2], [1.0, 1.0, 1.0])
        assert reused == row
        assert matrix.get_row_start(reused) == 2

    def test_get_row_returns_copies(self):
        matrix = DynamicRowMatrix(num_col=3)
        row = matrix.add_row([0, 1], [1.0, 2.0])
        indices, values = matrix.get_row(row)
        values[0] = 99.0
        assert matrix.get_row(row)[1].tolist() == [1.0, 2.0]

    def test_rows_iterates_live_ids(self):
        matrix = DynamicRowMatrix(num_col=3)
        for col in range(3):
            matrix.add_row([col], [1.0])
        matrix.remove_row(1)
        assert list(matrix.rows()) == [0, 2]
        assert matrix.is_deleted(1)

    def test_empty_row(self):
        matrix = DynamicRowMatrix(num_col=3)
        row = matrix.add_row([], [])
        assert matrix.get_row_start(row) == matrix.get_row_end(row)
        matrix.remove_row(row)

    @pytest.mark.parametrize(
        "indices, values",
        [([0, 1], [1.0]), ([3], [1.0]), ([-1], [1.0])],
    )
    def test_invalid_rows(self, indices, values):
        matrix = DynamicRowMatrix(num_col=3)
        with pytest.raises(InvalidInputError):
            matrix.add_row(indices, values)

    def test_access_to_removed_row(self):
        matrix = DynamicRowMatrix(num_col=3)
        row = matrix.add_row([0], [1.0])
        matrix.remove_row(row)
        with pytest.raises(InvariantViolationError):
            matrix.get_row(row)
        with pytest.raises(InvariantViolationError):
            matrix.remove_row(row)
        with pytest.raises(InvariantViolationError):
            matrix.get_row_start(5)
