"""Append-only row storage with slot and space reuse, used by the cut pool."""

from __future__ import annotations

import bisect
import heapq
from collections.abc import Iterator, Sequence

import numpy as np
from numpy.typing import NDArray

from .exceptions import InvalidInputError, InvariantViolationError


class DynamicRowMatrix:
    """Rows of a sparse matrix stored in one shared coefficient arena.

    Every row is addressed by a stable integer id and occupies the arena
    segment ``[start, end)``. Removing a row frees both its id, which the next
    ``add_row`` reuses (lowest id first), and its arena segment, which later
    rows of at most the same length reuse (best fit).

    Accessors return copies; arena positions may be reused by the next
    mutating call.

    Examples:
        >>> matrix = DynamicRowMatrix(num_col=4)
        >>> row = matrix.add_row([0, 2], [1.0, -1.0])
        >>> matrix.get_row(row)[0].tolist()
        [0, 2]
        >>> matrix.remove_row(row)
        >>> matrix.get_num_rows() - matrix.get_num_del_rows()
        0
    """

    def __init__(self, num_col: int):
        self.num_col = num_col
        self._ar_index: list[int] = []
        self._ar_value: list[float] = []
        self._ar_range: list[tuple[int, int]] = []
        self._free_spaces: list[tuple[int, int]] = []
        self._deleted_rows: list[int] = []
        self._deleted: set[int] = set()

    def add_row(self, indices: Sequence[int], values: Sequence[float]) -> int:
        """Store a row and return its id."""
        index_list = [int(i) for i in indices]
        value_list = [float(v) for v in values]
        length = len(index_list)
        if length != len(value_list):
            raise InvalidInputError(f"Row has {length} indices but {len(value_list)} values.")
        if length and (min(index_list) < 0 or max(index_list) >= self.num_col):
            raise InvalidInputError(
                f"Row column indices must lie in [0, {self.num_col}), got "
                f"[{min(index_list)}, {max(index_list)}]."
            )

        if length == 0:
            start = len(self._ar_index)
        else:
            pos = bisect.bisect_left(self._free_spaces, (length, -1))
            if pos < len(self._free_spaces):
                space_length, start = self._free_spaces.pop(pos)
                if space_length > length:
                    bisect.insort(self._free_spaces, (space_length - length, start + length))
                self._ar_index[start : start + length] = index_list
                self._ar_value[start : start + length] = value_list
            else:
                start = len(self._ar_index)
                self._ar_index.extend(index_list)
                self._ar_value.extend(value_list)
        end = start + length

        if self._deleted_rows:
            row = heapq.heappop(self._deleted_rows)
            self._deleted.discard(row)
            self._ar_range[row] = (start, end)
        else:
            row = len(self._ar_range)
            self._ar_range.append((start, end))
        return row

    def remove_row(self, row: int) -> None:
        """Delete a row, releasing its id and arena segment for reuse."""
        self._check_row(row)
        start, end = self._ar_range[row]
        if end > start:
            bisect.insort(self._free_spaces, (end - start, start))
        self._ar_range[row] = (start, start)
        self._deleted.add(row)
        heapq.heappush(self._deleted_rows, row)

    def is_deleted(self, row: int) -> bool:
        return row in self._deleted

    def get_num_rows(self) -> int:
        return len(self._ar_range)

    def get_num_del_rows(self) -> int:
        return len(self._deleted)

    def get_row_start(self, row: int) -> int:
        self._check_row(row)
        return self._ar_range[row][0]

    def get_row_end(self, row: int) -> int:
        self._check_row(row)
        return self._ar_range[row][1]

    def get_row(self, row: int) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
        """Return copies of the column indices and values of ``row``."""
        self._check_row(row)
        start, end = self._ar_range[row]
        return (
            np.array(self._ar_index[start:end], dtype=np.int64),
            np.array(self._ar_value[start:end], dtype=float),
        )

    def rows(self) -> Iterator[int]:
        """Iterate over the ids of live rows in increasing order."""
        for row in range(len(self._ar_range)):
            if row not in self._deleted:
                yield row

    def _check_row(self, row: int) -> None:
        if row < 0 or row >= len(self._ar_range):
            raise InvariantViolationError(f"Row {row} was never added.", column=row)
        if row in self._deleted:
            raise InvariantViolationError(f"Row {row} has been removed.", column=row)
