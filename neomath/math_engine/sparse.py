"""Compressed-row sparse matrix resident on a math engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np

from neomath.exceptions import PreconditionError
from neomath.math_engine.base import MathEngine
from neomath.math_engine.memory import FLOAT32, INT32, MemoryHandle

IntArrayLike = Union[Sequence[int], np.ndarray]
FloatArrayLike = Union[Sequence[float], np.ndarray]


@dataclass(frozen=True)
class SparseMatrixDesc:
    """Handles and shape of a CSR matrix, as passed to kernels."""

    height: int
    width: int
    element_count: int
    rows: MemoryHandle
    columns: MemoryHandle
    values: MemoryHandle


def validate_csr(rows: np.ndarray, columns: np.ndarray, values: np.ndarray, width: int) -> None:
    """Raise PreconditionError unless the arrays form a valid CSR matrix of ``width`` columns."""
    if rows.ndim != 1 or rows.size < 1:
        raise PreconditionError("Row offsets must be a 1-D array of length height + 1")
    if columns.shape != values.shape or columns.ndim != 1:
        raise PreconditionError(
            "Column indices and values must be 1-D arrays of the same length",
            details={"columns": columns.size, "values": values.size},
        )
    nnz = columns.size
    if rows[0] != 0 or rows[-1] != nnz:
        raise PreconditionError(
            "Row offsets must start at 0 and end at the element count",
            details={"first": int(rows[0]), "last": int(rows[-1]), "element_count": nnz},
        )
    if np.any(np.diff(rows) < 0):
        raise PreconditionError("Row offsets must be non-decreasing")
    if nnz and (columns.min() < 0 or columns.max() >= width):
        raise PreconditionError(
            "Column index out of bounds",
            details={"min": int(columns.min()), "max": int(columns.max()), "width": width},
        )


class SparseMatrix:
    """CSR matrix uploaded to ``engine`` on construction.

    Column indices inside a row need not be sorted. Duplicates are kept and
    the multiply kernel sums them. ``width`` defaults to the largest column
    index plus one.

    The matrix owns its three handles; release them with ``free()`` or by
    using the matrix as a context manager.
    """

    def __init__(
        self,
        engine: MathEngine,
        rows: IntArrayLike,
        columns: IntArrayLike,
        values: FloatArrayLike,
        width: Optional[int] = None,
    ):
        rows_arr = np.asarray(rows, dtype=INT32).reshape(-1)
        columns_arr = np.asarray(columns, dtype=INT32).reshape(-1)
        values_arr = np.asarray(values, dtype=FLOAT32).reshape(-1)

        if width is None:
            width = int(columns_arr.max()) + 1 if columns_arr.size else 0
        validate_csr(rows_arr, columns_arr, values_arr, width)

        self._engine = engine
        self._height = rows_arr.size - 1
        self._width = width
        self._element_count = columns_arr.size

        handles = []
        try:
            for host in (rows_arr, columns_arr, values_arr):
                handle = engine.heap_alloc_typed(host.size, host.dtype)
                handles.append(handle)
                engine.upload(handle, host, host.size)
        except Exception:
            for handle in handles:
                engine.heap_free(handle)
            raise
        self._rows, self._columns, self._values = handles
        self._freed = False

    @classmethod
    def from_dense(cls, engine: MathEngine, dense: np.ndarray) -> "SparseMatrix":
        """Build from a 2-D array, keeping its nonzero cells."""
        matrix = np.asarray(dense, dtype=FLOAT32)
        if matrix.ndim != 2:
            raise PreconditionError("Dense source must be 2-D", details={"ndim": matrix.ndim})
        nonzero = matrix != 0
        rows = np.concatenate([[0], np.cumsum(nonzero.sum(axis=1))])
        columns = np.nonzero(nonzero)[1]
        return cls(engine, rows, columns, matrix[nonzero], width=matrix.shape[1])

    @property
    def height(self) -> int:
        return self._height

    @property
    def width(self) -> int:
        return self._width

    @property
    def element_count(self) -> int:
        return self._element_count

    def desc(self) -> SparseMatrixDesc:
        if self._freed:
            raise PreconditionError("Sparse matrix has been freed")
        return SparseMatrixDesc(
            height=self._height,
            width=self._width,
            element_count=self._element_count,
            rows=self._rows,
            columns=self._columns,
            values=self._values,
        )

    def free(self) -> None:
        if self._freed:
            return
        self._freed = True
        for handle in (self._rows, self._columns, self._values):
            self._engine.heap_free(handle)

    def __enter__(self) -> "SparseMatrix":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.free()
