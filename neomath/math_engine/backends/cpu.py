"""CPU math engine backed by NumPy arrays."""

from __future__ import annotations

from typing import Any

import numpy as np

from neomath.logger import session_logger as logger
from neomath.math_engine.base import MathEngine, MathEngineType


class CpuMathEngine(MathEngine):
    """Single-threaded host engine.

    Storage is a 1-D NumPy array per allocation and is updated in place.
    """

    def __init__(self, memory_limit: int = 0):
        super().__init__(MathEngineType.CPU, memory_limit=memory_limit, name="Cpu")
        logger.debug("CpuMathEngine initialized", memory_limit=memory_limit)

    def _create_storage(self, size: int, dtype: np.dtype) -> np.ndarray:
        return np.zeros(size, dtype=dtype)

    def _write_storage(self, storage: np.ndarray, data: np.ndarray) -> np.ndarray:
        storage[: data.size] = data
        return storage

    def _read_storage(self, storage: np.ndarray) -> np.ndarray:
        return storage.copy()

    def _fill_storage(self, storage: np.ndarray, value: float, count: int) -> np.ndarray:
        storage[:count] = value
        return storage

    def _multiply_sparse_matrix_by_matrix(
        self,
        first_height: int,
        first_width: int,
        second_width: int,
        element_count: int,
        rows: Any,
        columns: Any,
        values: Any,
        second: Any,
        result: Any,
    ) -> np.ndarray:
        dense = second[: first_width * second_width].reshape(first_width, second_width)
        out = result[: first_height * second_width].reshape(first_height, second_width)

        # Row, then nonzero, then column, matching the host reference order
        for row in range(first_height):
            res = out[row]
            for ind in range(int(rows[row]), int(rows[row + 1])):
                res += values[ind] * dense[columns[ind]]
        return result
