"""Scoped host/device buffers.

``BufferWrapper`` uploads a host array on entry and frees the device copy on
exit. Write intent is declared when the buffer is acquired: with
``write=True`` the device contents are copied back into the host array on
every exit path, including exceptions raised inside the block.

    with float_buffer(engine, second) as second_handle, \\
            float_buffer(engine, result, write=True) as result_handle:
        engine.multiply_sparse_matrix_by_matrix(h, w, sw, desc, second_handle, result_handle)
    # result now holds the device output
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from neomath.exceptions import PreconditionError
from neomath.math_engine.base import MathEngine
from neomath.math_engine.memory import FLOAT32, INT32, MemoryHandle, as_dtype


class BufferWrapper:
    """Device copy of a host array for the duration of a ``with`` block."""

    def __init__(self, engine: MathEngine, data: np.ndarray, write: bool = False, dtype: Any = None):
        if not isinstance(data, np.ndarray):
            raise PreconditionError("BufferWrapper needs a NumPy array", details={"got": type(data).__name__})
        self._dtype = as_dtype(dtype if dtype is not None else data.dtype)
        if write and data.dtype != self._dtype:
            raise PreconditionError(
                "A writable buffer must already have the device element type",
                details={"host_dtype": str(data.dtype), "dtype": str(self._dtype)},
            )
        self._engine = engine
        self._data = data
        self._write = write
        self._handle: Optional[MemoryHandle] = None

    @property
    def write(self) -> bool:
        return self._write

    @property
    def handle(self) -> MemoryHandle:
        if self._handle is None:
            raise PreconditionError("Buffer is not acquired")
        return self._handle

    def __enter__(self) -> MemoryHandle:
        if self._handle is not None:
            raise PreconditionError("Buffer is already acquired")
        size = self._data.size
        handle = self._engine.heap_alloc_typed(size, self._dtype)
        try:
            self._engine.upload(handle, self._data, size)
        except Exception:
            self._engine.heap_free(handle)
            raise
        self._handle = handle
        return handle

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        handle = self.handle
        self._handle = None
        try:
            if self._write:
                host = self._engine.read(handle)
                self._data[...] = host.reshape(self._data.shape)
        finally:
            self._engine.heap_free(handle)


def float_buffer(engine: MathEngine, data: np.ndarray, write: bool = False) -> BufferWrapper:
    return BufferWrapper(engine, data, write=write, dtype=FLOAT32)


def int_buffer(engine: MathEngine, data: np.ndarray, write: bool = False) -> BufferWrapper:
    return BufferWrapper(engine, data, write=write, dtype=INT32)
