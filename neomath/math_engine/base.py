"""Base class for math engine backends.

A math engine is one compute backend instance. It owns a heap arena of typed
memory handles and exposes the numeric kernels over those handles. Backends
(CPU, GPU) inherit from MathEngine and implement only the storage primitives
and the kernels; handle checks, the memory budget and argument validation
live here so every backend enforces the same contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

import numpy as np

from neomath.exceptions import PreconditionError
from neomath.logger import session_logger as logger
from neomath.logger.decorators import log_execution_time
from neomath.math_engine.memory import (
    FLOAT32,
    INT32,
    HeapArena,
    MemoryHandle,
    as_dtype,
    next_engine_id,
)

if TYPE_CHECKING:
    from neomath.math_engine.sparse import SparseMatrixDesc


class MathEngineType(Enum):
    """Backend kind of a math engine."""

    UNDEFINED = "undefined"
    CPU = "cpu"
    CUDA = "cuda"
    VULKAN = "vulkan"
    METAL = "metal"

    @property
    def is_gpu(self) -> bool:
        return self in (MathEngineType.CUDA, MathEngineType.VULKAN, MathEngineType.METAL)

    @property
    def display_name(self) -> str:
        """Name used in log lines ("Cpu", "Cuda", ...); empty for UNDEFINED."""
        if self is MathEngineType.UNDEFINED:
            return ""
        return self.value.capitalize()

    @classmethod
    def from_name(cls, value: str) -> "MathEngineType":
        """Exact, case-sensitive lookup ("cpu", "cuda", ...). Anything else is UNDEFINED."""
        for member in cls:
            if member is not cls.UNDEFINED and member.value == value:
                return member
        return cls.UNDEFINED


@dataclass(frozen=True)
class MathEngineInfo:
    """Description of one enumerated device."""

    index: int
    name: str
    type: MathEngineType
    available_memory: int = 0


HostArray = Union[np.ndarray, list, tuple]


class MathEngine(ABC):
    """Abstract compute backend.

    Storage returned by ``_create_storage`` is opaque to this class. Writers
    return the storage that should stay behind the handle, so backends with
    immutable device buffers can return a new object.
    """

    def __init__(self, engine_type: MathEngineType, memory_limit: int = 0, name: str = ""):
        self._type = engine_type
        self._name = name or engine_type.display_name
        self._id = next_engine_id()
        self._arena = HeapArena(self._id, memory_limit)
        self._destroyed = False

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _create_storage(self, size: int, dtype: np.dtype) -> Any:
        """Allocate zero-initialized device storage for ``size`` elements."""
        pass

    @abstractmethod
    def _write_storage(self, storage: Any, data: np.ndarray) -> Any:
        """Copy the 1-D host array ``data`` to the start of ``storage``."""
        pass

    @abstractmethod
    def _read_storage(self, storage: Any) -> np.ndarray:
        """Return a host copy of the whole storage as a 1-D array."""
        pass

    @abstractmethod
    def _fill_storage(self, storage: Any, value: float, count: int) -> Any:
        """Set the first ``count`` elements of ``storage`` to ``value``."""
        pass

    @abstractmethod
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
    ) -> Any:
        """Accumulate sparse(first) x second into ``result`` and return its storage."""
        pass

    # ------------------------------------------------------------------
    # Identity and lifetime
    # ------------------------------------------------------------------

    def get_type(self) -> MathEngineType:
        return self._type

    @property
    def name(self) -> str:
        return self._name

    @property
    def engine_id(self) -> int:
        return self._id

    @property
    def memory_limit(self) -> int:
        return self._arena.limit

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Release every outstanding allocation; all handles become invalid."""
        if self._destroyed:
            return
        leaked = self._arena.release_all()
        self._destroyed = True
        if leaked:
            logger.warning(
                "MathEngine destroyed with live allocations",
                engine=self._name,
                live_handles=leaked,
            )
        logger.debug("MathEngine destroyed", engine=self._name)

    def __enter__(self) -> "MathEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.destroy()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type={self._type.name}, name={self._name!r})"

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def get_peak_memory_usage(self) -> int:
        """Highest number of bytes held at once since creation or the last reset."""
        return self._arena.peak

    def get_memory_in_use(self) -> int:
        return self._arena.in_use

    def reset_peak_memory_usage(self) -> None:
        self._arena.reset_peak()

    def heap_alloc(self, byte_size: int, dtype: Any = FLOAT32) -> MemoryHandle:
        """Allocate ``byte_size`` bytes of ``dtype`` elements.

        Raises:
            PreconditionError: byte_size is negative or not a multiple of the element size
            ResourceExhaustedError: the allocation would exceed the memory limit
        """
        dtype = as_dtype(dtype)
        if not isinstance(byte_size, (int, np.integer)):
            raise PreconditionError(
                "Allocation size must be an integer byte count",
                details={"byte_size": byte_size, "type": type(byte_size).__name__},
            )
        byte_size = int(byte_size)
        if byte_size < 0 or byte_size % dtype.itemsize != 0:
            raise PreconditionError(
                "Allocation size must be a non-negative multiple of the element size",
                details={"byte_size": byte_size, "dtype": str(dtype)},
            )
        size = byte_size // dtype.itemsize
        # Fail before touching the device
        self._arena.ensure_capacity(byte_size)
        return self._arena.allocate(size, dtype, self._create_storage(size, dtype))

    def heap_alloc_typed(self, count: int, dtype: Any = FLOAT32) -> MemoryHandle:
        dtype = as_dtype(dtype)
        return self.heap_alloc(count * dtype.itemsize, dtype)

    def heap_free(self, handle: MemoryHandle) -> None:
        self._arena.free(handle)

    # ------------------------------------------------------------------
    # Host <-> device exchange
    # ------------------------------------------------------------------

    def data_exchange_typed(self, dst: Any, src: Any, count: int) -> None:
        """Copy ``count`` elements between host and device.

        The direction is fixed by the argument types: a handle destination is
        an upload (host -> device), a NumPy destination with a handle source is
        a download (device -> host).
        """
        if isinstance(dst, MemoryHandle) and not isinstance(src, MemoryHandle):
            self.upload(dst, src, count)
        elif isinstance(src, MemoryHandle) and isinstance(dst, np.ndarray):
            self.download(dst, src, count)
        else:
            raise PreconditionError(
                "data_exchange_typed needs exactly one handle and one host array",
                details={"dst": type(dst).__name__, "src": type(src).__name__},
            )

    def upload(self, handle: MemoryHandle, host: HostArray, count: int) -> None:
        """Host -> device copy of ``count`` elements into ``handle``."""
        self._check_exchange_count(handle, count)
        flat = np.asarray(host).reshape(-1)
        if flat.size < count:
            raise PreconditionError(
                "Host array is smaller than the element count",
                details={"host_size": flat.size, "count": count},
            )
        if flat.size and not np.can_cast(flat.dtype, handle.dtype, casting="same_kind"):
            raise PreconditionError(
                "Host data cannot be converted to the handle element type",
                details={"host_dtype": str(flat.dtype), "handle_dtype": str(handle.dtype)},
            )
        data = np.ascontiguousarray(flat[:count], dtype=handle.dtype)
        storage = self._arena.resolve(handle)
        self._arena.replace(handle, self._write_storage(storage, data))

    def download(self, host: np.ndarray, handle: MemoryHandle, count: int) -> None:
        """Device -> host copy of ``count`` elements from ``handle`` into ``host``."""
        self._check_exchange_count(handle, count)
        if not isinstance(host, np.ndarray) or not host.flags.c_contiguous or not host.flags.writeable:
            raise PreconditionError("Download target must be a writable C-contiguous ndarray")
        if host.dtype != handle.dtype:
            raise PreconditionError(
                "Download target element type does not match the handle",
                details={"host_dtype": str(host.dtype), "handle_dtype": str(handle.dtype)},
            )
        if host.size < count:
            raise PreconditionError(
                "Host array is smaller than the element count",
                details={"host_size": host.size, "count": count},
            )
        data = self._read_storage(self._arena.resolve(handle))
        host.reshape(-1)[:count] = data[:count]

    def read(self, handle: MemoryHandle) -> np.ndarray:
        """Download the whole handle into a new host array."""
        host = np.empty(handle.size, dtype=handle.dtype)
        self.download(host, handle, handle.size)
        return host

    def vector_fill(self, handle: MemoryHandle, value: float, count: int) -> None:
        """Set the first ``count`` elements of ``handle`` to ``value``.

        ``value`` is converted to the handle element type; an INT32 handle only
        accepts integral values within the int32 range.
        """
        if count < 0 or count > handle.size:
            raise PreconditionError(
                "Fill count is out of the handle range",
                details={"count": count, "size": handle.size},
            )
        fill_value = self._fill_value(handle, value)
        storage = self._arena.resolve(handle)
        self._arena.replace(handle, self._fill_storage(storage, fill_value, count))

    @staticmethod
    def _fill_value(handle: MemoryHandle, value: Any) -> Any:
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise PreconditionError(
                "Fill value must be a number",
                details={"value": repr(value)},
            ) from e
        if handle.dtype == INT32:
            limits = np.iinfo(INT32)
            if not number.is_integer() or not limits.min <= number <= limits.max:
                raise PreconditionError(
                    "Fill value is not representable as int32",
                    details={"value": value, "dtype": str(handle.dtype)},
                )
            return handle.dtype.type(int(number))
        return handle.dtype.type(number)

    @staticmethod
    def _check_exchange_count(handle: MemoryHandle, count: int) -> None:
        if not isinstance(handle, MemoryHandle):
            raise PreconditionError("Expected a memory handle", details={"got": type(handle).__name__})
        if count != handle.size:
            raise PreconditionError(
                "Element count must match the handle size",
                details={"count": count, "size": handle.size},
            )

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    @log_execution_time
    def multiply_sparse_matrix_by_matrix(
        self,
        first_height: int,
        first_width: int,
        second_width: int,
        first_desc: "SparseMatrixDesc",
        second: MemoryHandle,
        result: MemoryHandle,
    ) -> None:
        """result += sparse(first) x second.

        ``second`` is a row-major ``first_width x second_width`` matrix and
        ``result`` a row-major ``first_height x second_width`` matrix. The
        kernel accumulates into ``result``; callers zero it first. Duplicate
        column indices within a row are summed.
        """
        if first_height < 0 or first_width < 0 or second_width < 0:
            raise PreconditionError(
                "Matrix dimensions must not be negative",
                details={"first_height": first_height, "first_width": first_width, "second_width": second_width},
            )
        if first_desc.height != first_height or first_desc.width > first_width:
            raise PreconditionError(
                "Sparse matrix shape does not match the call",
                details={
                    "desc_height": first_desc.height,
                    "desc_width": first_desc.width,
                    "first_height": first_height,
                    "first_width": first_width,
                },
            )
        nnz = first_desc.element_count
        self._check_operand(first_desc.rows, INT32, first_height + 1, "rows")
        self._check_operand(first_desc.columns, INT32, nnz, "columns")
        self._check_operand(first_desc.values, FLOAT32, nnz, "values")
        self._check_operand(second, FLOAT32, first_width * second_width, "second")
        self._check_operand(result, FLOAT32, first_height * second_width, "result")

        rows = self._arena.resolve(first_desc.rows)
        columns = self._arena.resolve(first_desc.columns)
        values = self._arena.resolve(first_desc.values)
        second_storage = self._arena.resolve(second)
        result_storage = self._arena.resolve(result)

        if first_width == 0 or second_width == 0 or nnz == 0:
            return

        updated = self._multiply_sparse_matrix_by_matrix(
            first_height, first_width, second_width, nnz,
            rows, columns, values, second_storage, result_storage,
        )
        self._arena.replace(result, updated)

    @staticmethod
    def _check_operand(handle: MemoryHandle, dtype: np.dtype, min_size: int, label: str) -> None:
        if not isinstance(handle, MemoryHandle):
            raise PreconditionError(f"{label} must be a memory handle", details={"got": type(handle).__name__})
        if handle.dtype != dtype or handle.size < min_size:
            raise PreconditionError(
                f"{label} handle has the wrong type or is too small",
                details={
                    "dtype": str(handle.dtype),
                    "expected_dtype": str(dtype),
                    "size": handle.size,
                    "required": min_size,
                },
            )
