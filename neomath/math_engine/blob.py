"""Engine-resident blobs and initializer loading.

This is the surface a graph importer uses to turn constant tensors (ONNX
initializers) into engine memory: allocate a blob of the right shape and
element type, then bulk-load the raw data into it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from neomath.exceptions import PreconditionError
from neomath.logger import session_logger as logger
from neomath.math_engine.base import MathEngine
from neomath.math_engine.memory import FLOAT32, INT32, MemoryHandle


class BlobType(Enum):
    FLOAT = "float32"
    INT = "int32"

    @property
    def dtype(self) -> np.dtype:
        return FLOAT32 if self is BlobType.FLOAT else INT32


# onnx.TensorProto.DataType values
ONNX_FLOAT = 1
ONNX_UINT8 = 2
ONNX_INT8 = 3
ONNX_UINT16 = 4
ONNX_INT16 = 5
ONNX_INT32 = 6
ONNX_INT64 = 7
ONNX_STRING = 8
ONNX_BOOL = 9
ONNX_FLOAT16 = 10
ONNX_DOUBLE = 11
ONNX_UINT32 = 12
ONNX_UINT64 = 13

_FLOAT_TYPES = frozenset({ONNX_FLOAT, ONNX_FLOAT16, ONNX_DOUBLE})
_INT_TYPES = frozenset({
    ONNX_UINT8, ONNX_INT8, ONNX_UINT16, ONNX_INT16, ONNX_INT32,
    ONNX_INT64, ONNX_BOOL, ONNX_UINT32, ONNX_UINT64,
})

# Little-endian layout of raw_data per element type
_RAW_DTYPES: Dict[int, str] = {
    ONNX_FLOAT: "<f4",
    ONNX_UINT8: "u1",
    ONNX_INT8: "i1",
    ONNX_UINT16: "<u2",
    ONNX_INT16: "<i2",
    ONNX_INT32: "<i4",
    ONNX_INT64: "<i8",
    ONNX_BOOL: "?",
    ONNX_FLOAT16: "<f2",
    ONNX_DOUBLE: "<f8",
    ONNX_UINT32: "<u4",
    ONNX_UINT64: "<u8",
}

# Typed repeated field holding the data when raw_data is empty
_TYPED_FIELDS: Dict[int, str] = {
    ONNX_FLOAT: "float_data",
    ONNX_DOUBLE: "double_data",
    ONNX_INT64: "int64_data",
    ONNX_UINT32: "uint64_data",
    ONNX_UINT64: "uint64_data",
}


def blob_type_for(onnx_data_type: int) -> BlobType:
    """Blob element type used to store an ONNX tensor of ``onnx_data_type``."""
    if onnx_data_type in _FLOAT_TYPES:
        return BlobType.FLOAT
    if onnx_data_type in _INT_TYPES:
        return BlobType.INT
    raise PreconditionError(
        "Tensor data type is not supported",
        details={"data_type": onnx_data_type},
    )


class Blob:
    """Dense block of ``shape`` elements on an engine."""

    def __init__(self, engine: MathEngine, shape: Sequence[int], blob_type: BlobType):
        self._engine = engine
        self._shape: Tuple[int, ...] = tuple(int(dim) for dim in shape)
        self._type = blob_type
        self._handle: Optional[MemoryHandle] = engine.heap_alloc_typed(self.size, blob_type.dtype)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def size(self) -> int:
        return int(np.prod(self._shape, dtype=np.int64))

    @property
    def blob_type(self) -> BlobType:
        return self._type

    @property
    def handle(self) -> MemoryHandle:
        if self._handle is None:
            raise PreconditionError("Blob has been freed")
        return self._handle

    def load_data(self, data: Any) -> None:
        """Bulk-copy host data (any shape, ``size`` elements) into the blob."""
        flat = np.asarray(data).reshape(-1)
        if flat.size != self.size:
            raise PreconditionError(
                "Data size does not match the blob",
                details={"data_size": flat.size, "blob_size": self.size},
            )
        self._engine.upload(self.handle, flat.astype(self._type.dtype, copy=False), self.size)

    def read(self) -> np.ndarray:
        return self._engine.read(self.handle).reshape(self._shape)

    def free(self) -> None:
        if self._handle is not None:
            self._engine.heap_free(self._handle)
            self._handle = None


def create_blob(engine: MathEngine, shape: Sequence[int], blob_type: BlobType) -> Optional[Blob]:
    """Allocate a blob, or return None when the shape holds no elements."""
    if any(int(dim) < 0 for dim in shape):
        raise PreconditionError("Blob dimensions must not be negative", details={"shape": list(shape)})
    if int(np.prod([int(dim) for dim in shape], dtype=np.int64)) == 0:
        return None
    return Blob(engine, shape, blob_type)


@dataclass
class DataTensor:
    """Constant tensor: a blob plus the dimension order it is laid out in."""

    name: str
    layout: Tuple[int, ...]
    blob: Blob

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.blob.shape


def initializer_values(initializer: Any) -> np.ndarray:
    """Decode the element data of an ONNX-style TensorProto into a flat array."""
    data_type = int(initializer.data_type)
    raw = getattr(initializer, "raw_data", b"")
    if raw:
        if data_type not in _RAW_DTYPES:
            raise PreconditionError("Tensor data type is not supported", details={"data_type": data_type})
        return np.frombuffer(raw, dtype=np.dtype(_RAW_DTYPES[data_type]))

    values = list(getattr(initializer, _TYPED_FIELDS.get(data_type, "int32_data"), []))
    if data_type == ONNX_FLOAT16:
        # FLOAT16 payloads are stored as their bit patterns in int32_data
        return np.asarray(values, dtype=np.uint16).view(np.float16)
    return np.asarray(values)


def tensor_from_initializer(engine: MathEngine, initializer: Any) -> Optional[DataTensor]:
    """Load an ONNX-style initializer into engine memory.

    ``initializer`` is anything shaped like ``onnx.TensorProto``: ``name``,
    ``dims``, ``data_type`` and either ``raw_data`` or the typed data fields.
    Returns None for a zero-sized tensor.
    """
    dims = [int(dim) for dim in initializer.dims]
    blob_type = blob_type_for(int(initializer.data_type))
    blob = create_blob(engine, dims, blob_type)
    if blob is None:
        return None

    try:
        blob.load_data(initializer_values(initializer))
    except Exception:
        blob.free()
        raise

    name = str(getattr(initializer, "name", ""))
    logger.debug("Initializer loaded", name=name, shape=dims, blob_type=blob_type.value)
    return DataTensor(name=name, layout=tuple(range(len(dims))), blob=blob)
