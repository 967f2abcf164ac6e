"""Math Engine - device abstraction over interchangeable compute backends.

Engines own their memory; callers hold typed handles and move data with
upload/download. The backend (NumPy on the CPU, TensorFlow on a GPU) is
hidden behind the MathEngine interface.
"""

from neomath.math_engine.base import MathEngine, MathEngineInfo, MathEngineType
from neomath.math_engine.blob import Blob, BlobType, DataTensor, create_blob, tensor_from_initializer
from neomath.math_engine.buffer import BufferWrapper, float_buffer, int_buffer
from neomath.math_engine.manager import (
    GpuMathEngineManager,
    create_cpu_math_engine,
    create_math_engine,
)
from neomath.math_engine.memory import FLOAT32, INT32, MemoryHandle
from neomath.math_engine.sparse import SparseMatrix, SparseMatrixDesc

__all__ = [
    "MathEngine",
    "MathEngineInfo",
    "MathEngineType",
    "MemoryHandle",
    "FLOAT32",
    "INT32",
    "GpuMathEngineManager",
    "create_cpu_math_engine",
    "create_math_engine",
    "SparseMatrix",
    "SparseMatrixDesc",
    "BufferWrapper",
    "float_buffer",
    "int_buffer",
    "Blob",
    "BlobType",
    "DataTensor",
    "create_blob",
    "tensor_from_initializer",
]
