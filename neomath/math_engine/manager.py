"""Engine manager and factory.

Enumerates the GPUs available to the process and builds an engine for a
requested backend kind. GPU selection is a first-match linear scan over the
enumeration order, so the same machine always gets the same device.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from neomath.exceptions import PreconditionError
from neomath.logger import session_logger as logger
from neomath.math_engine.backends.cpu import CpuMathEngine
from neomath.math_engine.base import MathEngine, MathEngineInfo, MathEngineType

DeviceLister = Callable[[], List[MathEngineInfo]]
GpuEngineFactory = Callable[[MathEngineInfo, int], MathEngine]


class GpuMathEngineManager:
    """Enumerates GPU devices and creates engines on them.

    By default devices come from TensorFlow; tests inject their own lister
    and factory.
    """

    def __init__(
        self,
        device_lister: Optional[DeviceLister] = None,
        engine_factory: Optional[GpuEngineFactory] = None,
    ):
        if device_lister is None or engine_factory is None:
            from neomath.math_engine.backends import tensorflow_gpu

            device_lister = device_lister or tensorflow_gpu.list_tensorflow_gpus
            engine_factory = engine_factory or tensorflow_gpu.TensorflowMathEngine
        self._infos: List[MathEngineInfo] = list(device_lister())
        self._engine_factory = engine_factory
        logger.debug(
            "GpuMathEngineManager initialized",
            devices=[f"{info.type.display_name}:{info.name}" for info in self._infos],
        )

    def get_math_engine_count(self) -> int:
        return len(self._infos)

    def get_math_engine_info(self, index: int) -> MathEngineInfo:
        if not 0 <= index < len(self._infos):
            raise PreconditionError(
                "GPU index out of range",
                details={"index": index, "count": len(self._infos)},
            )
        return self._infos[index]

    def create_math_engine(self, index: int, memory_limit: int = 0) -> MathEngine:
        return self._engine_factory(self.get_math_engine_info(index), memory_limit)


def create_cpu_math_engine(memory_limit: int = 0) -> MathEngine:
    return CpuMathEngine(memory_limit=memory_limit)


def _create_gpu_math_engine(
    engine_type: MathEngineType,
    memory_limit: int,
    manager: Optional[GpuMathEngineManager],
) -> Optional[MathEngine]:
    gpu_manager = manager if manager is not None else GpuMathEngineManager()

    result: Optional[MathEngine] = None
    info: Optional[MathEngineInfo] = None
    for index in range(gpu_manager.get_math_engine_count()):
        info = gpu_manager.get_math_engine_info(index)
        if info.type == engine_type:
            result = gpu_manager.create_math_engine(index, memory_limit)
            break

    if result is not None and info is not None:
        logger.info(f"Create GPU {engine_type.display_name} MathEngine: {info.name}")
    else:
        logger.error(
            f"Can't create GPU {engine_type.display_name} MathEngine!",
            devices=gpu_manager.get_math_engine_count(),
        )
    return result


def _create_cpu(
    engine_type: MathEngineType,
    memory_limit: int,
    manager: Optional[GpuMathEngineManager],
) -> Optional[MathEngine]:
    result = create_cpu_math_engine(memory_limit)
    logger.info("Create CPU MathEngine, threadCount = 1")
    return result


_ENGINE_BUILDERS: Dict[
    MathEngineType,
    Callable[[MathEngineType, int, Optional[GpuMathEngineManager]], Optional[MathEngine]],
] = {
    MathEngineType.CPU: _create_cpu,
    MathEngineType.CUDA: _create_gpu_math_engine,
    MathEngineType.VULKAN: _create_gpu_math_engine,
    MathEngineType.METAL: _create_gpu_math_engine,
}


def create_math_engine(
    engine_type: MathEngineType,
    memory_limit: int = 0,
    manager: Optional[GpuMathEngineManager] = None,
) -> Optional[MathEngine]:
    """Create an engine of the requested kind.

    UNDEFINED falls back to CPU with a warning. A GPU kind with no matching
    device logs an error and returns None; callers must handle that.

    Args:
        engine_type: Requested backend kind
        memory_limit: Byte budget for the engine heap, 0 for unlimited
        manager: GPU manager to scan (a TensorFlow-backed one by default)

    Returns:
        The engine, or None when no device matches a GPU kind
    """
    if engine_type is MathEngineType.UNDEFINED:
        logger.warning("Unknown type of MathEngine!")
        engine_type = MathEngineType.CPU
    return _ENGINE_BUILDERS[engine_type](engine_type, memory_limit, manager)
