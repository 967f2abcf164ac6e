"""GPU math engine backed by TensorFlow devices.

One engine drives one physical GPU reported by TensorFlow (CUDA devices on
Linux/Windows, Metal devices through tensorflow-metal on macOS). Device
buffers are immutable tensors, so writes build a new tensor and hand it back
to the arena. Every call materializes its result before returning, which
keeps the engine contract blocking.
"""

from __future__ import annotations

import os
import sys
from typing import Any, List, Optional

import numpy as np

from neomath.config import get_settings

# Suppress TensorFlow logging before import
os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", get_settings().tf_log_level)

import tensorflow as tf  # noqa: E402 - must be after env var is set

# Disable TensorFlow warnings
tf.get_logger().setLevel("ERROR")

from neomath.logger import session_logger as logger  # noqa: E402 - must be after tf config
from neomath.math_engine.base import MathEngine, MathEngineInfo, MathEngineType  # noqa: E402


def gpu_kind_for_platform(platform: str = sys.platform) -> MathEngineType:
    """Backend kind TensorFlow GPUs have on this platform."""
    return MathEngineType.METAL if platform == "darwin" else MathEngineType.CUDA


def list_tensorflow_gpus(platform: str = sys.platform) -> List[MathEngineInfo]:
    """Enumerate the physical GPUs TensorFlow can see, in TensorFlow's order."""
    kind = gpu_kind_for_platform(platform)
    infos: List[MathEngineInfo] = []
    for index, device in enumerate(tf.config.list_physical_devices("GPU")):
        details = tf.config.experimental.get_device_details(device)
        infos.append(
            MathEngineInfo(
                index=index,
                name=details.get("device_name", device.name),
                type=kind,
            )
        )
    return infos


class TensorflowMathEngine(MathEngine):
    """Engine whose storage and kernels run on one TensorFlow device."""

    def __init__(self, info: MathEngineInfo, memory_limit: int = 0, device_name: Optional[str] = None):
        super().__init__(info.type, memory_limit=memory_limit, name=info.name)
        self._info = info
        self._device = device_name or f"/GPU:{info.index}"
        logger.debug(
            "TensorflowMathEngine initialized",
            device=self._device,
            engine_type=info.type.display_name,
            memory_limit=memory_limit,
        )

    @property
    def info(self) -> MathEngineInfo:
        return self._info

    @property
    def device(self) -> str:
        return self._device

    def _create_storage(self, size: int, dtype: np.dtype) -> tf.Tensor:
        with tf.device(self._device):
            return tf.zeros([size], dtype=tf.as_dtype(dtype))

    def _write_storage(self, storage: tf.Tensor, data: np.ndarray) -> tf.Tensor:
        with tf.device(self._device):
            head = tf.constant(data, dtype=storage.dtype)
            return tf.concat([head, storage[data.size:]], axis=0)

    def _read_storage(self, storage: tf.Tensor) -> np.ndarray:
        return storage.numpy()

    def _fill_storage(self, storage: tf.Tensor, value: float, count: int) -> tf.Tensor:
        with tf.device(self._device):
            head = tf.fill([count], tf.constant(value, dtype=storage.dtype))
            return tf.concat([head, storage[count:]], axis=0)

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
    ) -> tf.Tensor:
        out_size = first_height * second_width
        with tf.device(self._device):
            offsets = rows[: first_height + 1]
            row_ids = tf.repeat(tf.range(first_height, dtype=tf.int32), offsets[1:] - offsets[:-1])
            dense = tf.reshape(second[: first_width * second_width], [first_width, second_width])

            # Nonzeros of one row are summed in parallel, so their order may
            # differ from the host reference.
            gathered = tf.gather(dense, columns[:element_count])
            contributions = gathered * tf.expand_dims(values[:element_count], axis=1)
            summed = tf.math.unsorted_segment_sum(contributions, row_ids, num_segments=first_height)

            updated = result[:out_size] + tf.reshape(summed, [-1])
            return tf.concat([updated, result[out_size:]], axis=0)
