"""Device memory handles and the per-engine heap arena.

A ``MemoryHandle`` is a capability token, not an owning pointer: the engine
that issued it keeps the storage. Handles carry the slot index and the
generation of the allocation they refer to, so freed, reused or foreign
handles are detected when the engine resolves them.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from neomath.exceptions import InvalidHandleError, PreconditionError, ResourceExhaustedError

FLOAT32 = np.dtype(np.float32)
INT32 = np.dtype(np.int32)

SUPPORTED_DTYPES = (FLOAT32, INT32)

_engine_ids = itertools.count(1)


def next_engine_id() -> int:
    """Unique id stamped into every handle an engine issues."""
    return next(_engine_ids)


def as_dtype(dtype: Any) -> np.dtype:
    """Normalize a dtype-like value to one of the supported element types."""
    resolved = np.dtype(dtype)
    if resolved not in SUPPORTED_DTYPES:
        raise PreconditionError(
            f"Unsupported element type: {resolved}",
            details={"supported": [str(d) for d in SUPPORTED_DTYPES]},
        )
    return resolved


@dataclass(frozen=True)
class MemoryHandle:
    """Typed reference to ``size`` elements of ``dtype`` in one engine's heap."""

    engine_id: int
    slot: int
    generation: int
    size: int
    dtype: np.dtype

    @property
    def byte_size(self) -> int:
        return self.size * self.dtype.itemsize

    def __repr__(self) -> str:
        return (
            f"MemoryHandle(engine={self.engine_id}, slot={self.slot}, "
            f"gen={self.generation}, size={self.size}, dtype={self.dtype})"
        )


@dataclass
class _Slot:
    generation: int = 0
    storage: Any = None
    byte_size: int = 0
    live: bool = False


class HeapArena:
    """Slot allocator with generation counters and a byte budget.

    ``limit`` of 0 means unlimited. The arena only does bookkeeping; the
    backend decides what ``storage`` is (a NumPy array, a TensorFlow tensor).
    """

    def __init__(self, engine_id: int, limit: int = 0):
        if limit < 0:
            raise PreconditionError("Memory limit must not be negative", details={"limit": limit})
        self._engine_id = engine_id
        self._limit = limit
        self._slots: List[_Slot] = []
        self._free_slots: List[int] = []
        self._in_use = 0
        self._peak = 0
        self._closed = False

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def peak(self) -> int:
        return self._peak

    @property
    def live_count(self) -> int:
        return sum(1 for slot in self._slots if slot.live)

    def reset_peak(self) -> None:
        self._peak = self._in_use

    def ensure_capacity(self, byte_size: int) -> None:
        """Raise ResourceExhaustedError if ``byte_size`` more bytes would break the limit."""
        self._check_open()
        if self._limit and self._in_use + byte_size > self._limit:
            raise ResourceExhaustedError(
                "Allocation exceeds the engine memory limit",
                details={
                    "requested": byte_size,
                    "in_use": self._in_use,
                    "limit": self._limit,
                },
            )

    def allocate(self, size: int, dtype: np.dtype, storage: Any) -> MemoryHandle:
        """Register ``storage`` holding ``size`` elements and return its handle."""
        byte_size = size * dtype.itemsize
        self.ensure_capacity(byte_size)

        if self._free_slots:
            index = self._free_slots.pop()
            slot = self._slots[index]
        else:
            index = len(self._slots)
            slot = _Slot()
            self._slots.append(slot)

        slot.generation += 1
        slot.storage = storage
        slot.byte_size = byte_size
        slot.live = True

        self._in_use += byte_size
        self._peak = max(self._peak, self._in_use)
        return MemoryHandle(self._engine_id, index, slot.generation, size, dtype)

    def resolve(self, handle: MemoryHandle) -> Any:
        """Return the storage behind ``handle`` or raise InvalidHandleError."""
        return self._slot_for(handle).storage

    def replace(self, handle: MemoryHandle, storage: Any) -> None:
        """Swap the storage behind a live handle (immutable device tensors)."""
        self._slot_for(handle).storage = storage

    def free(self, handle: MemoryHandle) -> None:
        slot = self._slot_for(handle)
        slot.live = False
        slot.storage = None
        self._in_use -= slot.byte_size
        slot.byte_size = 0
        self._free_slots.append(handle.slot)

    def release_all(self) -> int:
        """Drop every allocation and close the arena. Returns how many were still live."""
        leaked = self.live_count
        for slot in self._slots:
            slot.live = False
            slot.storage = None
            slot.byte_size = 0
        self._slots.clear()
        self._free_slots.clear()
        self._in_use = 0
        self._closed = True
        return leaked

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidHandleError(
                "Engine has been destroyed",
                details={"engine_id": self._engine_id},
            )

    def _slot_for(self, handle: MemoryHandle) -> _Slot:
        self._check_open()
        details: Dict[str, Any] = {"handle": repr(handle)}
        if not isinstance(handle, MemoryHandle):
            raise InvalidHandleError("Not a memory handle", details=details)
        if handle.engine_id != self._engine_id:
            raise InvalidHandleError("Handle belongs to a different engine", details=details)
        slot: Optional[_Slot] = self._slots[handle.slot] if 0 <= handle.slot < len(self._slots) else None
        if slot is None or not slot.live or slot.generation != handle.generation:
            raise InvalidHandleError("Handle was freed or is stale", details=details)
        return slot
