"""Tolerance comparisons between reference and backend results."""

from __future__ import annotations

import math
from typing import Any, Dict, Optional

import numpy as np

from neomath.exceptions import ToleranceMismatchError
from neomath.math_engine.blob import Blob, BlobType

FLT_MAX = float(np.finfo(np.float32).max)
FLT_EPSILON = float(np.finfo(np.float32).eps)


def float_eq(val1: float, val2: float, precision: float = 1e-5) -> bool:
    """Approximate equality with both absolute and relative thresholds.

    Values beyond the float32 range compare as infinities of the same sign,
    and NaN only equals NaN.
    """
    if val1 >= FLT_MAX:
        return val2 >= FLT_MAX
    if val1 <= -FLT_MAX:
        return val2 <= -FLT_MAX
    if math.isnan(val1):
        return math.isnan(val2)
    if abs(val2) < precision and abs(val1) < precision:
        return True
    denominator = val2 if val2 != 0 else FLT_EPSILON
    return abs(val1 - val2) < precision or abs((val1 - val2) / denominator) < precision


def compare_blobs(first: Blob, second: Blob, precision: float = 1e-5) -> bool:
    """Same type, same shape, and every element equal (within ``precision`` for floats)."""
    if first.blob_type != second.blob_type or first.shape != second.shape:
        return False

    first_data = first.read().reshape(-1)
    second_data = second.read().reshape(-1)
    if first.blob_type is BlobType.INT:
        return bool(np.array_equal(first_data, second_data))
    return all(float_eq(float(a), float(b), precision) for a, b in zip(first_data, second_data))


def assert_near(
    expected: np.ndarray,
    actual: np.ndarray,
    tolerance: float = 1e-3,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Raise ToleranceMismatchError unless ``|expected - actual| < tolerance`` everywhere."""
    expected_flat = np.asarray(expected, dtype=np.float64).reshape(-1)
    actual_flat = np.asarray(actual, dtype=np.float64).reshape(-1)
    if expected_flat.shape != actual_flat.shape:
        raise ToleranceMismatchError(
            "Result size differs from the reference",
            details={**(details or {}), "expected_size": expected_flat.size, "actual_size": actual_flat.size},
        )

    # NaN differences fail the comparison too
    within = np.abs(expected_flat - actual_flat) < tolerance
    if within.all():
        return
    index = int(np.flatnonzero(~within)[0])
    raise ToleranceMismatchError(
        "Result diverges from the reference",
        details={
            **(details or {}),
            "index": index,
            "expected": float(expected_flat[index]),
            "actual": float(actual_flat[index]),
            "tolerance": tolerance,
            "mismatches": int((~within).sum()),
        },
    )
