"""Cross-backend test harness.

Seeded operand generation, host reference kernels, tolerance comparison and
the session plumbing that runs the suite against one selected engine.
"""

from neomath.testing.compare import assert_near, compare_blobs, float_eq
from neomath.testing.fixture import (
    PerformanceCounters,
    TestContext,
    get_peak_mem_scaled,
    get_test_data_file_path,
    get_time_scaled,
    merge_path_simple,
    run_test_impl,
    run_tests,
    trial_seed,
)
from neomath.testing.params import Interval, TestParams
from neomath.testing.random_source import Random

__all__ = [
    "Interval",
    "PerformanceCounters",
    "Random",
    "TestContext",
    "TestParams",
    "assert_near",
    "compare_blobs",
    "float_eq",
    "get_peak_mem_scaled",
    "get_test_data_file_path",
    "get_time_scaled",
    "merge_path_simple",
    "run_test_impl",
    "run_tests",
    "trial_seed",
]
