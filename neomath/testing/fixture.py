"""Test-run plumbing: command-line flags, the engine context, data paths.

A test session owns exactly one engine. ``TestContext`` creates it when the
session starts and destroys it when the session ends; tests receive the
context explicitly (through the ``math_context`` pytest fixture) instead of
reaching for a process-wide engine.
"""

from __future__ import annotations

import os
import time
from typing import Any, Callable, List, Optional, Sequence

import pytest

from neomath.config import get_settings
from neomath.errors import map_exception_to_response
from neomath.exceptions import ConfigurationError, PreconditionError
from neomath.logger import session_logger as logger
from neomath.math_engine.base import MathEngine, MathEngineType
from neomath.math_engine.manager import GpuMathEngineManager, create_math_engine
from neomath.testing.params import TestParams

TEST_DATA_PATH_ARG = "--TestDataPath="
MATH_ENGINE_ARG = "--MathEngine="

DEFAULT_BASE_SEED = 282

_PATH_SEPARATORS = ("/", "\\")


def arg_value(argv: Sequence[str], prefix: str) -> Optional[str]:
    """Value of the first argument starting with ``prefix``, taken verbatim."""
    for arg in argv:
        if arg.startswith(prefix):
            return arg[len(prefix):]
    return None


def get_math_engine_type(argv: Sequence[str]) -> Optional[MathEngineType]:
    """Backend kind from ``--MathEngine=``; None when the flag is absent.

    Unrecognized values give UNDEFINED, which engine creation turns into CPU
    with a warning.
    """
    value = arg_value(argv, MATH_ENGINE_ARG)
    if value is None:
        return None
    return MathEngineType.from_name(value)


def strip_own_args(argv: Sequence[str]) -> List[str]:
    """Arguments left for pytest once the harness flags are removed."""
    return [arg for arg in argv if not arg.startswith((TEST_DATA_PATH_ARG, MATH_ENGINE_ARG))]


def merge_path_simple(directory: str, relative_path: str, separator: str = os.sep) -> str:
    """Join two path parts with exactly one separator between them.

    Both ``/`` and ``\\`` count as separators at the join boundary; an empty
    directory returns ``relative_path`` unchanged.
    """
    if not directory:
        return relative_path

    separators = 0
    if directory.endswith(_PATH_SEPARATORS):
        separators += 1
    if relative_path.startswith(_PATH_SEPARATORS):
        separators += 1

    if separators == 0:
        return directory + separator + relative_path
    if separators == 1:
        return directory + relative_path
    return directory[:-1] + relative_path


def get_test_data_file_path(root: str, relative_path: str, file_name: str) -> str:
    return merge_path_simple(merge_path_simple(root, relative_path), file_name)


def trial_seed(base_seed: int, trial: int) -> int:
    return base_seed + trial * 10000 + trial % 3


def run_test_impl(
    impl: Callable[[TestParams, int], None],
    params: TestParams,
    base_seed: int = DEFAULT_BASE_SEED,
) -> None:
    """Run ``TestCount`` reseeded trials of ``impl``.

    Each trial gets its own deterministic seed, so a failing trial can be
    replayed alone from the seed in its error.
    """
    test_count = params.get_value("TestCount", int)
    for trial in range(test_count):
        impl(params, trial_seed(base_seed, trial))


def get_peak_mem_scaled(engine: MathEngine, scale: int = 1024 * 1024) -> float:
    """Peak engine memory in units of ``scale`` bytes (MiB by default)."""
    return engine.get_peak_memory_usage() / scale


class PerformanceCounters:
    """Wall-clock time spent inside ``with`` blocks, accumulated in nanoseconds.

        counters = PerformanceCounters()
        with counters:
            run_test_impl(impl, params)
        elapsed_ms = get_time_scaled(counters)
    """

    def __init__(self, clock: Callable[[], int] = time.perf_counter_ns):
        self._clock = clock
        self._start: Optional[int] = None
        self.elapsed_ns = 0

    def __enter__(self) -> "PerformanceCounters":
        if self._start is not None:
            raise PreconditionError("Performance counters are already running")
        self._start = self._clock()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._start is not None:
            self.elapsed_ns += self._clock() - self._start
            self._start = None


def get_time_scaled(counters: PerformanceCounters, scale: int = 1000000) -> float:
    """Measured time in units of ``scale`` nanoseconds (milliseconds by default)."""
    return counters.elapsed_ns / scale


class TestContext:
    """Per-session state: the engine, its kind, and the test data root."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        engine_type: MathEngineType = MathEngineType.UNDEFINED,
        test_data_path: str = "",
        memory_limit: int = 0,
        platform_env: Any = None,
        manager: Optional[GpuMathEngineManager] = None,
    ):
        self.engine_type = engine_type
        self.test_data_path = test_data_path
        self.memory_limit = memory_limit
        self.platform_env = platform_env
        self._manager = manager
        self._engine: Optional[MathEngine] = None

    @classmethod
    def from_argv(cls, argv: Sequence[str], platform_env: Any = None) -> "TestContext":
        """Build a context from harness flags, with NEOMATH_* settings as defaults."""
        settings = get_settings()
        engine_type = get_math_engine_type(argv)
        if engine_type is None:
            engine_type = MathEngineType.from_name(settings.math_engine)
        test_data_path = arg_value(argv, TEST_DATA_PATH_ARG)
        return cls(
            engine_type=engine_type,
            test_data_path=settings.test_data_path if test_data_path is None else test_data_path,
            memory_limit=settings.memory_limit,
            platform_env=platform_env,
        )

    def create(self) -> MathEngine:
        """Create the session engine.

        Raises:
            ConfigurationError: no engine can be built for the requested kind
        """
        if self._engine is not None:
            raise PreconditionError("The test context already has an engine")
        engine = create_math_engine(self.engine_type, self.memory_limit, self._manager)
        if engine is None:
            raise ConfigurationError(
                "No math engine available for the requested backend",
                details={"engine_type": self.engine_type.value},
            )
        self._engine = engine
        return engine

    @property
    def math_engine(self) -> MathEngine:
        if self._engine is None:
            raise PreconditionError("The test context has no engine; call create() first")
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.destroy()
            self._engine = None

    def __enter__(self) -> "TestContext":
        self.create()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def get_test_data_file_path(self, relative_path: str, file_name: str) -> str:
        return get_test_data_file_path(self.test_data_path, relative_path, file_name)


CONTEXT_KEY = pytest.StashKey[TestContext]()


class ContextPlugin:
    """Hands a context created by ``run_tests`` to the pytest session."""

    def __init__(self, context: TestContext):
        self._context = context

    def pytest_configure(self, config: pytest.Config) -> None:
        config.stash[CONTEXT_KEY] = self._context


def run_tests(argv: Sequence[str], platform_env: Any = None) -> int:
    """Run the test suite against the engine selected on the command line.

    Recognizes ``--TestDataPath=<path>`` and ``--MathEngine=<kind>``; every
    other argument is passed to pytest. Returns pytest's exit code.
    """
    context = TestContext.from_argv(argv, platform_env)
    try:
        context.create()
    except ConfigurationError as e:
        response = map_exception_to_response(e)
        logger.critical(
            "Cannot start tests without a math engine",
            error_code=response.error_code,
            error=response.message,
            recovery=response.recovery_strategy,
        )
        return int(pytest.ExitCode.USAGE_ERROR)

    logger.info(
        "Running tests",
        engine_type=context.math_engine.get_type().display_name,
        test_data_path=context.test_data_path or "(none)",
    )
    try:
        return int(pytest.main(strip_own_args(argv), plugins=[ContextPlugin(context)]))
    finally:
        context.close()
