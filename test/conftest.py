"""Pytest configuration and fixtures

Provides the session math engine context, a private CPU engine per test and
a log capture fixture for the structured session logger.
"""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from neomath.config import get_settings  # noqa: E402
from neomath.logger import session_logger  # noqa: E402
from neomath.math_engine import MathEngineType, create_cpu_math_engine  # noqa: E402
from neomath.testing.fixture import CONTEXT_KEY, TestContext  # noqa: E402


def pytest_addoption(parser):
    parser.addoption(
        "--math-engine",
        action="store",
        default=None,
        help="Backend under test: cpu, cuda, vulkan or metal (default: NEOMATH_MATH_ENGINE or cpu)",
    )


# ============================================================================
# ENGINE FIXTURES
# ============================================================================


@pytest.fixture(scope="session")
def math_context(request):
    """
    The session's engine context.

    When the suite is started through neomath.main_tests the context built
    there is reused; otherwise one is created here for the whole session and
    destroyed when the session ends.
    """
    context = request.config.stash.get(CONTEXT_KEY, None)
    if context is not None:
        yield context
        return

    settings = get_settings()
    engine_name = request.config.getoption("--math-engine") or settings.math_engine
    with TestContext(
        MathEngineType.from_name(engine_name),
        test_data_path=settings.test_data_path,
        memory_limit=settings.memory_limit,
    ) as context:
        yield context


@pytest.fixture
def math_engine(math_context):
    """The shared session engine. Tests free everything they allocate."""
    return math_context.math_engine


@pytest.fixture
def cpu_engine():
    """A private CPU engine, destroyed after the test."""
    engine = create_cpu_math_engine()
    yield engine
    engine.destroy()


# ============================================================================
# LOG CAPTURE
# ============================================================================


class _RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def log_records():
    """
    Records emitted through the session logger during the test.

    The session logger does not propagate to the root logger, so caplog
    cannot see it; this attaches a handler directly.
    """
    handler = _RecordingHandler()
    session_logger.logger.addHandler(handler)
    yield handler.records
    session_logger.logger.removeHandler(handler)
