"""Custom exceptions for the neomath engine.

The taxonomy separates configuration problems, resource exhaustion,
programmer errors (precondition violations) and numeric divergence found
by the test harness.
"""

from neomath.exceptions.base import (
    NeoMathError,
    ConfigurationError,
    ResourceExhaustedError,
    PreconditionError,
    InvalidHandleError,
    ToleranceMismatchError,
)

__all__ = [
    "NeoMathError",
    "ConfigurationError",
    "ResourceExhaustedError",
    "PreconditionError",
    "InvalidHandleError",
    "ToleranceMismatchError",
]
