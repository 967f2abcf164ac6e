"""Error response mapping.

Converts structured NeoMathError exceptions into standardized error responses
with machine-readable error codes and recovery strategies.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional

from neomath.exceptions import NeoMathError


@dataclass
class ErrorResponse:
    """Structured error report for logs and harness output."""

    error_code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    recovery_strategy: Optional[str] = None


# Recovery strategy templates for common error types
RECOVERY_STRATEGIES: Dict[str, str] = {
    "CONFIGURATION_ERROR": "Select a backend that has a matching device (--MathEngine=cpu always works) and check NEOMATH_* settings.",
    "RESOURCE_EXHAUSTED": "Free unused handles or create the engine with a larger memory limit.",
    "PRECONDITION_VIOLATION": "Check matrix dimensions, CSR offsets and column bounds, and handle sizes against the call.",
    "INVALID_HANDLE": "The handle was freed, belongs to another engine, or its engine was destroyed. Allocate a new one.",
    "TOLERANCE_MISMATCH": "The backend result diverged from the reference. This indicates a kernel bug; rerun the failing seed to reproduce.",
}


def get_recovery_strategy(error_code: str) -> str:
    """Get recovery strategy for an error code.

    Args:
        error_code: The error code

    Returns:
        Recovery strategy string
    """
    return RECOVERY_STRATEGIES.get(
        error_code, "Review the error message, adjust the request, and try again."
    )


def map_exception_to_response(error: Exception) -> ErrorResponse:
    """Convert an exception to a structured ErrorResponse.

    Args:
        error: The exception to convert

    Returns:
        ErrorResponse with structured error information
    """
    if isinstance(error, NeoMathError):
        return ErrorResponse(
            error_code=error.code,
            message=error.message,
            details=error.details if error.details else None,
            recovery_strategy=get_recovery_strategy(error.code),
        )

    # Generic exceptions - wrap with minimal structure
    return ErrorResponse(
        error_code="INTERNAL_ERROR",
        message=str(error),
        details={"exception_type": type(error).__name__},
        recovery_strategy="An unexpected error occurred. Please report this issue if it persists.",
    )

