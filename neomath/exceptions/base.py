"""Exception classes for the neomath engine.

Every error carries a machine-readable code, a human-readable message and an
optional details dictionary so callers can report failures uniformly.
"""

from typing import Any, Dict, Optional


class NeoMathError(Exception):
    """Base for all neomath errors."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.code}: {self.message} ({detail_str})"
        return f"{self.code}: {self.message}"


class ConfigurationError(NeoMathError):
    """Raised when an engine or setting cannot be configured as requested."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="CONFIGURATION_ERROR", message=message, details=details)


class ResourceExhaustedError(NeoMathError):
    """Raised when an allocation would exceed the engine memory budget."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="RESOURCE_EXHAUSTED", message=message, details=details)


class PreconditionError(NeoMathError):
    """Raised when a caller breaks an operation contract (bad sizes, bounds, dtypes)."""
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "PRECONDITION_VIOLATION",
    ):
        super().__init__(code=code, message=message, details=details)


class InvalidHandleError(PreconditionError):
    """Raised when a memory handle is freed, stale or owned by another engine."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details, code="INVALID_HANDLE")


class ToleranceMismatchError(NeoMathError, AssertionError):
    """Raised when a computed result diverges from its reference."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="TOLERANCE_MISMATCH", message=message, details=details)
