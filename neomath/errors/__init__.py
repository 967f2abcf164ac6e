"""Error handling utilities for neomath."""

from neomath.errors.mapper import (
    ErrorResponse,
    map_exception_to_response,
    get_recovery_strategy,
)

__all__ = [
    "ErrorResponse",
    "map_exception_to_response",
    "get_recovery_strategy",
]
