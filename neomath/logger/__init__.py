"""Logger module for neomath

This module provides a flexible logging interface that allows users to
drop in their own logger implementations.

Usage:
    from neomath.logger import session_logger as logger

    logger.info("Engine created", engine_type="Cpu", memory_limit=0)
"""

import logging
import os

from neomath.logger.base import Logger
from neomath.logger.structured_logger import StructuredLogger

# Configuration from environment
LOG_LEVEL_STR = os.environ.get("NEOMATH_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.environ.get("NEOMATH_LOG_FILE")
LOG_JSON = os.environ.get("NEOMATH_LOG_JSON", "false").lower() == "true"

# Map string level to logging constant
LOG_LEVEL = getattr(logging, LOG_LEVEL_STR, logging.INFO)

# Shared logger instance
session_logger: StructuredLogger = StructuredLogger(
    level=LOG_LEVEL,
    log_file=LOG_FILE,
    json_format=LOG_JSON
)

__all__ = [
    "Logger",
    "StructuredLogger",
    "session_logger",
]
