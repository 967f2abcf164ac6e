"""Application configuration

Settings are read from environment variables with the NEOMATH prefix.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from neomath.exceptions import ConfigurationError

_ENV_PREFIX = "NEOMATH"


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    math_engine: str = "cpu"
    memory_limit: int = 0  # bytes, 0 means unlimited
    test_data_path: str = ""
    tf_log_level: str = "2"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env_map = os.environ if env is None else env

        def read(name: str, default: str) -> str:
            return env_map.get(f"{_ENV_PREFIX}_{name}", default)

        raw_limit = read("MEMORY_LIMIT", "0")
        try:
            memory_limit = int(raw_limit)
        except ValueError as e:
            raise ConfigurationError(
                f"{_ENV_PREFIX}_MEMORY_LIMIT must be an integer byte count",
                details={"value": raw_limit},
            ) from e
        if memory_limit < 0:
            raise ConfigurationError(
                f"{_ENV_PREFIX}_MEMORY_LIMIT must not be negative",
                details={"value": memory_limit},
            )

        return cls(
            math_engine=read("MATH_ENGINE", "cpu").lower(),
            memory_limit=memory_limit,
            test_data_path=read("TEST_DATA_PATH", ""),
            tf_log_level=read("TF_LOG_LEVEL", "2"),
        )


_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    """Get settings, reading the environment on first use or on reload"""
    global _settings
    if _settings is None or reload:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests use this after patching the environment)"""
    global _settings
    _settings = None


__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
]
