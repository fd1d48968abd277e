"""Infrastructure layer for pipebench."""

from pipebench.infrastructure.config import Config, ConfigManager
from pipebench.infrastructure.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    PipebenchError,
    SchedulingDeadlockError,
    UnknownDependencyError,
    UnsupportedFormatError,
)
from pipebench.infrastructure.file_cache import FileCacheStore
from pipebench.infrastructure.logger import get_logger, setup_logging

__all__ = [
    "CircularDependencyError",
    "Config",
    "ConfigManager",
    "ConfigurationError",
    "FileCacheStore",
    "PipebenchError",
    "SchedulingDeadlockError",
    "UnknownDependencyError",
    "UnsupportedFormatError",
    "get_logger",
    "setup_logging",
]
