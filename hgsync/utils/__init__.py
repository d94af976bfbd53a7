"""Shared utilities for configuration and logging"""

from hgsync.utils.config_loader import ConfigLoader, ConfigurationError
from hgsync.utils.logging_config import RUN_LOGGER, configure_logging, run_context

__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "RUN_LOGGER",
    "configure_logging",
    "run_context",
]
