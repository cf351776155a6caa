"""Configuration module for jobnet-runner.

Provides settings loading and logging setup.
"""

from jobnet.config.logging import configure_logging
from jobnet.config.settings import (
    DatabaseSettings,
    ExecutorSettings,
    LoggingSettings,
    QueueSettings,
    Settings,
    get_settings,
    reload_settings,
)

__all__ = [
    "Settings",
    "DatabaseSettings",
    "QueueSettings",
    "ExecutorSettings",
    "LoggingSettings",
    "get_settings",
    "reload_settings",
    "configure_logging",
]
