"""
Configuration Utilities for the Node Optimizer

Settings and logging setup shared by the services and the entry point.
"""

from .settings import Settings, get_settings
from .logging_config import setup_logging

__all__ = [
    # Settings
    "Settings",
    "get_settings",

    # Logging
    "setup_logging",
]
