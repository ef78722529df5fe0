"""
Core components for Market Mirror.

This module contains the application context, configuration loading and
logging setup shared by the CLI and embedding code.
"""

from market_mirror.core.context import AppContext
from market_mirror.core.config import ConfigManager, ConfigError

__all__ = [
    "AppContext",
    "ConfigManager",
    "ConfigError",
]
