# src/goalcore/config/__init__.py
"""
Configuration module for the GoalCore library.

This package handles loading and validation of configuration settings,
layering a packaged default TOML file, an optional user file, environment
variables and runtime overrides.

Configuration files:
    - default_config.toml: Packaged defaults
    - User config: ~/.config/goalcore/config.toml
    - Custom config: Specified via load_config(config_file_path=...)

Environment variables:
    - Prefix: GOALCORE_
    - Nested keys use double underscores: GOALCORE_STALE__THRESHOLD_DAYS
"""

from .loader import load_confy_config, load_config
from .models import (
    ApiConfig,
    GoalCoreConfig,
    LoggingConfig,
    ProgressConfig,
    StaleConfig,
    StorageConfig,
    StreaksConfig,
)

__all__ = [
    "ApiConfig",
    "GoalCoreConfig",
    "LoggingConfig",
    "ProgressConfig",
    "StaleConfig",
    "StorageConfig",
    "StreaksConfig",
    "load_confy_config",
    "load_config",
]
