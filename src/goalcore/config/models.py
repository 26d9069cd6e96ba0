# src/goalcore/config/models.py
"""
Pydantic models for GoalCore configuration.

These models give every configuration section validated defaults. The
loader (``goalcore.config.loader``) merges the packaged
``default_config.toml``, an optional user file, ``GOALCORE_`` environment
variables and explicit overrides into one dictionary and validates it
against ``GoalCoreConfig``.

The configuration hierarchy:
    GoalCoreConfig (root)
    ├── StorageConfig     - Backing store selection and location
    ├── ProgressConfig    - Rollup status policy and write retries
    ├── StreaksConfig     - Weekly streak recovery policy
    ├── StaleConfig       - Zombie goal detection window
    ├── LoggingConfig     - Console/file logging setup
    └── ApiConfig         - HTTP server settings

Usage:
    >>> from goalcore.config.models import GoalCoreConfig
    >>> config = GoalCoreConfig()  # All defaults
    >>> config.stale.threshold_days
    14
"""

from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# =============================================================================
# STORAGE CONFIGURATION
# =============================================================================


class StorageConfig(BaseModel):
    """
    Backing store configuration.

    Examples:
        >>> StorageConfig().type
        'sqlite'
    """

    type: Literal["sqlite"] = Field(
        default="sqlite",
        description="Storage backend type",
    )
    path: str = Field(
        default="~/.local/share/goalcore/goalcore.db",
        description=(
            "Path to the SQLite database file. Tilde and environment variable "
            "expansion is applied; ':memory:' keeps everything in memory."
        ),
    )

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ and environment variables in path."""
        if v == ":memory:":
            return v
        return os.path.expanduser(os.path.expandvars(v))


# =============================================================================
# PROGRESS CONFIGURATION
# =============================================================================


class ProgressConfig(BaseModel):
    """
    Rollup and status policy.

    A node is ``at_risk`` when its percentage is below
    ``at_risk_progress_threshold`` while less than
    ``at_risk_time_remaining_fraction`` of its time window is left. These
    thresholds are user-visible.

    Examples:
        >>> config = ProgressConfig()
        >>> config.at_risk_progress_threshold
        50.0
        >>> config.max_stale_write_retries
        3
    """

    at_risk_progress_threshold: float = Field(
        default=50.0,
        ge=0.0,
        le=100.0,
        description="Percentage below which a node running out of time is at risk",
    )
    at_risk_time_remaining_fraction: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Fraction of the time window left below which a lagging node is at risk",
    )
    max_stale_write_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Automatic retries when a cache write observed a concurrent modification",
    )


# =============================================================================
# STREAKS CONFIGURATION
# =============================================================================


class StreaksConfig(BaseModel):
    """
    Streak recovery policy.

    A streak broken by exactly one missed day may be restored once per ISO
    week when at least ``recovery_min_actions`` qualifying actions were
    completed on the day of recovery.
    """

    recovery_enabled: bool = Field(default=True, description="Allow weekly streak recovery")
    recovery_min_actions: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Completed actions required on the recovery day",
    )
    history_days: int = Field(
        default=400,
        ge=7,
        description=(
            "How far back vision-wide action counts are read for recovery; "
            "longest streaks always scan every completion date"
        ),
    )


# =============================================================================
# STALE GOAL CONFIGURATION
# =============================================================================


class StaleConfig(BaseModel):
    """Zombie goal detection settings."""

    threshold_days: int = Field(
        default=14,
        ge=1,
        description="Days without activity after which an active node is stale",
    )
    page_size: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Maximum number of stale goals returned for display",
    )


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


class LoggingConfig(BaseModel):
    """
    Logging settings consumed by ``goalcore.logging_config.configure_logging``.
    """

    console_enabled: bool = False
    console_level: str = "WARNING"
    console_format: str = "%(levelname)s - %(message)s"
    file_enabled: bool = False
    file_level: str = "DEBUG"
    file_directory: str = "~/.local/share/goalcore/logs"
    file_mode: Literal["per_run", "single"] = "per_run"
    file_format: str = (
        "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)"
    )
    rotation_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    rotation_backup_count: int = Field(default=5, ge=0)
    display_min_level: str = "INFO"
    components: dict[str, str] = Field(default_factory=dict)

    @field_validator("console_level", "file_level", "display_min_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize level names and reject unknown ones."""
        upper = v.upper()
        if upper not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return upper


# =============================================================================
# API CONFIGURATION
# =============================================================================


class ApiConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=8420, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics under /metrics")


# =============================================================================
# ROOT
# =============================================================================


class GoalCoreConfig(BaseModel):
    """Root configuration object."""

    log_level: str = Field(default="INFO", description="Level of the 'goalcore' logger")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    streaks: StreaksConfig = Field(default_factory=StreaksConfig)
    stale: StaleConfig = Field(default_factory=StaleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @model_validator(mode="before")
    @classmethod
    def drop_unknown_sections(cls, data: Any) -> Any:
        """Ignore top-level keys that are not configuration sections (e.g. TOML comments tables)."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if k in cls.model_fields}
        return data
