# src/goalcore/__init__.py
"""
GoalCore - hierarchical goal progress aggregation and caching.

Users decompose a long-term vision into quarterly, monthly, weekly and daily
KPIs and log completions against them. This library assembles the KPI tree,
computes weighted rollups with a transparent formula breakdown, keeps a
per-node progress cache consistent as logs and structure change, and
derives streaks and stale ("zombie") goals from the logged activity.
"""

from importlib.metadata import PackageNotFoundError, version

from .config import GoalCoreConfig, load_config
from .exceptions import (
    ConcurrentWriteStaleError,
    ConfigError,
    GoalCoreError,
    InvalidHierarchyError,
    NotFoundError,
    RecalculationError,
    StorageError,
    StoreUnavailableError,
)
from .models import (
    CalculationMethod,
    CompletionLog,
    FormulaReport,
    GoalTree,
    KpiLevel,
    KpiNode,
    KpiTreeNode,
    ManualOverride,
    ProgressCacheEntry,
    ProgressFormula,
    ProgressRead,
    ProgressStatus,
    RecalculationResult,
    StaleGoal,
    StreakRecord,
    StreakSummary,
    Vision,
    VisionProgressSummary,
)
from .service import ProgressService
from .storage import StorageManager

try:
    __version__ = version("goalcore")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    # Main facade
    "ProgressService",
    "StorageManager",
    "GoalCoreConfig",
    "load_config",
    # Models
    "CalculationMethod",
    "CompletionLog",
    "FormulaReport",
    "GoalTree",
    "KpiLevel",
    "KpiNode",
    "KpiTreeNode",
    "ManualOverride",
    "ProgressCacheEntry",
    "ProgressFormula",
    "ProgressRead",
    "ProgressStatus",
    "RecalculationResult",
    "StaleGoal",
    "StreakRecord",
    "StreakSummary",
    "Vision",
    "VisionProgressSummary",
    # Exceptions
    "GoalCoreError",
    "ConfigError",
    "NotFoundError",
    "InvalidHierarchyError",
    "StorageError",
    "StoreUnavailableError",
    "ConcurrentWriteStaleError",
    "RecalculationError",
    "__version__",
]
