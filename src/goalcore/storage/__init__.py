# src/goalcore/storage/__init__.py
"""
Storage backends for the GoalCore library.

Exposes the abstract KPI store interface, the aiosqlite implementation and
the manager that selects a backend from configuration.
"""

from .base_store import BaseKpiStore
from .manager import KPI_STORAGE_MAP, StorageManager
from .sqlite_store import SqliteKpiStore

__all__ = ["BaseKpiStore", "KPI_STORAGE_MAP", "SqliteKpiStore", "StorageManager"]
