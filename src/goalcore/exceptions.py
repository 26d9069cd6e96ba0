# src/goalcore/exceptions.py
"""
Custom exceptions for the GoalCore library.

This module defines a hierarchy of custom exception classes so that callers
(the service facade, the API server, the CLI) can tell client mistakes
apart from transient storage conditions and react accordingly:

- ``NotFoundError`` and ``InvalidHierarchyError`` are client errors and are
  surfaced directly with enough detail to fix the input.
- ``ConcurrentWriteStaleError`` is a retry signal, not a hard failure.
- ``StoreUnavailableError`` means the backing transaction failed; prior
  state is left intact and the triggering action is reported as failed.
"""

from typing import List, Optional


class GoalCoreError(Exception):
    """Base class for all GoalCore specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in GoalCore."):
        super().__init__(message)

class ConfigError(GoalCoreError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)

class NotFoundError(GoalCoreError):
    """Raised when a referenced KPI or vision does not exist."""
    def __init__(self, entity: str = "KPI", entity_id: str = "", message: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message or f"{entity} not found: '{entity_id}'")

class InvalidHierarchyError(GoalCoreError):
    """
    Raised when a parent/child link is not allowed.

    Covers level mismatches (a child must be exactly one level finer than its
    parent), links across visions, and cycles in the parent chain.
    """
    def __init__(self, message: str = "Invalid KPI hierarchy.", kpi_id: Optional[str] = None):
        self.kpi_id = kpi_id
        super().__init__(message)

class StorageError(GoalCoreError):
    """Base class for errors related to storage operations."""
    def __init__(self, message: str = "Storage error."):
        super().__init__(message)

class StoreUnavailableError(StorageError):
    """Raised when the backing store transaction failed or the store is not reachable."""
    def __init__(self, message: str = "Backing store unavailable."):
        super().__init__(message)

class ConcurrentWriteStaleError(StorageError):
    """
    Raised when a cache write observed a row modified since it was read.

    This is a retry signal: the writer should re-read the node's children and
    compute again.
    """
    def __init__(self, kpi_id: str = "", message: str = "Cache row was modified concurrently."):
        self.kpi_id = kpi_id
        super().__init__(f"{message} KPI ID: '{kpi_id}'")

class RecalculationError(GoalCoreError):
    """
    Raised when an ancestor recalculation failed part way up a chain.

    Rows listed in ``written`` were committed before the failure and are
    consistent; the failing node and everything above it keep their previous
    (stale) cache rows. The original exception is chained as ``__cause__``.
    """
    def __init__(self, kpi_id: str = "", written: Optional[List[str]] = None, message: str = "Recalculation failed."):
        self.kpi_id = kpi_id
        self.written = list(written or [])
        super().__init__(f"{message} Failed at KPI '{kpi_id}' after writing {len(self.written)} row(s).")
