# src/goalcore/storage/base_store.py
"""
Abstract Base Class for KPI storage backends.

This module defines the interface that all KPI store implementations must
adhere to within the GoalCore library. The progress engine only needs a
small set of capabilities from the store: reading all active KPIs of a
vision joined with their cache rows in one query, reading a node's active
children with their cache rows, atomic upsert-by-kpi-id of cache rows,
and querying completion logs by KPI and date range.
"""

import abc
from datetime import date
from typing import Any, AsyncContextManager, Dict, List, Optional

from ..models import (CompletionLog, KpiLevel, KpiNode, KpiWithProgress,
                      ProgressCacheEntry, Vision)


class BaseKpiStore(abc.ABC):
    """
    Abstract Base Class for vision, KPI, completion log and progress cache storage.

    Concrete implementations handle the specifics of persisting data (e.g.
    SQLite). Every method that touches the store may raise
    ``StoreUnavailableError`` when the backing transaction fails.
    """

    @abc.abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the storage backend with the given configuration.

        Args:
            config: Backend-specific configuration dictionary derived from the
                    ``[storage]`` section (e.g. ``path``).
        """
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        """Clean up resources such as database connections."""
        pass

    @abc.abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Return an async context manager wrapping one atomic unit of work.

        Store calls made inside the block by the same task join the
        transaction; it commits on normal exit and rolls back on error.

        Example:
            async with store.transaction():
                children = await store.get_active_children(kpi_id)
                await store.upsert_cache_entry(entry, expected_version)
        """
        pass

    # --- Visions ---

    @abc.abstractmethod
    async def save_vision(self, vision: Vision) -> Vision:
        """Insert or update a vision."""
        pass

    @abc.abstractmethod
    async def get_vision(self, vision_id: str) -> Optional[Vision]:
        """Retrieve a vision by id, or None."""
        pass

    # --- KPI nodes ---

    @abc.abstractmethod
    async def save_kpi(self, kpi: KpiNode) -> KpiNode:
        """
        Insert or update a KPI node (keyed by ``kpi.id``).

        Returns:
            The node as stored.
        """
        pass

    @abc.abstractmethod
    async def get_kpi(self, kpi_id: str) -> Optional[KpiNode]:
        """Retrieve a KPI node by id (active or not), or None."""
        pass

    @abc.abstractmethod
    async def list_kpis(
        self,
        vision_id: str,
        level: Optional[KpiLevel] = None,
        active_only: bool = True,
    ) -> List[KpiNode]:
        """List the KPI nodes of a vision, optionally restricted to one level."""
        pass

    @abc.abstractmethod
    async def list_kpis_with_progress(self, vision_id: str) -> List[KpiWithProgress]:
        """
        Read all active KPIs of a vision joined with their cache rows.

        This is a single query ordered by level (coarsest first) then
        ``sort_order``; nodes never calculated carry ``cache=None``.
        """
        pass

    @abc.abstractmethod
    async def get_active_children(self, kpi_id: str) -> List[KpiWithProgress]:
        """Read the active children of a node joined with their current cache rows."""
        pass

    # --- Progress cache ---

    @abc.abstractmethod
    async def get_cache_entry(self, kpi_id: str) -> Optional[ProgressCacheEntry]:
        """Retrieve a node's cache row, or None if it was never calculated."""
        pass

    @abc.abstractmethod
    async def upsert_cache_entry(
        self,
        entry: ProgressCacheEntry,
        expected_version: Optional[int],
    ) -> ProgressCacheEntry:
        """
        Atomically insert or update a node's cache row.

        Args:
            entry: The full row to write. ``version`` is ignored; the store
                assigns the next version.
            expected_version: The version observed when the row was read, or
                None if no row existed.

        Returns:
            The row as stored, with its new ``version``.

        Raises:
            ConcurrentWriteStaleError: If the row was created or modified
                since it was read.
        """
        pass

    # --- Completion logs ---

    @abc.abstractmethod
    async def upsert_log(self, log: CompletionLog) -> CompletionLog:
        """Save a completion log; a second log for the same date replaces the first."""
        pass

    @abc.abstractmethod
    async def delete_log(self, kpi_id: str, log_date: date) -> bool:
        """Delete the log of one date. Returns True if a row was removed."""
        pass

    @abc.abstractmethod
    async def get_logs(
        self,
        kpi_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        completed_only: bool = False,
    ) -> List[CompletionLog]:
        """Query a KPI's logs within an inclusive date range, newest first."""
        pass

    @abc.abstractmethod
    async def count_completions_by_day(
        self,
        vision_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[date, int]:
        """Count completed logs per date across all active KPIs of a vision."""
        pass
