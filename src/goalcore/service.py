# src/goalcore/service.py
"""
Main service facade for the GoalCore library.

:class:`ProgressService` is the single entry point used by the HTTP API,
the CLI and library callers. It owns the storage backend and the cache
recalculator, validates structural changes, and turns every write
(completion logs, overrides, weight edits, re-parenting, deactivation)
into a bounded recalculation walk up the affected ancestor chain.

Usage:
    service = await ProgressService.create()
    vision = await service.create_vision("Run a marathon")
    ...
    await service.close()
"""

import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config import GoalCoreConfig, load_config
from .exceptions import NotFoundError
from .models import (CompletionLog, FormulaReport, FormulaSummary, GoalTree,
                     KpiLevel, KpiNode, KpiWithProgress, ManualOverride,
                     ProgressCacheEntry, ProgressRead, ProgressRefresh,
                     RecalculationResult, StaleGoal, StreakSummary, Vision,
                     VisionProgressSummary)
from .progress.hierarchy import ensure_no_cycle, plan_links, validate_parent
from .progress.recalculator import KEEP_OVERRIDE, CacheRecalculator
from .progress.stale import detect_stale_goals
from .progress.streaks import completion_rate, compute_streak, is_streak_at_risk
from .progress.summary import summarize_progress
from .progress.tree import build_tree, count_tree_nodes, get_latest_calculation_time
from .storage.base_store import BaseKpiStore
from .storage.manager import StorageManager

logger = logging.getLogger(__name__)

# Marks a clearable field that the caller did not pass.
UNSET: Any = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressService:
    """
    Facade over the KPI store and the progress engine.

    Instances are normally built with the async :meth:`create` factory,
    which loads configuration and initializes storage.
    """

    def __init__(
        self,
        config: GoalCoreConfig,
        storage_manager: StorageManager,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self._storage_manager = storage_manager
        self._clock = clock or _utcnow
        self.recalculator = CacheRecalculator(
            storage_manager.store, config=config.progress, clock=self._clock
        )

    @classmethod
    async def create(
        cls,
        config: Optional[GoalCoreConfig] = None,
        config_file_path: Optional[Union[str, Path]] = None,
        config_overrides: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "ProgressService":
        """
        Asynchronously create and initialize a ProgressService.

        Args:
            config: A ready configuration; when omitted it is loaded with
                :func:`goalcore.config.load_config`.
            config_file_path: User TOML file passed to the loader.
            config_overrides: Highest-priority values passed to the loader.
            clock: Source of the current time (tests inject a fixed clock).

        Raises:
            ConfigError: If configuration is invalid.
            StorageError: If the storage backend cannot be initialized.
        """
        if config is None:
            config = load_config(config_file_path=config_file_path, overrides=config_overrides)
        logging.getLogger("goalcore").setLevel(config.log_level.upper())

        storage_manager = StorageManager(config.storage)
        await storage_manager.initialize_storage()
        logger.info("ProgressService initialized.")
        return cls(config, storage_manager, clock=clock)

    async def close(self) -> None:
        """Close the storage connection."""
        await self._storage_manager.close_storage()
        logger.info("ProgressService closed.")

    async def __aenter__(self) -> "ProgressService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def store(self) -> BaseKpiStore:
        return self._storage_manager.store

    def today(self) -> date:
        return self._clock().date()

    # --- Lookups ---

    async def get_vision(self, vision_id: str) -> Vision:
        """Raises NotFoundError if the vision does not exist."""
        vision = await self.store.get_vision(vision_id)
        if vision is None:
            raise NotFoundError("Vision", vision_id)
        return vision

    async def get_kpi(self, kpi_id: str) -> KpiNode:
        """Raises NotFoundError if the KPI does not exist or was deactivated."""
        node = await self.store.get_kpi(kpi_id)
        if node is None or not node.is_active:
            raise NotFoundError("KPI", kpi_id)
        return node

    async def get_kpi_with_progress(self, kpi_id: str) -> KpiWithProgress:
        node = await self.get_kpi(kpi_id)
        return KpiWithProgress(node=node, cache=await self.store.get_cache_entry(kpi_id))

    # --- Visions and KPIs ---

    async def create_vision(self, title: str, description: Optional[str] = None) -> Vision:
        vision = Vision(title=title, description=description, created_at=self._clock())
        await self.store.save_vision(vision)
        logger.info(f"Created vision '{vision.id}': {title}")
        return vision

    async def create_kpi(self, kpi: KpiNode) -> Tuple[KpiNode, RecalculationResult]:
        """
        Validate and persist a new KPI, then create its cache row and refresh its ancestors.

        Raises:
            NotFoundError: If the vision or the parent does not exist.
            InvalidHierarchyError: If the parent cannot hold a node of this level.
        """
        await self.get_vision(kpi.vision_id)
        async with self.store.transaction():
            if kpi.parent_kpi_id is not None:
                parent = await self.get_kpi(kpi.parent_kpi_id)
                validate_parent(kpi, parent)
            now = self._clock()
            kpi.created_at = now
            kpi.updated_at = now
            await self.store.save_kpi(kpi)
        logger.info(f"Created {kpi.level.value} KPI '{kpi.id}' under parent '{kpi.parent_kpi_id}'.")
        result = await self.recalculator.recalculate(kpi.id)
        return kpi, result

    async def update_kpi(
        self,
        kpi_id: str,
        title: Optional[str] = None,
        description: Any = UNSET,
        sort_order: Optional[int] = None,
        numeric_target: Any = UNSET,
        due_date: Any = UNSET,
    ) -> KpiNode:
        """
        Edit a KPI's descriptive fields.

        ``title`` and ``sort_order`` are left alone when ``None``. The
        clearable fields (``description``, ``numeric_target``, ``due_date``)
        are left alone when omitted and cleared when passed ``None``.
        Fields affecting percentages (target, due date) trigger a
        recalculation when they change.
        """
        node = await self.get_kpi(kpi_id)
        needs_recalc = False
        if title is not None:
            node.title = title
        if description is not UNSET:
            node.description = description
        if sort_order is not None:
            node.sort_order = sort_order
        if numeric_target is not UNSET and numeric_target != node.numeric_target:
            node.numeric_target = numeric_target
            needs_recalc = True
        if due_date is not UNSET and due_date != node.due_date:
            node.due_date = due_date
            needs_recalc = True
        node.updated_at = self._clock()
        await self.store.save_kpi(node)
        if needs_recalc:
            await self.recalculator.recalculate(kpi_id)
        return node

    async def set_weight(self, kpi_id: str, weight: float) -> RecalculationResult:
        """Change a KPI's weight and recalculate its parent chain."""
        node = await self.get_kpi(kpi_id)
        node.weight = weight
        node.updated_at = self._clock()
        await self.store.save_kpi(node)
        logger.info(f"Weight of KPI '{kpi_id}' set to {weight}.")
        return await self.recalculator.recalculate(kpi_id, include_self=False)

    async def reparent(self, kpi_id: str, new_parent_id: Optional[str]) -> List[RecalculationResult]:
        """
        Move a KPI under another parent (or make it top-level).

        The old parent's chain is recalculated first, without the moved node,
        then the node and its new chain.

        Raises:
            NotFoundError: If the node or the new parent does not exist.
            InvalidHierarchyError: On level mismatch, cross-vision move or cycle.
        """
        async with self.store.transaction():
            node = await self.get_kpi(kpi_id)
            old_parent_id = node.parent_kpi_id
            if new_parent_id == old_parent_id:
                return []
            if new_parent_id is not None:
                new_parent = await self.get_kpi(new_parent_id)
                validate_parent(node, new_parent)
                await ensure_no_cycle(self.store, kpi_id, new_parent_id)
            node.parent_kpi_id = new_parent_id
            node.updated_at = self._clock()
            await self.store.save_kpi(node)
        logger.info(f"KPI '{kpi_id}' moved from '{old_parent_id}' to '{new_parent_id}'.")

        results: List[RecalculationResult] = []
        if old_parent_id is not None:
            old_parent = await self.store.get_kpi(old_parent_id)
            if old_parent is not None and old_parent.is_active:
                results.append(await self.recalculator.recalculate(old_parent_id))
        results.append(await self.recalculator.recalculate(kpi_id))
        return results

    async def deactivate_kpi(self, kpi_id: str) -> Optional[RecalculationResult]:
        """
        Soft-delete a KPI and recalculate its former parent as if the node never existed.

        Returns:
            The former parent's recalculation, or None for a top-level node.
        """
        node = await self.get_kpi(kpi_id)
        node.is_active = False
        node.updated_at = self._clock()
        await self.store.save_kpi(node)
        logger.info(f"KPI '{kpi_id}' deactivated.")
        if node.parent_kpi_id is None:
            return None
        parent = await self.store.get_kpi(node.parent_kpi_id)
        if parent is None or not parent.is_active:
            return None
        return await self.recalculator.recalculate(parent.id)

    # --- Completion logs ---

    async def log_completion(
        self,
        kpi_id: str,
        log_date: Optional[date] = None,
        completed: bool = True,
        value: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> RecalculationResult:
        """
        Record (or replace) the log of one date and propagate the change.

        Returns:
            The KPI's new cache row and the ancestor ids that were updated.
        """
        await self.get_kpi(kpi_id)
        log = CompletionLog(
            kpi_id=kpi_id,
            log_date=log_date or self.today(),
            is_completed=completed,
            value=value,
            notes=notes,
            created_at=self._clock(),
        )
        await self.store.upsert_log(log)
        return await self.recalculator.recalculate(kpi_id)

    async def delete_log(self, kpi_id: str, log_date: date) -> RecalculationResult:
        """Remove the log of one date and propagate the change."""
        await self.get_kpi(kpi_id)
        if not await self.store.delete_log(kpi_id, log_date):
            raise NotFoundError("Log", f"{kpi_id}@{log_date.isoformat()}")
        return await self.recalculator.recalculate(kpi_id)

    async def get_logs(
        self,
        kpi_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CompletionLog]:
        await self.get_kpi(kpi_id)
        return await self.store.get_logs(kpi_id, start=start, end=end)

    # --- Manual overrides ---

    async def set_manual_override(self, kpi_id: str, percentage: float, reason: str) -> RecalculationResult:
        """
        Pin a KPI's percentage and recalculate its parent chain with that value.

        Raises:
            pydantic.ValidationError: If the percentage is outside 0-100 or the reason is empty.
        """
        override = ManualOverride(manual_percentage=percentage, reason=reason)
        await self.get_kpi(kpi_id)
        logger.info(f"Manual override on KPI '{kpi_id}': {percentage}% ({override.reason}).")
        return await self.recalculator.recalculate(kpi_id, override=override)

    async def clear_manual_override(self, kpi_id: str) -> RecalculationResult:
        """Release a KPI from manual override; it and its parent chain are recalculated."""
        await self.get_kpi(kpi_id)
        logger.info(f"Manual override cleared on KPI '{kpi_id}'.")
        return await self.recalculator.recalculate(kpi_id, override=None)

    # --- Reads ---

    async def get_tree(self, vision_id: str) -> GoalTree:
        """Nested view of a vision's active KPIs with their cached progress."""
        await self.get_vision(vision_id)
        records = await self.store.list_kpis_with_progress(vision_id)
        tree = build_tree(records)
        return GoalTree(
            vision_id=vision_id,
            tree=tree,
            total_kpis=count_tree_nodes(tree),
            last_calculated=get_latest_calculation_time(tree),
        )

    async def get_progress(self, kpi_id: str) -> ProgressRead:
        """
        The cached progress row of a KPI.

        A node without a row is computed on the fly; nothing is written.
        """
        await self.get_kpi(kpi_id)
        entry = await self.store.get_cache_entry(kpi_id)
        if entry is not None:
            return ProgressRead(kpi_id=kpi_id, progress=entry)
        return ProgressRead(kpi_id=kpi_id, progress=await self.recalculator.preview(kpi_id), cached=False)

    async def get_progress_summary(self, vision_id: str) -> VisionProgressSummary:
        await self.get_vision(vision_id)
        records = await self.store.list_kpis_with_progress(vision_id)
        return summarize_progress(vision_id, records)

    async def get_formula(self, kpi_id: str) -> FormulaReport:
        """The transparent breakdown of how a KPI's percentage is produced."""
        await self.get_kpi(kpi_id)
        node, children, formula = await self.recalculator.explain(kpi_id)
        return FormulaReport(
            kpi_id=node.id,
            title=node.title,
            level=node.level,
            parent_kpi_id=node.parent_kpi_id,
            formula=formula,
            summary=FormulaSummary(
                total_children=len(children),
                total_weight=formula.total_weight,
                result_percentage=formula.result_percentage,
                method=formula.method,
                is_override=formula.override_reason is not None,
            ),
        )

    async def get_streak(self, kpi_id: str, today: Optional[date] = None, period: str = "month") -> StreakSummary:
        """
        Streak, completion rate and at-risk flag of a KPI, recomputed from its logs.

        Recovery eligibility counts completed actions across the whole vision
        on the recovery day.
        """
        node = await self.get_kpi(kpi_id)
        today = today or self.today()
        logs = await self.store.get_logs(kpi_id, end=today, completed_only=True)
        dates = [log.log_date for log in logs]
        start = today - timedelta(days=self.config.streaks.history_days)
        actions = await self.store.count_completions_by_day(node.vision_id, start=start, end=today)
        record = compute_streak(dates, today, actions_per_day=actions, config=self.config.streaks)
        return StreakSummary(
            kpi_id=kpi_id,
            title=node.title,
            streak=record,
            completion_rate=completion_rate(dates, today, period),
            rate_period=period,
            at_risk=is_streak_at_risk(record),
        )

    async def get_streaks_at_risk(self, vision_id: str, today: Optional[date] = None) -> List[StreakSummary]:
        """Daily KPIs of a vision with a running streak and no completion yet today."""
        await self.get_vision(vision_id)
        summaries = []
        for node in await self.store.list_kpis(vision_id, level=KpiLevel.DAILY):
            summary = await self.get_streak(node.id, today=today)
            if summary.at_risk:
                summaries.append(summary)
        summaries.sort(key=lambda s: s.streak.current_streak, reverse=True)
        return summaries

    async def get_stale_goals(
        self,
        vision_id: str,
        threshold_days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[StaleGoal]:
        """Active KPIs with no activity within the threshold, most stale first."""
        await self.get_vision(vision_id)
        records = await self.store.list_kpis_with_progress(vision_id)
        return detect_stale_goals(
            records,
            now=self._clock(),
            threshold_days=threshold_days or self.config.stale.threshold_days,
            page_size=limit or self.config.stale.page_size,
        )

    # --- Maintenance ---

    async def recalculate(self, kpi_id: str) -> RecalculationResult:
        """Recalculate one KPI and its ancestor chain on demand."""
        await self.get_kpi(kpi_id)
        return await self.recalculator.recalculate(kpi_id)

    async def refresh_progress(self, kpi_id: str, force: bool = False) -> ProgressRefresh:
        """
        Recalculate a KPI and its ancestor chain on request.

        A node under manual override is left untouched unless ``force`` is
        set, in which case the override is dropped and the node recomputed.
        """
        await self.get_kpi(kpi_id)
        existing = await self.store.get_cache_entry(kpi_id)
        if existing is not None and existing.is_overridden and not force:
            logger.info(f"KPI '{kpi_id}' is under manual override; recalculation skipped.")
            return ProgressRefresh(kpi_id=kpi_id, skipped=True, progress=existing)
        result = await self.recalculator.recalculate(kpi_id, override=None if force else KEEP_OVERRIDE)
        return ProgressRefresh(kpi_id=kpi_id, progress=result.cache_row, recalculation=result)

    async def recalculate_vision(self, vision_id: str) -> List[ProgressCacheEntry]:
        """Rebuild every cache row of a vision, finest level first."""
        await self.get_vision(vision_id)
        return await self.recalculator.recalculate_all(vision_id)

    async def link_vision_hierarchy(self, vision_id: str) -> List[Tuple[str, str]]:
        """
        Attach unparented KPIs to their enclosing parents, then rebuild the cache.

        Monthly KPIs go to the quarterly KPI of their quarter; weekly and
        daily KPIs go to the nearest enclosing parent by date range.

        Returns:
            ``(child_id, parent_id)`` pairs that were linked.
        """
        await self.get_vision(vision_id)
        linked: List[Tuple[str, str]] = []
        async with self.store.transaction():
            nodes = await self.store.list_kpis(vision_id)
            for child, parent in plan_links(nodes):
                validate_parent(child, parent)
                child.parent_kpi_id = parent.id
                child.updated_at = self._clock()
                await self.store.save_kpi(child)
                linked.append((child.id, parent.id))
        logger.info(f"Linked {len(linked)} KPI(s) in vision '{vision_id}'.")
        if linked:
            await self.recalculator.recalculate_all(vision_id)
        return linked
