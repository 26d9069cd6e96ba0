# src/goalcore/progress/recalculator.py
"""
Bottom-up progress cache maintenance.

When a leaf's completion state or the structure around a node changes,
:class:`CacheRecalculator` brings the cache row of that node and of every
active ancestor up to date, strictly child before parent.

Each node is one atomic unit: inside a single store transaction the node's
active children are read fresh, its percentage is computed and its cache
row is upserted with an optimistic version check. A write that observed a
concurrent modification is retried a bounded number of times. A failure
part way up the chain leaves the rows already written intact and is
reported as :class:`~goalcore.exceptions.RecalculationError`.

Nodes under manual override keep their percentage; only their child counts
and auto-rollup figures are refreshed. The walk continues past them, and
the override value takes part in the parent's rollup like any other
child's progress.
"""

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Set, Tuple

from ..config.models import ProgressConfig
from ..exceptions import (ConcurrentWriteStaleError, InvalidHierarchyError,
                          NotFoundError, RecalculationError)
from ..metrics import record_recalculation, record_stale_retry
from ..models import (AncestorUpdate, CalculationMethod, KpiNode,
                      KpiWithProgress, ManualOverride, ProgressCacheEntry,
                      ProgressFormula, RecalculationResult, WeightedKpi)
from ..storage.base_store import BaseKpiStore
from .formula import (compute_formula, compute_leaf_percentage, count_completed,
                      derive_status, leaf_formula, leaf_window)

logger = logging.getLogger(__name__)

# Keep whatever override the node's cache row already carries.
KEEP_OVERRIDE: Any = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_weighted(children: Sequence[KpiWithProgress]) -> List[WeightedKpi]:
    return [
        WeightedKpi(id=c.node.id, title=c.node.title, progress=c.progress, weight=c.node.weight)
        for c in children
    ]


def override_of(entry: Optional[ProgressCacheEntry]) -> Optional[ManualOverride]:
    """The manual override stored in a cache row, if the row is overridden."""
    if entry is None or not entry.is_overridden:
        return None
    return ManualOverride(
        manual_percentage=entry.progress_percentage,
        reason=entry.manual_override_reason or "Manual override",
    )


class CacheRecalculator:
    """
    Recomputes and persists progress along one ancestor chain.

    Args:
        store: The KPI store holding nodes, logs and cache rows.
        config: Status policy and retry settings.
        clock: Returns the current time; "today" for leaf windows and the
            at-risk policy is derived from it.
    """

    def __init__(
        self,
        store: BaseKpiStore,
        config: Optional[ProgressConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.config = config or ProgressConfig()
        self._clock = clock

    def today(self) -> date:
        return self._clock().date()

    # --- Computation ---

    async def compute(
        self,
        node: KpiNode,
        children: Sequence[KpiWithProgress],
        override: Optional[ManualOverride] = None,
    ) -> Tuple[ProgressFormula, ProgressCacheEntry]:
        """
        Compute a node's formula and the cache row it would produce.

        Nothing is written. Leaves without an override read their completion
        logs from the store.
        """
        now = self._clock()
        today = now.date()
        children_progress = [c.progress for c in children]
        weighted = _to_weighted(children)
        counts = {
            "child_count": len(children),
            "completed_child_count": count_completed(children_progress),
        }

        if override is not None:
            formula = compute_formula(weighted, override)
            entry = ProgressCacheEntry(
                kpi_id=node.id,
                progress_percentage=formula.result_percentage,
                status=derive_status(formula.result_percentage, children_progress, node, today, self.config),
                calculation_method=CalculationMethod.MANUAL_OVERRIDE,
                manual_override_reason=override.reason,
                weighted_progress=formula.auto_percentage if children else None,
                total_weight=formula.total_weight,
                last_calculated_at=now,
                **counts,
            )
            return formula, entry

        if children:
            formula = compute_formula(weighted)
            entry = ProgressCacheEntry(
                kpi_id=node.id,
                progress_percentage=formula.result_percentage,
                status=derive_status(formula.result_percentage, children_progress, node, today, self.config),
                calculation_method=CalculationMethod.WEIGHTED_ROLLUP,
                weighted_progress=formula.result_percentage,
                total_weight=formula.total_weight,
                last_calculated_at=now,
                **counts,
            )
            return formula, entry

        start, end = leaf_window(node, today)
        logs = await self.store.get_logs(node.id, start=start, end=end)
        percentage, detail = compute_leaf_percentage(node, logs, today)
        formula = leaf_formula(percentage, detail)
        entry = ProgressCacheEntry(
            kpi_id=node.id,
            progress_percentage=formula.result_percentage,
            status=derive_status(formula.result_percentage, (), node, today, self.config),
            calculation_method=CalculationMethod.DIRECT_LOG,
            last_calculated_at=now,
            **counts,
        )
        return formula, entry

    async def explain(self, kpi_id: str) -> Tuple[KpiNode, List[KpiWithProgress], ProgressFormula]:
        """
        Build the formula for a node from the same inputs a recalculation uses.

        A cached leaf is explained as of its last calculation, so the report
        agrees with the stored row even after the day has rolled over.

        Raises:
            NotFoundError: If the KPI does not exist.
        """
        async with self.store.transaction():
            node = await self.store.get_kpi(kpi_id)
            if node is None:
                raise NotFoundError("KPI", kpi_id)
            existing = await self.store.get_cache_entry(kpi_id)
            children = await self.store.get_active_children(kpi_id)
            override = override_of(existing)
            if (existing is not None and existing.last_calculated_at is not None
                    and override is None and not children):
                as_of = existing.last_calculated_at.date()
                start, end = leaf_window(node, as_of)
                logs = await self.store.get_logs(node.id, start=start, end=end)
                _, detail = compute_leaf_percentage(node, logs, as_of)
                formula = leaf_formula(existing.progress_percentage, detail)
            else:
                formula, _ = await self.compute(node, children, override)
        return node, children, formula

    async def preview(self, kpi_id: str) -> ProgressCacheEntry:
        """The cache row a recalculation would write now, without writing it."""
        async with self.store.transaction():
            node = await self.store.get_kpi(kpi_id)
            if node is None:
                raise NotFoundError("KPI", kpi_id)
            existing = await self.store.get_cache_entry(kpi_id)
            children = await self.store.get_active_children(kpi_id)
            _, entry = await self.compute(node, children, override_of(existing))
        return entry

    # --- Persistence ---

    async def _write_node(self, kpi_id: str, override: Any) -> Tuple[KpiNode, ProgressCacheEntry]:
        async with self.store.transaction():
            node = await self.store.get_kpi(kpi_id)
            if node is None:
                raise NotFoundError("KPI", kpi_id)
            existing = await self.store.get_cache_entry(kpi_id)
            children = await self.store.get_active_children(kpi_id)
            if override is KEEP_OVERRIDE:
                override = override_of(existing)
            _, entry = await self.compute(node, children, override)
            stored = await self.store.upsert_cache_entry(
                entry, existing.version if existing is not None else None
            )
        logger.debug(
            f"Recalculated KPI '{kpi_id}' ({node.level.value}): "
            f"{stored.progress_percentage:.2f}% {stored.status.value} via {stored.calculation_method.value}"
        )
        return node, stored

    async def recalculate_node(self, kpi_id: str, override: Any = KEEP_OVERRIDE) -> Tuple[KpiNode, ProgressCacheEntry]:
        """
        Recalculate one node's cache row, retrying stale writes.

        Args:
            kpi_id: The node to write.
            override: A :class:`ManualOverride` to apply, None to clear any
                override, or ``KEEP_OVERRIDE`` to keep the stored one.

        Raises:
            NotFoundError: If the KPI does not exist.
            ConcurrentWriteStaleError: If every attempt observed a concurrent write.
            StoreUnavailableError: If the store failed; never retried here.
        """
        attempts = self.config.max_stale_write_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._write_node(kpi_id, override)
            except ConcurrentWriteStaleError:
                if attempt >= attempts:
                    raise
                record_stale_retry()
                logger.warning(
                    f"Concurrent write on cache row of KPI '{kpi_id}' "
                    f"(attempt {attempt}/{attempts}); re-reading children and retrying."
                )
        raise ConcurrentWriteStaleError(kpi_id=kpi_id)

    async def recalculate(
        self,
        kpi_id: str,
        include_self: bool = True,
        override: Any = KEEP_OVERRIDE,
    ) -> RecalculationResult:
        """
        Recalculate a node and then every active ancestor, bottom-up.

        Args:
            kpi_id: The node whose state changed.
            include_self: When False the node's own row is left as is and the
                walk starts at its parent (weight edits, deactivation).
            override: Override to apply to the starting node; see
                :meth:`recalculate_node`.

        Returns:
            The starting node's cache row and the ancestor ids actually written.

        Raises:
            NotFoundError: If ``kpi_id`` does not exist.
            InvalidHierarchyError: If the parent chain loops back on itself.
            RecalculationError: If a write failed above the starting node;
                rows listed in ``written`` stay committed.
        """
        started = time.perf_counter()
        written: List[str] = []
        try:
            result = await self._walk(kpi_id, include_self, override, written, started)
        except Exception as e:
            record_recalculation(time.perf_counter() - started, len(written), error=type(e).__name__)
            raise
        record_recalculation(result.duration_ms / 1000.0, len(written))
        return result

    async def _walk(
        self,
        kpi_id: str,
        include_self: bool,
        override: Any,
        written: List[str],
        started: float,
    ) -> RecalculationResult:
        node = await self.store.get_kpi(kpi_id)
        if node is None:
            raise NotFoundError("KPI", kpi_id)

        updates: List[AncestorUpdate] = []
        visited: Set[str] = {node.id}
        cache_row: Optional[ProgressCacheEntry] = None

        current: Optional[KpiNode] = node
        if not include_self:
            current = await self._next_parent(node, visited)

        while current is not None:
            try:
                if current.id == kpi_id:
                    current, entry = await self.recalculate_node(current.id, override)
                else:
                    current, entry = await self.recalculate_node(current.id)
            except Exception as e:
                if current.id == kpi_id:
                    raise
                logger.error(
                    f"Recalculation of KPI '{current.id}' failed after writing {len(written)} row(s) "
                    f"for change on '{kpi_id}'.",
                    exc_info=True,
                )
                raise RecalculationError(kpi_id=current.id, written=written) from e

            written.append(current.id)
            if current.id == kpi_id:
                cache_row = entry
            else:
                updates.append(AncestorUpdate(
                    kpi_id=current.id,
                    level=current.level,
                    title=current.title,
                    progress_percentage=entry.progress_percentage,
                    status=entry.status,
                    child_count=entry.child_count,
                    completed_child_count=entry.completed_child_count,
                    calculation_method=entry.calculation_method,
                ))
            current = await self._next_parent(current, visited)

        if cache_row is None:
            cache_row = await self.store.get_cache_entry(kpi_id)

        duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            f"Recalculated chain from KPI '{kpi_id}': {len(updates)} ancestor(s) updated in {duration_ms:.1f} ms."
        )
        return RecalculationResult(
            kpi_id=kpi_id,
            cache_row=cache_row,
            ancestors_updated=[u.kpi_id for u in updates],
            updates=updates,
            duration_ms=duration_ms,
        )

    async def _next_parent(self, node: KpiNode, visited: Set[str]) -> Optional[KpiNode]:
        """The active parent the walk continues to, or None where it stops."""
        if not node.parent_kpi_id:
            return None
        parent = await self.store.get_kpi(node.parent_kpi_id)
        if parent is None or not parent.is_active:
            logger.debug(f"Walk stops at KPI '{node.id}': parent '{node.parent_kpi_id}' missing or inactive.")
            return None
        if parent.id in visited:
            raise InvalidHierarchyError(
                f"Parent cycle detected above KPI '{node.id}' at '{parent.id}'.",
                kpi_id=parent.id,
            )
        visited.add(parent.id)
        return parent

    async def recalculate_all(self, vision_id: str) -> List[ProgressCacheEntry]:
        """
        Recompute every active node of a vision, finest level first.

        Each node is its own unit of work, so children are always written
        before their parents read them.
        """
        started = time.perf_counter()
        nodes = await self.store.list_kpis(vision_id)
        nodes.sort(key=lambda n: (-n.level.rank, n.sort_order))
        rows: List[ProgressCacheEntry] = []
        try:
            for node in nodes:
                _, entry = await self.recalculate_node(node.id)
                rows.append(entry)
        except Exception as e:
            record_recalculation(time.perf_counter() - started, len(rows), error=type(e).__name__)
            raise
        record_recalculation(time.perf_counter() - started, len(rows))
        logger.info(
            f"Rebuilt {len(rows)} cache row(s) for vision '{vision_id}' "
            f"in {(time.perf_counter() - started) * 1000.0:.1f} ms."
        )
        return rows


__all__ = ["CacheRecalculator", "KEEP_OVERRIDE", "override_of"]
