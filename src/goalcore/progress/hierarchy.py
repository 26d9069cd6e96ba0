# src/goalcore/progress/hierarchy.py
"""
Hierarchy rules and automatic parent linking.

Rules enforced on every structural write:
    - A child is exactly one level finer than its parent.
    - Parent and child belong to the same vision.
    - A node's parent chain never leads back to the node itself.

``plan_links`` proposes parents for unparented nodes after a bulk import:
monthly nodes go to the quarterly node of their quarter, weekly and daily
nodes go to the nearest enclosing parent by date range.
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..exceptions import InvalidHierarchyError
from ..models import KpiLevel, KpiNode
from ..storage.base_store import BaseKpiStore

logger = logging.getLogger(__name__)

DateRange = Tuple[date, date]


def validate_parent(child: KpiNode, parent: Optional[KpiNode]) -> None:
    """
    Check that ``parent`` may hold ``child``.

    Raises:
        InvalidHierarchyError: On self-parenting, inactive or cross-vision
            parents, or a level mismatch.
    """
    if parent is None:
        return
    if parent.id == child.id:
        raise InvalidHierarchyError(f"KPI '{child.id}' cannot be its own parent.", kpi_id=child.id)
    if not parent.is_active:
        raise InvalidHierarchyError(f"Parent KPI '{parent.id}' is inactive.", kpi_id=child.id)
    if parent.vision_id != child.vision_id:
        raise InvalidHierarchyError(
            f"Parent KPI '{parent.id}' belongs to vision '{parent.vision_id}', "
            f"not '{child.vision_id}'.",
            kpi_id=child.id,
        )
    expected = parent.level.child_level
    if expected is None:
        raise InvalidHierarchyError(
            f"A {parent.level.value} KPI cannot have children (parent '{parent.id}').",
            kpi_id=child.id,
        )
    if child.level != expected:
        raise InvalidHierarchyError(
            f"A {parent.level.value} KPI's children must be {expected.value}, "
            f"got {child.level.value} for KPI '{child.id}'.",
            kpi_id=child.id,
        )


async def ensure_no_cycle(store: BaseKpiStore, kpi_id: str, new_parent_id: Optional[str]) -> None:
    """
    Walk up from ``new_parent_id`` and fail if the chain reaches ``kpi_id``.

    Raises:
        InvalidHierarchyError: If attaching would create a cycle.
    """
    visited: Set[str] = set()
    current_id = new_parent_id
    while current_id is not None and current_id not in visited:
        if current_id == kpi_id:
            raise InvalidHierarchyError(
                f"Attaching KPI '{kpi_id}' under '{new_parent_id}' would create a cycle.",
                kpi_id=kpi_id,
            )
        visited.add(current_id)
        current = await store.get_kpi(current_id)
        current_id = current.parent_kpi_id if current is not None else None


# --- Date-range linking ---


def node_range(node: KpiNode) -> Optional[DateRange]:
    """
    Inclusive date range a node covers, or None if it carries no dates.

    A missing bound is derived from the level's nominal length.
    """
    span = timedelta(days=node.level.nominal_days - 1)
    if node.start_date and node.due_date:
        return min(node.start_date, node.due_date), max(node.start_date, node.due_date)
    if node.due_date:
        return node.due_date - span, node.due_date
    if node.start_date:
        return node.start_date, node.start_date + span
    return None


def quarter_of(node: KpiNode) -> Optional[int]:
    """Quarter (1-4) of a quarterly or monthly node from its fields or dates."""
    if node.level == KpiLevel.QUARTERLY and node.quarter:
        return node.quarter
    if node.month:
        return (node.month - 1) // 3 + 1
    if node.quarter:
        return node.quarter
    anchor = node.due_date or node.start_date
    return (anchor.month - 1) // 3 + 1 if anchor else None


def _encloses(outer: DateRange, inner: DateRange) -> bool:
    return outer[0] <= inner[0] and inner[1] <= outer[1]


def _pick_quarter(child: KpiNode, candidates: Sequence[KpiNode]) -> Optional[KpiNode]:
    quarter = quarter_of(child)
    if quarter is None:
        return None
    matches = [c for c in candidates if quarter_of(c) == quarter]
    child_range = node_range(child)
    if child_range is not None:
        dated = [c for c in matches if node_range(c) is not None]
        enclosing = [c for c in dated if _encloses(node_range(c), child_range)]
        if enclosing:
            matches = enclosing
        elif dated:
            # Same quarter number but another year.
            matches = [c for c in matches if node_range(c) is None]
    if len(matches) > 1:
        logger.debug(f"{len(matches)} quarterly candidates for KPI '{child.id}'; using lowest sort order.")
    return min(matches, key=lambda c: c.sort_order) if matches else None


def _pick_enclosing(child: KpiNode, candidates: Sequence[KpiNode]) -> Optional[KpiNode]:
    child_range = node_range(child)
    if child_range is None:
        return None
    best: Optional[KpiNode] = None
    best_key: Optional[Tuple[int, int, int]] = None
    for candidate in candidates:
        candidate_range = node_range(candidate)
        if candidate_range is None or not _encloses(candidate_range, child_range):
            continue
        span = (candidate_range[1] - candidate_range[0]).days
        distance = abs((candidate_range[1] - child_range[1]).days)
        key = (span, distance, candidate.sort_order)
        if best_key is None or key < best_key:
            best, best_key = candidate, key
    return best


def plan_links(nodes: Iterable[KpiNode]) -> List[Tuple[KpiNode, KpiNode]]:
    """
    Propose a parent for every active, unparented non-quarterly node.

    Returns:
        ``(child, parent)`` pairs. Nodes with no suitable parent are left out.
    """
    by_level: Dict[KpiLevel, List[KpiNode]] = {level: [] for level in KpiLevel}
    for node in nodes:
        if node.is_active:
            by_level[node.level].append(node)

    links: List[Tuple[KpiNode, KpiNode]] = []
    for level in (KpiLevel.MONTHLY, KpiLevel.WEEKLY, KpiLevel.DAILY):
        candidates = by_level[level.parent_level]
        if not candidates:
            continue
        for child in by_level[level]:
            if child.parent_kpi_id is not None:
                continue
            if level == KpiLevel.MONTHLY:
                parent = _pick_quarter(child, candidates)
            else:
                parent = _pick_enclosing(child, candidates)
            if parent is None:
                logger.debug(f"No enclosing {level.parent_level.value} KPI found for '{child.id}'.")
                continue
            links.append((child, parent))
    return links
