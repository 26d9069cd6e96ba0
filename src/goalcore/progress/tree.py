# src/goalcore/progress/tree.py
"""
Read-side tree assembly.

Turns the flat, cache-joined KPI records of one vision into an ordered
forest of :class:`~goalcore.models.KpiTreeNode`. The input is untrusted
foreign-key data: a parent that is missing from the input, or a parent
chain that loops back on itself, never fails the build. Such nodes are
promoted to roots instead.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..models import KpiTreeNode, KpiWithProgress

logger = logging.getLogger(__name__)


def _sort_key(node: KpiTreeNode):
    return (node.level.rank, node.sort_order)


def _resolve_parents(records: Sequence[KpiWithProgress]) -> Dict[str, Optional[str]]:
    """
    Decide each node's effective parent id (None for roots).

    Nodes are processed in input order. From a candidate parent we walk up
    the chain, following effective parents of nodes already processed and
    raw parents of the rest; reaching the node itself means it sits on a
    cycle and becomes a root. The resulting parent graph is acyclic.
    """
    raw_parent = {r.node.id: r.node.parent_kpi_id for r in records}
    effective: Dict[str, Optional[str]] = {}

    for record in records:
        node_id = record.node.id
        parent_id = raw_parent[node_id]
        if parent_id is None:
            effective[node_id] = None
            continue
        if parent_id not in raw_parent:
            logger.debug(f"KPI '{node_id}' references missing parent '{parent_id}'; treating as root.")
            effective[node_id] = None
            continue

        visited: Set[str] = set()
        current: Optional[str] = parent_id
        on_cycle = False
        while current is not None and current in raw_parent and current not in visited:
            if current == node_id:
                on_cycle = True
                break
            visited.add(current)
            current = effective[current] if current in effective else raw_parent[current]

        if on_cycle:
            logger.warning(f"KPI '{node_id}' is part of a parent cycle; treating as root.")
            effective[node_id] = None
        else:
            effective[node_id] = parent_id

    return effective


def build_tree(records: Sequence[KpiWithProgress]) -> List[KpiTreeNode]:
    """
    Build an ordered forest from flat KPI records.

    Args:
        records: Active KPI nodes of one vision joined with their cache rows.
            Duplicate ids keep the first occurrence.

    Returns:
        Root nodes, each carrying its resolved children. Siblings (and roots)
        are ordered by level, then ``sort_order``; ties keep input order.
    """
    unique: List[KpiWithProgress] = []
    seen: Set[str] = set()
    for record in records:
        if record.node.id in seen:
            logger.warning(f"Duplicate KPI id '{record.node.id}' in tree input; keeping first.")
            continue
        seen.add(record.node.id)
        unique.append(record)

    index: Dict[str, KpiTreeNode] = {r.node.id: KpiTreeNode.from_record(r) for r in unique}
    parents = _resolve_parents(unique)

    roots: List[KpiTreeNode] = []
    for record in unique:
        tree_node = index[record.node.id]
        parent_id = parents[record.node.id]
        if parent_id is None:
            roots.append(tree_node)
        else:
            index[parent_id].children.append(tree_node)

    for tree_node in index.values():
        tree_node.children.sort(key=_sort_key)
    roots.sort(key=_sort_key)
    return roots


def count_tree_nodes(tree: Iterable[KpiTreeNode]) -> int:
    """Total number of nodes in a forest, counting each node once."""
    return sum(1 + count_tree_nodes(node.children) for node in tree)


def get_latest_calculation_time(tree: Iterable[KpiTreeNode]) -> Optional[datetime]:
    """Most recent ``last_calculated_at`` across the forest, or None if nothing was ever calculated."""
    latest: Optional[datetime] = None
    stack = list(tree)
    while stack:
        node = stack.pop()
        if node.last_calculated_at is not None and (latest is None or node.last_calculated_at > latest):
            latest = node.last_calculated_at
        stack.extend(node.children)
    return latest
