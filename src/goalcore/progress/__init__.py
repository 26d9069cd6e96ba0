# src/goalcore/progress/__init__.py
"""
Hierarchical progress aggregation for GoalCore.

Submodules:
    tree: Flat KPI records to an ordered, cycle-safe forest.
    formula: Weighted rollup, leaf percentage and status policy.
    recalculator: Bottom-up cache maintenance along an ancestor chain.
    streaks: Current/longest streaks with weekly recovery.
    stale: Zombie goal detection.
    hierarchy: Parent/child rules and date-range auto-linking.
    summary: Per-status and per-level aggregates of a vision.
"""

from .formula import compute_formula, derive_status, leaf_formula
from .recalculator import CacheRecalculator
from .stale import detect_stale_goals
from .streaks import completion_rate, compute_streak, is_streak_at_risk
from .summary import summarize_progress
from .tree import build_tree, count_tree_nodes, get_latest_calculation_time

__all__ = [
    "CacheRecalculator",
    "build_tree",
    "completion_rate",
    "compute_formula",
    "compute_streak",
    "count_tree_nodes",
    "derive_status",
    "detect_stale_goals",
    "get_latest_calculation_time",
    "is_streak_at_risk",
    "leaf_formula",
    "summarize_progress",
]
