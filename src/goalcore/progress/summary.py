# src/goalcore/progress/summary.py
"""
Vision-wide progress aggregates.

Counts a vision's active KPIs per status and per level and averages their
cached percentages. Nodes without a cache row count as not started at 0%.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ..models import (KpiLevel, KpiWithProgress, LevelSummary, ProgressStatus,
                      VisionProgressSummary)
from .formula import count_completed


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize_progress(vision_id: str, records: Sequence[KpiWithProgress]) -> VisionProgressSummary:
    """
    Aggregate the cached progress of a vision's KPIs.

    Every status appears in ``status_counts``, zero included. Levels are
    listed coarsest first and only when they hold at least one node.
    """
    status_counts: Dict[ProgressStatus, int] = {status: 0 for status in ProgressStatus}
    by_level: Dict[KpiLevel, List[float]] = {}
    last_calculated: Optional[datetime] = None

    for record in records:
        status_counts[record.status] += 1
        by_level.setdefault(record.node.level, []).append(record.progress)
        calculated = record.cache.last_calculated_at if record.cache else None
        if calculated is not None and (last_calculated is None or calculated > last_calculated):
            last_calculated = calculated

    levels = []
    for level in sorted(by_level, key=lambda lv: lv.rank):
        values = by_level[level]
        levels.append(LevelSummary(
            level=level,
            count=len(values),
            completed=count_completed(values),
            average_progress=_mean(values),
        ))

    return VisionProgressSummary(
        vision_id=vision_id,
        total_kpis=len(records),
        status_counts=status_counts,
        levels=levels,
        average_progress=_mean([r.progress for r in records]),
        vision_progress=levels[0].average_progress if levels else 0.0,
        last_calculated=last_calculated,
    )


__all__ = ["summarize_progress"]
