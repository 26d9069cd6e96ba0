# src/goalcore/progress/stale.py
"""
Zombie goal detection.

A pure filter and sort over already-cached data: an active node whose
``last_calculated_at`` (or creation time, if it was never calculated) is
older than the threshold is stale. Nothing is recomputed here.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Tuple

from ..models import KpiWithProgress, StaleGoal


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def last_activity(record: KpiWithProgress) -> datetime:
    """The time a node was last touched: its last calculation, else its creation."""
    if record.cache is not None and record.cache.last_calculated_at is not None:
        return _aware(record.cache.last_calculated_at)
    return _aware(record.node.created_at)


def detect_stale_goals(
    records: Iterable[KpiWithProgress],
    now: datetime,
    threshold_days: int = 14,
    page_size: int = 20,
) -> List[StaleGoal]:
    """
    Flag active nodes with no activity within ``threshold_days``.

    Args:
        records: KPI nodes joined with their cache rows.
        now: Reference time.
        threshold_days: A node is stale when its last activity is strictly
            older than this many days.
        page_size: Maximum number of results.

    Returns:
        Stale goals, most stale first.
    """
    now = _aware(now)
    cutoff = now - timedelta(days=threshold_days)

    candidates: List[Tuple[datetime, KpiWithProgress]] = []
    for record in records:
        if not record.node.is_active:
            continue
        reference = last_activity(record)
        if reference < cutoff:
            candidates.append((reference, record))

    candidates.sort(key=lambda item: item[0])
    return [
        StaleGoal(
            kpi_id=record.node.id,
            vision_id=record.node.vision_id,
            title=record.node.title,
            level=record.node.level,
            last_activity=reference,
            days_since_activity=(now - reference).days,
            progress=record.progress,
            status=record.status,
        )
        for reference, record in candidates[:max(0, page_size)]
    ]
