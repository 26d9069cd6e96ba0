# src/goalcore/progress/streaks.py
"""
Streak computation over completion dates.

Streak values are never stored or mutated incrementally: they are always
recomputed from the set of completion dates, so a backfilled or corrected
log immediately yields the right numbers.

Weekly recovery: a streak broken by exactly one missed day may be bridged
once per ISO week, provided the user completed at least
``recovery_min_actions`` qualifying actions on the day after the missed
day (the recovery day). The per-week state is ``available`` until a
recovery is applied in that week, then ``used``; a new ISO week starts
``available`` again.
"""

from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..config.models import StreaksConfig
from ..models import RecoveryState, StreakRecord

ONE_DAY = timedelta(days=1)

# Window lengths, in days, for completion_rate.
RATE_PERIODS: Dict[str, int] = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}


def _iso_week(day: date) -> Tuple[int, int]:
    iso = day.isocalendar()
    return iso[0], iso[1]


def longest_run(dates: Iterable[date]) -> int:
    """Longest run of consecutive calendar days in ``dates``."""
    longest = 0
    run = 0
    previous: Optional[date] = None
    for day in sorted(set(dates)):
        if previous is not None and day - previous == ONE_DAY:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day
    return longest


def compute_streak(
    dates: Iterable[date],
    today: date,
    actions_per_day: Optional[Mapping[date, int]] = None,
    config: Optional[StreaksConfig] = None,
) -> StreakRecord:
    """
    Compute current and longest streaks from completion dates.

    Args:
        dates: Completion dates of one recurring item; duplicates are ignored.
        today: Reference date. Dates after it are ignored for the current
            streak.
        actions_per_day: Qualifying actions completed per date, used to decide
            whether a one-day gap can be recovered. Without it no recovery is
            applied.
        config: Recovery policy.

    Returns:
        The derived :class:`~goalcore.models.StreakRecord`.

    Examples:
        >>> from datetime import date
        >>> days = [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 5)]
        >>> record = compute_streak(days, today=date(2024, 1, 6))
        >>> (record.current_streak, record.longest_streak)
        (1, 3)
    """
    config = config or StreaksConfig()
    unique = set(dates)
    past = sorted((d for d in unique if d <= today), reverse=True)

    current = 0
    recovered: List[date] = []
    used_weeks: Set[Tuple[int, int]] = set()

    if past and past[0] >= today - ONE_DAY:
        current = 1
        counted = past[0]
        for day in past[1:]:
            gap = counted - day
            if gap == ONE_DAY:
                current += 1
                counted = day
                continue
            if gap == 2 * ONE_DAY and config.recovery_enabled and actions_per_day is not None:
                # ``counted`` is the recovery day that follows the missed day.
                week = _iso_week(counted)
                if week not in used_weeks and actions_per_day.get(counted, 0) >= config.recovery_min_actions:
                    used_weeks.add(week)
                    recovered.append(counted - ONE_DAY)
                    current += 1
                    counted = day
                    continue
            break

    longest = max(longest_run(unique), current)
    recovery_state = RecoveryState.USED if _iso_week(today) in used_weeks else RecoveryState.AVAILABLE

    return StreakRecord(
        current_streak=current,
        longest_streak=longest,
        last_activity_date=max(unique) if unique else None,
        is_active_today=today in unique,
        recovery_state=recovery_state,
        recovered_dates=sorted(recovered),
    )


def completion_rate(dates: Iterable[date], today: date, period: str = "month") -> float:
    """
    Share of days with a completion in the window ending today, as a percentage.

    Raises:
        ValueError: If ``period`` is not one of week, month, quarter, year.
    """
    if period not in RATE_PERIODS:
        raise ValueError(f"Unknown period '{period}'. Expected one of: {', '.join(RATE_PERIODS)}")
    total_days = RATE_PERIODS[period]
    start = today - timedelta(days=total_days - 1)
    active_days = {d for d in dates if start <= d <= today}
    return len(active_days) / total_days * 100.0


def is_streak_at_risk(record: StreakRecord) -> bool:
    """A running streak is at risk when nothing has been completed yet today."""
    return record.current_streak > 0 and not record.is_active_today
