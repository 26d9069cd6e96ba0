# src/goalcore/progress/formula.py
"""
Progress formula and status policy.

The weighted rollup is a pure function of a node's children::

    result = Σ(progress_i × weight_i) / Σ(weight_i)

Each child's contribution ``(progress_i × weight_i) / Σ(weight_i)`` is
exposed so that the contributions sum to the result, and a human-readable
formula string such as ``"(80×1 + 60×2) / 3 = 66.7%"`` is produced for the
transparency endpoint.

Leaves have no children; their percentage comes from their own completion
logs (:func:`compute_leaf_percentage`) and is wrapped with
:func:`leaf_formula` so that the stored cache row and the formula endpoint
always agree.

Fractional precision is carried through every computation; rounding only
happens for display.
"""

from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from ..config.models import ProgressConfig
from ..models import (CalculationMethod, CompletionLog, KpiLevel, KpiNode,
                      ManualOverride, ProgressComponent, ProgressFormula,
                      ProgressStatus, WeightedKpi)

COMPLETE_PERCENTAGE = 100.0


def _clamp(value: float, low: float = 0.0, high: float = COMPLETE_PERCENTAGE) -> float:
    return max(low, min(high, value))


def format_number(value: float) -> str:
    """
    Format a number for formula strings: at most one decimal, no trailing ``.0``.

    Examples:
        >>> format_number(66.6666)
        '66.7'
        >>> format_number(3.0)
        '3'
    """
    text = f"{value:.1f}"
    return text[:-2] if text.endswith(".0") else text


def _effective_weights(children: Sequence[WeightedKpi]) -> List[float]:
    weights = [max(0.0, child.weight) for child in children]
    if sum(weights) <= 0.0:
        # Misconfigured data: fall back to uniform weighting.
        return [1.0] * len(children)
    return weights


def _weighted_rollup(children: Sequence[WeightedKpi]) -> ProgressFormula:
    weights = _effective_weights(children)
    total_weight = sum(weights)

    components: List[ProgressComponent] = []
    for child, weight in zip(children, weights):
        progress = _clamp(child.progress)
        components.append(
            ProgressComponent(
                kpi_id=child.id,
                kpi_title=child.title,
                progress=progress,
                weight=weight,
                contribution=progress * weight / total_weight,
            )
        )

    result = _clamp(sum(c.contribution for c in components))
    terms = " + ".join(f"{format_number(c.progress)}×{format_number(c.weight)}" for c in components)
    formula = f"({terms}) / {format_number(total_weight)} = {format_number(result)}%"

    return ProgressFormula(
        result_percentage=result,
        method=CalculationMethod.WEIGHTED_ROLLUP,
        components=components,
        formula=formula,
        total_weight=total_weight,
    )


def compute_formula(
    children: Sequence[WeightedKpi],
    override: Optional[ManualOverride] = None,
) -> ProgressFormula:
    """
    Compute a node's percentage from its children or a manual override.

    Args:
        children: Active children with their current progress and weight.
        override: Manual override in effect for the node, if any.

    Returns:
        The formula breakdown. With an override the result is exactly the
        override percentage, the component list is empty and
        ``auto_percentage`` reports what the rollup would have produced. With
        no children the result is 0 with method ``direct_log``; callers must
        take a leaf's percentage from its logs instead.
    """
    if override is not None:
        auto = _weighted_rollup(children) if children else None
        auto_percentage = auto.result_percentage if auto else 0.0
        return ProgressFormula(
            result_percentage=override.manual_percentage,
            method=CalculationMethod.MANUAL_OVERRIDE,
            components=[],
            formula=(
                f"Manual override: {format_number(override.manual_percentage)}% "
                f"(auto-calc would be {format_number(auto_percentage)}%)"
            ),
            override_reason=override.reason,
            auto_percentage=auto_percentage,
            total_weight=auto.total_weight if auto else 0.0,
        )

    if not children:
        return ProgressFormula(
            result_percentage=0.0,
            method=CalculationMethod.DIRECT_LOG,
            components=[],
            formula="No child items; progress comes from completion logs",
        )

    return _weighted_rollup(children)


def leaf_formula(percentage: float, detail: str = "") -> ProgressFormula:
    """Wrap a log-derived leaf percentage as a ``direct_log`` formula."""
    percentage = _clamp(percentage)
    text = f"Direct log: {format_number(percentage)}%"
    if detail:
        text = f"{text} ({detail})"
    return ProgressFormula(
        result_percentage=percentage,
        method=CalculationMethod.DIRECT_LOG,
        components=[],
        formula=text,
    )


# --- Leaf percentage from logs ---


def leaf_window(node: KpiNode, today: date) -> Tuple[date, date]:
    """
    Inclusive date window whose logs count towards a leaf's percentage.

    Daily nodes look at a single day: their ``due_date`` (specific target
    date) or today. Other leaves span ``start_date`` (or one nominal period
    back) up to their ``due_date`` (or today).
    """
    end = node.due_date or today
    if node.level == KpiLevel.DAILY:
        return end, end
    start = node.start_date or (end - timedelta(days=node.level.nominal_days - 1))
    return min(start, end), end


def compute_leaf_percentage(node: KpiNode, logs: Iterable[CompletionLog], today: date) -> Tuple[float, str]:
    """
    Percentage of a childless node computed from its completion logs.

    - With a ``numeric_target``: ``min(100, Σ value / target × 100)`` over
      the window.
    - Otherwise: 100 if the window holds a completed log, else 0.

    Returns:
        ``(percentage, detail)`` where ``detail`` explains the value.
    """
    start, end = leaf_window(node, today)
    in_window = [log for log in logs if start <= log.log_date <= end]

    if node.numeric_target:
        total = 0.0
        for log in in_window:
            if log.value is not None:
                total += log.value
            elif log.is_completed and node.level == KpiLevel.DAILY:
                total += node.numeric_target
        percentage = _clamp(total / node.numeric_target * COMPLETE_PERCENTAGE)
        unit = f" {node.unit}" if node.unit else ""
        return percentage, f"{format_number(total)}/{format_number(node.numeric_target)}{unit}"

    completed = any(log.is_completed for log in in_window)
    if start == end:
        detail = f"{'completed' if completed else 'not completed'} on {end.isoformat()}"
    else:
        detail = f"{'completed' if completed else 'no completion'} between {start.isoformat()} and {end.isoformat()}"
    return (COMPLETE_PERCENTAGE if completed else 0.0), detail


# --- Status policy ---


def time_remaining_fraction(node: KpiNode, today: date) -> Optional[float]:
    """
    Fraction of the node's time window still ahead of ``today``.

    Returns None when the node has no due date. Overdue nodes report 0.
    """
    if node.due_date is None:
        return None
    start = node.start_date or (node.due_date - timedelta(days=node.level.nominal_days))
    total_days = max(1, (node.due_date - start).days)
    remaining_days = max(0, (node.due_date - today).days)
    return min(1.0, remaining_days / total_days)


def derive_status(
    percentage: float,
    children_progress: Sequence[float] = (),
    node: Optional[KpiNode] = None,
    today: Optional[date] = None,
    config: Optional[ProgressConfig] = None,
) -> ProgressStatus:
    """
    Derive a status from a computed percentage.

    - ``completed`` at 100% or more.
    - ``not_started`` at 0% when no child has any progress.
    - ``at_risk`` below ``at_risk_progress_threshold`` with less than
      ``at_risk_time_remaining_fraction`` of the window left.
    - ``in_progress`` otherwise.
    """
    if percentage >= COMPLETE_PERCENTAGE:
        return ProgressStatus.COMPLETED
    if percentage <= 0.0 and not any(p > 0.0 for p in children_progress):
        return ProgressStatus.NOT_STARTED
    if node is not None:
        config = config or ProgressConfig()
        fraction = time_remaining_fraction(node, today or date.today())
        if (
            fraction is not None
            and percentage < config.at_risk_progress_threshold
            and fraction < config.at_risk_time_remaining_fraction
        ):
            return ProgressStatus.AT_RISK
    return ProgressStatus.IN_PROGRESS


def count_completed(children_progress: Iterable[float]) -> int:
    """Number of children at 100% or more."""
    return sum(1 for p in children_progress if p >= COMPLETE_PERCENTAGE)
