# src/goalcore/models.py
"""
Core data models for the GoalCore library.

This module defines the Pydantic models used to represent the KPI hierarchy
(visions and their quarterly → monthly → weekly → daily KPI nodes), the
completion logs users record against them, the denormalized progress cache
that makes reads O(1), and the read-side views built from those tables
(nested trees, formula breakdowns, streaks, stale goals).
"""

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class KpiLevel(str, Enum):
    """
    Granularity of a KPI node.

    Levels are strictly ordered from the root (quarterly) to the leaves
    (daily); a node's children must be exactly one level finer.
    """
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"

    @property
    def rank(self) -> int:
        """0 for quarterly up to 3 for daily."""
        return _LEVEL_ORDER.index(self)

    @property
    def child_level(self) -> Optional["KpiLevel"]:
        """The level a direct child must have, or None for daily nodes."""
        idx = self.rank + 1
        return _LEVEL_ORDER[idx] if idx < len(_LEVEL_ORDER) else None

    @property
    def parent_level(self) -> Optional["KpiLevel"]:
        """The level a direct parent must have, or None for quarterly nodes."""
        return _LEVEL_ORDER[self.rank - 1] if self.rank > 0 else None

    @property
    def nominal_days(self) -> int:
        """Nominal length of the level's time window, used when a node has no explicit start."""
        return _LEVEL_DAYS[self]


_LEVEL_ORDER = [KpiLevel.QUARTERLY, KpiLevel.MONTHLY, KpiLevel.WEEKLY, KpiLevel.DAILY]
_LEVEL_DAYS = {
    KpiLevel.QUARTERLY: 91,
    KpiLevel.MONTHLY: 30,
    KpiLevel.WEEKLY: 7,
    KpiLevel.DAILY: 1,
}


class CalculationMethod(str, Enum):
    """How a cache row's percentage was produced."""
    WEIGHTED_ROLLUP = "weighted_rollup"
    DIRECT_LOG = "direct_log"
    MANUAL_OVERRIDE = "manual_override"


class ProgressStatus(str, Enum):
    """Status derived from a node's percentage (see goalcore.progress.formula.derive_status)."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    AT_RISK = "at_risk"


class Vision(BaseModel):
    """The root goal owning a forest of KPI nodes."""
    id: str = Field(default_factory=_new_id, description="Unique identifier for the vision.")
    title: str = Field(description="Short title of the long-term vision.")
    description: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utcnow)


class KpiNode(BaseModel):
    """
    A single trackable objective.

    Attributes:
        id: Opaque unique key.
        vision_id: Owning vision.
        parent_kpi_id: Parent node, or None for a top-level node.
        level: Granularity; children are exactly one level finer.
        title: Display title.
        weight: Relative contribution to the parent's rollup (default 1).
        is_active: Soft-delete flag; inactive nodes are excluded everywhere.
        sort_order: Stable ordering key among siblings.
        numeric_target: Optional numeric goal; leaves with a target derive
            their percentage from logged values instead of check-offs.
        unit: Unit of ``numeric_target`` (display only).
        quarter: 1-4, used to link monthly nodes to their quarter.
        month: 1-12, used to link monthly nodes to their quarter.
        start_date: Start of the node's time window, if known.
        due_date: End of the node's time window / specific target date.
        created_at: Creation time; stands in for activity when never calculated.
        updated_at: Last edit time.
    """
    id: str = Field(default_factory=_new_id)
    vision_id: str
    parent_kpi_id: Optional[str] = None
    level: KpiLevel
    title: str
    description: Optional[str] = None
    weight: float = Field(default=1.0, ge=0.0)
    is_active: bool = True
    sort_order: int = 0
    numeric_target: Optional[float] = Field(default=None, gt=0.0)
    unit: Optional[str] = None
    quarter: Optional[int] = Field(default=None, ge=1, le=4)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    class Config:
        """Pydantic model configuration."""
        validate_assignment = True

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        """Accept level names in any case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class CompletionLog(BaseModel):
    """
    A record that a KPI was acted on for one calendar date.

    Logs are idempotent by date: saving a second log for the same
    ``(kpi_id, log_date)`` replaces the day's values rather than adding a row.
    """
    kpi_id: str
    log_date: date
    is_completed: bool = False
    value: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ProgressCacheEntry(BaseModel):
    """
    Denormalized progress record, exactly one per KPI node.

    ``progress_percentage`` keeps full fractional precision; use
    ``display_percentage`` for the rounded integer shown to users.
    ``version`` increases on every write and backs optimistic concurrency
    checks in the store.
    """
    kpi_id: str
    progress_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    child_count: int = Field(default=0, ge=0)
    completed_child_count: int = Field(default=0, ge=0)
    calculation_method: CalculationMethod = CalculationMethod.DIRECT_LOG
    manual_override_reason: Optional[str] = None
    weighted_progress: Optional[float] = None
    total_weight: float = 0.0
    last_calculated_at: Optional[datetime] = None
    version: int = 0

    @property
    def display_percentage(self) -> int:
        """Percentage rounded half-up to the nearest integer."""
        return int(self.progress_percentage + 0.5)

    @property
    def is_overridden(self) -> bool:
        return self.calculation_method == CalculationMethod.MANUAL_OVERRIDE

    def same_content(self, other: "ProgressCacheEntry") -> bool:
        """Compare two rows ignoring ``last_calculated_at`` and ``version``."""
        exclude = {"last_calculated_at", "version"}
        return self.model_dump(exclude=exclude) == other.model_dump(exclude=exclude)


class KpiWithProgress(BaseModel):
    """A KPI node joined with its (possibly missing) cache row."""
    node: KpiNode
    cache: Optional[ProgressCacheEntry] = None

    @property
    def progress(self) -> float:
        return self.cache.progress_percentage if self.cache else 0.0

    @property
    def status(self) -> ProgressStatus:
        return self.cache.status if self.cache else ProgressStatus.NOT_STARTED


class WeightedKpi(BaseModel):
    """Input for the progress formula: one child's progress and weight."""
    id: str
    title: str = ""
    progress: float = 0.0
    weight: float = 1.0


class ManualOverride(BaseModel):
    """A user-set percentage that bypasses automatic rollup for one node."""
    manual_percentage: float = Field(ge=0.0, le=100.0)
    reason: str = Field(min_length=1)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("A reason is required for a manual override")
        return v


class ProgressComponent(BaseModel):
    """One child's share of a parent's rollup."""
    kpi_id: str
    kpi_title: str = ""
    progress: float
    weight: float
    contribution: float


class ProgressFormula(BaseModel):
    """
    Transparent breakdown of how a node's percentage was produced.

    For a weighted rollup the component contributions sum to
    ``result_percentage``.
    """
    result_percentage: float
    method: CalculationMethod
    components: List[ProgressComponent] = Field(default_factory=list)
    formula: str
    override_reason: Optional[str] = None
    auto_percentage: Optional[float] = None
    total_weight: float = 0.0

    @property
    def display_percentage(self) -> int:
        return int(self.result_percentage + 0.5)


class FormulaSummary(BaseModel):
    """Headline figures of a formula breakdown."""
    total_children: int
    total_weight: float
    result_percentage: float
    method: CalculationMethod
    is_override: bool


class FormulaReport(BaseModel):
    """Response of the formula read for one KPI."""
    kpi_id: str
    title: str
    level: KpiLevel
    parent_kpi_id: Optional[str] = None
    formula: ProgressFormula
    summary: FormulaSummary


class KpiTreeNode(BaseModel):
    """Nested read-side view of one KPI with its cached progress."""
    id: str
    vision_id: str
    parent_kpi_id: Optional[str] = None
    level: KpiLevel
    title: str
    description: Optional[str] = None
    weight: float = 1.0
    sort_order: int = 0
    numeric_target: Optional[float] = None
    unit: Optional[str] = None
    due_date: Optional[date] = None
    progress: float = 0.0
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    child_count: int = 0
    completed_child_count: int = 0
    calculation_method: Optional[CalculationMethod] = None
    last_calculated_at: Optional[datetime] = None
    children: List["KpiTreeNode"] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: KpiWithProgress) -> "KpiTreeNode":
        node, cache = record.node, record.cache
        return cls(
            id=node.id,
            vision_id=node.vision_id,
            parent_kpi_id=node.parent_kpi_id,
            level=node.level,
            title=node.title,
            description=node.description,
            weight=node.weight,
            sort_order=node.sort_order,
            numeric_target=node.numeric_target,
            unit=node.unit,
            due_date=node.due_date,
            progress=cache.progress_percentage if cache else 0.0,
            status=cache.status if cache else ProgressStatus.NOT_STARTED,
            child_count=cache.child_count if cache else 0,
            completed_child_count=cache.completed_child_count if cache else 0,
            calculation_method=cache.calculation_method if cache else None,
            last_calculated_at=cache.last_calculated_at if cache else None,
        )


class GoalTree(BaseModel):
    """Response of the tree read: the forest plus freshness metadata."""
    vision_id: str
    tree: List[KpiTreeNode] = Field(default_factory=list)
    total_kpis: int = 0
    last_calculated: Optional[datetime] = None


class AncestorUpdate(BaseModel):
    """One cache row written during a recalculation walk."""
    kpi_id: str
    level: KpiLevel
    title: str
    progress_percentage: float
    status: ProgressStatus
    child_count: int
    completed_child_count: int
    calculation_method: CalculationMethod


class RecalculationResult(BaseModel):
    """
    Outcome of one recalculation walk.

    ``cache_row`` is the row of the node the walk started from;
    ``ancestors_updated`` lists, bottom-up, the ancestor ids actually touched.
    """
    kpi_id: str
    cache_row: Optional[ProgressCacheEntry] = None
    ancestors_updated: List[str] = Field(default_factory=list)
    updates: List[AncestorUpdate] = Field(default_factory=list)
    duration_ms: float = 0.0


class RecoveryState(str, Enum):
    """Weekly streak-recovery state, reset at the start of every ISO week."""
    AVAILABLE = "available"
    USED = "used"


class StreakRecord(BaseModel):
    """Streak values derived from a set of completion dates; never stored incrementally."""
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    is_active_today: bool = False
    recovery_state: RecoveryState = RecoveryState.AVAILABLE
    recovered_dates: List[date] = Field(default_factory=list)


class StreakSummary(BaseModel):
    """A KPI's streak together with its completion rate over a period."""
    kpi_id: str
    title: str = ""
    streak: StreakRecord
    completion_rate: float = 0.0
    rate_period: str = "month"
    at_risk: bool = False


class StaleGoal(BaseModel):
    """An active node with no recorded activity inside the threshold window."""
    kpi_id: str
    vision_id: str
    title: str
    level: KpiLevel
    last_activity: Optional[datetime] = None
    days_since_activity: Optional[int] = None
    progress: float = 0.0
    status: ProgressStatus = ProgressStatus.NOT_STARTED


class ProgressRead(BaseModel):
    """A KPI's progress row; ``cached`` is False when it was computed on demand."""
    kpi_id: str
    progress: ProgressCacheEntry
    cached: bool = True


class ProgressRefresh(BaseModel):
    """
    Outcome of an explicit recalculation request.

    ``skipped`` is set when the node is under manual override and the
    request did not force a recompute; ``progress`` then holds the stored row.
    """
    kpi_id: str
    skipped: bool = False
    progress: Optional[ProgressCacheEntry] = None
    recalculation: Optional[RecalculationResult] = None


class LevelSummary(BaseModel):
    level: KpiLevel
    count: int = 0
    completed: int = 0
    average_progress: float = 0.0


class VisionProgressSummary(BaseModel):
    """
    Aggregate figures over a vision's active KPIs.

    ``vision_progress`` is the average of the coarsest level present, so a
    vision with quarterly KPIs is judged by those alone.
    """
    vision_id: str
    total_kpis: int = 0
    status_counts: Dict[ProgressStatus, int] = Field(default_factory=dict)
    levels: List[LevelSummary] = Field(default_factory=list)
    average_progress: float = 0.0
    vision_progress: float = 0.0
    last_calculated: Optional[datetime] = None


KpiTreeNode.model_rebuild()


__all__ = [
    "AncestorUpdate",
    "CalculationMethod",
    "CompletionLog",
    "FormulaReport",
    "FormulaSummary",
    "GoalTree",
    "KpiLevel",
    "KpiNode",
    "KpiTreeNode",
    "KpiWithProgress",
    "LevelSummary",
    "ManualOverride",
    "ProgressCacheEntry",
    "ProgressComponent",
    "ProgressFormula",
    "ProgressRead",
    "ProgressRefresh",
    "ProgressStatus",
    "RecalculationResult",
    "RecoveryState",
    "StaleGoal",
    "StreakRecord",
    "StreakSummary",
    "Vision",
    "VisionProgressSummary",
    "WeightedKpi",
]
