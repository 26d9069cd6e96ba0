# src/goalcore/api_server/models/progress.py
"""
Pydantic models for the vision, KPI, log and override endpoints.

Request models reject unknown fields. Domain objects (``KpiNode``,
``RecalculationResult``, ``GoalTree`` ...) are returned as they are, so
only envelopes that combine several of them are defined here.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from ...models import (KpiLevel, KpiNode, ProgressCacheEntry,
                       RecalculationResult)


class VisionCreate(BaseModel):
    """Request model for creating a vision."""
    title: str = Field(min_length=1, description="Short title of the long-term vision.")
    description: Optional[str] = None

    class Config:
        extra = 'forbid'


class KpiCreate(BaseModel):
    """
    Request model for creating a KPI.

    The parent, when given, must be active, belong to the same vision and be
    exactly one level coarser.
    """
    vision_id: str
    level: KpiLevel
    title: str = Field(min_length=1)
    parent_kpi_id: Optional[str] = None
    description: Optional[str] = None
    weight: float = Field(default=1.0, ge=0.0)
    sort_order: int = 0
    numeric_target: Optional[float] = Field(default=None, gt=0.0)
    unit: Optional[str] = None
    quarter: Optional[int] = Field(default=None, ge=1, le=4)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    start_date: Optional[date] = None
    due_date: Optional[date] = None

    class Config:
        extra = 'forbid'

    def to_node(self) -> KpiNode:
        return KpiNode(**self.model_dump())


class KpiUpdate(BaseModel):
    """
    Request model for editing a KPI.

    Only fields present in the body are applied. Sending ``"parent_kpi_id":
    null`` explicitly moves the KPI to the top level; omitting the field
    leaves the parent unchanged. An explicit null on ``description``,
    ``numeric_target`` or ``due_date`` clears it.
    """
    weight: Optional[float] = Field(default=None, ge=0.0)
    parent_kpi_id: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    sort_order: Optional[int] = None
    numeric_target: Optional[float] = Field(default=None, gt=0.0)
    due_date: Optional[date] = None

    class Config:
        extra = 'forbid'

    @property
    def moves_parent(self) -> bool:
        return "parent_kpi_id" in self.model_fields_set


class KpiCreateResponse(BaseModel):
    kpi: KpiNode
    recalculation: RecalculationResult


class KpiUpdateResponse(BaseModel):
    kpi: KpiNode
    recalculations: List[RecalculationResult] = Field(default_factory=list)


class DeactivateResponse(BaseModel):
    """Returned after a soft delete; the former parent's chain is recalculated."""
    kpi_id: str
    is_active: bool = False
    parent_recalculation: Optional[RecalculationResult] = None


class LogCreate(BaseModel):
    """
    Request model for recording a day's completion log.

    Posting again for the same date replaces the earlier log.
    """
    log_date: Optional[date] = Field(default=None, description="Defaults to today.")
    completed: bool = True
    value: Optional[float] = None
    notes: Optional[str] = None

    class Config:
        extra = 'forbid'


class OverrideRequest(BaseModel):
    """Request model for pinning a KPI's percentage."""
    percentage: float = Field(ge=0.0, le=100.0)
    reason: str = Field(min_length=1)

    class Config:
        extra = 'forbid'


class LinkedPair(BaseModel):
    child_id: str
    parent_id: str


class LinkResponse(BaseModel):
    vision_id: str
    linked: List[LinkedPair] = Field(default_factory=list)
    count: int = 0


class VisionRecalculateResponse(BaseModel):
    vision_id: str
    rows: List[ProgressCacheEntry] = Field(default_factory=list)
    count: int = 0
