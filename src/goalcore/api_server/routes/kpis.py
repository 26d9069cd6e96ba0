# src/goalcore/api_server/routes/kpis.py
"""
KPI endpoints.

Every write here (creation, edits, soft delete, completion logs, manual
overrides) returns the recalculation it triggered, so clients can refresh
the affected ancestors without re-reading the whole tree.
"""

import logging
from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from ...models import (CompletionLog, FormulaReport, ProgressRead,
                       ProgressRefresh, RecalculationResult, StreakSummary)
from ...service import ProgressService
from ..models import (DeactivateResponse, KpiCreate, KpiCreateResponse,
                      KpiUpdate, KpiUpdateResponse, LogCreate, OverrideRequest)
from ._deps import get_service

logger = logging.getLogger(__name__)

router = APIRouter()

# PATCH fields where an explicit null clears the stored value.
CLEARABLE_FIELDS = {"description", "numeric_target", "due_date"}


@router.post("/kpis", response_model=KpiCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_kpi(body: KpiCreate, service: ProgressService = Depends(get_service)) -> KpiCreateResponse:
    kpi, result = await service.create_kpi(body.to_node())
    return KpiCreateResponse(kpi=kpi, recalculation=result)


@router.patch("/kpis/{kpi_id}", response_model=KpiUpdateResponse)
async def update_kpi(
    kpi_id: str,
    body: KpiUpdate,
    service: ProgressService = Depends(get_service),
) -> KpiUpdateResponse:
    """
    Edit a KPI.

    The move (if the body carries ``parent_kpi_id``) is applied first, then
    the weight, then descriptive fields.
    """
    recalculations: List[RecalculationResult] = []
    if body.moves_parent:
        recalculations.extend(await service.reparent(kpi_id, body.parent_kpi_id))
    if body.weight is not None:
        recalculations.append(await service.set_weight(kpi_id, body.weight))
    clearable = body.model_dump(include=body.model_fields_set & CLEARABLE_FIELDS)
    kpi = await service.update_kpi(
        kpi_id,
        title=body.title,
        sort_order=body.sort_order,
        **clearable,
    )
    return KpiUpdateResponse(kpi=kpi, recalculations=recalculations)


@router.delete("/kpis/{kpi_id}", response_model=DeactivateResponse)
async def deactivate_kpi(kpi_id: str, service: ProgressService = Depends(get_service)) -> DeactivateResponse:
    result = await service.deactivate_kpi(kpi_id)
    return DeactivateResponse(kpi_id=kpi_id, parent_recalculation=result)


@router.get("/kpis/{kpi_id}/formula", response_model=FormulaReport)
async def get_formula(kpi_id: str, service: ProgressService = Depends(get_service)) -> FormulaReport:
    return await service.get_formula(kpi_id)


@router.get("/kpis/{kpi_id}/progress", response_model=ProgressRead)
async def get_progress(kpi_id: str, service: ProgressService = Depends(get_service)) -> ProgressRead:
    return await service.get_progress(kpi_id)


@router.post("/kpis/{kpi_id}/progress", response_model=ProgressRefresh)
async def refresh_progress(
    kpi_id: str,
    force: bool = Query(default=False, description="Drop a manual override and recompute."),
    service: ProgressService = Depends(get_service),
) -> ProgressRefresh:
    """Recalculate the KPI and its ancestors; overridden nodes are skipped unless forced."""
    return await service.refresh_progress(kpi_id, force=force)


@router.post("/kpis/{kpi_id}/logs", response_model=RecalculationResult)
async def log_completion(
    kpi_id: str,
    body: LogCreate,
    service: ProgressService = Depends(get_service),
) -> RecalculationResult:
    return await service.log_completion(
        kpi_id,
        log_date=body.log_date,
        completed=body.completed,
        value=body.value,
        notes=body.notes,
    )


@router.get("/kpis/{kpi_id}/logs", response_model=List[CompletionLog])
async def get_logs(
    kpi_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    service: ProgressService = Depends(get_service),
) -> List[CompletionLog]:
    """Logs of a KPI, newest first, optionally bounded by an inclusive date range."""
    return await service.get_logs(kpi_id, start=start, end=end)


@router.delete("/kpis/{kpi_id}/logs/{log_date}", response_model=RecalculationResult)
async def delete_log(
    kpi_id: str,
    log_date: date,
    service: ProgressService = Depends(get_service),
) -> RecalculationResult:
    return await service.delete_log(kpi_id, log_date)


@router.post("/kpis/{kpi_id}/override", response_model=RecalculationResult)
async def set_manual_override(
    kpi_id: str,
    body: OverrideRequest,
    service: ProgressService = Depends(get_service),
) -> RecalculationResult:
    return await service.set_manual_override(kpi_id, body.percentage, body.reason)


@router.delete("/kpis/{kpi_id}/override", response_model=RecalculationResult)
async def clear_manual_override(kpi_id: str, service: ProgressService = Depends(get_service)) -> RecalculationResult:
    return await service.clear_manual_override(kpi_id)


@router.get("/kpis/{kpi_id}/streak", response_model=StreakSummary)
async def get_streak(
    kpi_id: str,
    period: Literal["week", "month", "quarter", "year"] = "month",
    service: ProgressService = Depends(get_service),
) -> StreakSummary:
    return await service.get_streak(kpi_id, period=period)
