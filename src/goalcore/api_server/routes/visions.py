# src/goalcore/api_server/routes/visions.py
"""
Vision-level endpoints: creation, the progress tree and summary, stale
goals and the maintenance operations (full rebuild, hierarchy auto-linking).
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ...models import GoalTree, StaleGoal, Vision, VisionProgressSummary
from ...service import ProgressService
from ..models import (LinkedPair, LinkResponse, VisionCreate,
                      VisionRecalculateResponse)
from ._deps import get_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/visions", response_model=Vision, status_code=status.HTTP_201_CREATED)
async def create_vision(
    body: VisionCreate,
    service: ProgressService = Depends(get_service),
) -> Vision:
    return await service.create_vision(body.title, description=body.description)


@router.get("/visions/{vision_id}/tree", response_model=GoalTree)
async def get_tree(vision_id: str, service: ProgressService = Depends(get_service)) -> GoalTree:
    """
    The vision's active KPIs as a nested tree with cached progress.

    Pure read: no percentages are recomputed.
    """
    return await service.get_tree(vision_id)


@router.get("/visions/{vision_id}/summary", response_model=VisionProgressSummary)
async def get_summary(vision_id: str, service: ProgressService = Depends(get_service)) -> VisionProgressSummary:
    """Counts per status and per level, with average progress, from the cache."""
    return await service.get_progress_summary(vision_id)


@router.get("/visions/{vision_id}/stale", response_model=List[StaleGoal])
async def get_stale_goals(
    vision_id: str,
    threshold_days: Optional[int] = Query(default=None, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    service: ProgressService = Depends(get_service),
) -> List[StaleGoal]:
    return await service.get_stale_goals(vision_id, threshold_days=threshold_days, limit=limit)


@router.post("/visions/{vision_id}/recalculate", response_model=VisionRecalculateResponse)
async def recalculate_vision(
    vision_id: str,
    service: ProgressService = Depends(get_service),
) -> VisionRecalculateResponse:
    rows = await service.recalculate_vision(vision_id)
    return VisionRecalculateResponse(vision_id=vision_id, rows=rows, count=len(rows))


@router.post("/visions/{vision_id}/link", response_model=LinkResponse)
async def link_vision_hierarchy(
    vision_id: str,
    service: ProgressService = Depends(get_service),
) -> LinkResponse:
    """Attach unparented KPIs to their enclosing parents and rebuild the cache."""
    pairs = await service.link_vision_hierarchy(vision_id)
    linked = [LinkedPair(child_id=child_id, parent_id=parent_id) for child_id, parent_id in pairs]
    logger.info(f"Auto-linked {len(linked)} KPI(s) in vision '{vision_id}' via API.")
    return LinkResponse(vision_id=vision_id, linked=linked, count=len(linked))
