# src/goalcore/api_server/models/__init__.py
"""Request and response models for the GoalCore API."""

from .progress import (DeactivateResponse, KpiCreate, KpiCreateResponse,
                       KpiUpdate, KpiUpdateResponse, LinkedPair, LinkResponse,
                       LogCreate, OverrideRequest, VisionCreate,
                       VisionRecalculateResponse)

__all__ = [
    "DeactivateResponse",
    "KpiCreate",
    "KpiCreateResponse",
    "KpiUpdate",
    "KpiUpdateResponse",
    "LinkedPair",
    "LinkResponse",
    "LogCreate",
    "OverrideRequest",
    "VisionCreate",
    "VisionRecalculateResponse",
]
