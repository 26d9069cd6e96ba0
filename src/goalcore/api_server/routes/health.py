# src/goalcore/api_server/routes/health.py
"""Liveness endpoint."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Request

from ... import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """Report whether the service and its store are up."""
    service = getattr(request.app.state, "progress_service", None)
    return {
        "status": "healthy" if service is not None else "initializing",
        "version": __version__,
        "storage": service.config.storage.type if service is not None else None,
    }
