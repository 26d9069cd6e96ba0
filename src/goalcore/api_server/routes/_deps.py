# src/goalcore/api_server/routes/_deps.py
from fastapi import HTTPException, Request

from ...service import ProgressService


def get_service(request: Request) -> ProgressService:
    """The ProgressService built by the application lifespan."""
    service = getattr(request.app.state, "progress_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="ProgressService is not initialized.")
    return service
