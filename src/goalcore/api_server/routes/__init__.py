# src/goalcore/api_server/routes/__init__.py
"""Route modules for the GoalCore API server."""

from .health import router as health_router
from .kpis import router as kpis_router
from .visions import router as visions_router

__all__ = ["health_router", "kpis_router", "visions_router"]
