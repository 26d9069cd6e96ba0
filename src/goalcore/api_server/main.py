# src/goalcore/api_server/main.py
"""
Main FastAPI application for the GoalCore API server.

This module builds the FastAPI application with lifecycle management for
the :class:`~goalcore.service.ProgressService` instance and maps the
GoalCore error taxonomy to HTTP responses in one place.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional, Type

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from .. import __version__
from ..config import GoalCoreConfig, load_config
from ..exceptions import (ConcurrentWriteStaleError, ConfigError,
                          InvalidHierarchyError, NotFoundError,
                          RecalculationError, StoreUnavailableError)
from ..service import ProgressService
from .routes import health_router, kpis_router, visions_router

logger = logging.getLogger(__name__)

# Error class -> HTTP status. Lookup follows the MRO, so subclasses inherit
# their base's code unless listed themselves.
ERROR_STATUS_CODES: Dict[Type[Exception], int] = {
    NotFoundError: 404,
    InvalidHierarchyError: 422,
    ValueError: 422,
    ConcurrentWriteStaleError: 409,
    StoreUnavailableError: 503,
}

RETRY_AFTER_SECONDS = "1"


def status_for(exc: BaseException) -> int:
    """HTTP status for an error, 500 when it is not a known client or storage condition."""
    if isinstance(exc, RecalculationError):
        return status_for(exc.__cause__) if exc.__cause__ is not None else 500
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


def error_response(exc: Exception) -> JSONResponse:
    code = status_for(exc)
    if code >= 500 and code != 503:
        logger.error(f"Unhandled error while serving request: {exc}", exc_info=exc)
        body = {"detail": "An internal error occurred."}
    else:
        body = {"detail": str(exc)}

    headers = {}
    if code in (409, 503):
        body["retryable"] = True
        headers["Retry-After"] = RETRY_AFTER_SECONDS
    if isinstance(exc, RecalculationError):
        body["failed_kpi_id"] = exc.kpi_id
        body["written"] = exc.written
    return JSONResponse(status_code=code, content=body, headers=headers or None)


async def _handle_error(request: Request, exc: Exception) -> JSONResponse:
    return error_response(exc)


def create_app(
    config: Optional[GoalCoreConfig] = None,
    clock: Optional[Callable] = None,
) -> FastAPI:
    """
    Build the GoalCore FastAPI application.

    Args:
        config: Configuration to run with. When omitted it is loaded with
            :func:`goalcore.config.load_config`, honouring ``GOALCORE_CONFIG``
            as the path of the user TOML file.
        clock: Optional clock passed to the service (tests).
    """
    if config is None:
        try:
            config = load_config(config_file_path=os.environ.get("GOALCORE_CONFIG"))
        except ConfigError as e:
            logger.error(f"Failed to load configuration for API server: {e}")
            raise

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("API Server starting up...")
        app.state.progress_service = await ProgressService.create(config=config, clock=clock)
        logger.info("ProgressService initialized for API server.")
        try:
            yield
        finally:
            logger.info("API Server shutting down...")
            service = app.state.progress_service
            app.state.progress_service = None
            if service is not None:
                await service.close()
            logger.info("API Server shutdown complete.")

    app = FastAPI(
        title="GoalCore API",
        description="Hierarchical goal progress: KPI tree, weighted rollups, streaks and stale goals.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NotFoundError, _handle_error)
    app.add_exception_handler(InvalidHierarchyError, _handle_error)
    app.add_exception_handler(ConcurrentWriteStaleError, _handle_error)
    app.add_exception_handler(StoreUnavailableError, _handle_error)
    app.add_exception_handler(RecalculationError, _handle_error)
    app.add_exception_handler(ValueError, _handle_error)
    app.add_exception_handler(Exception, _handle_error)

    app.include_router(health_router, tags=["health"])
    app.include_router(health_router, prefix="/api/v1", tags=["health"])
    app.include_router(visions_router, prefix="/api/v1", tags=["visions"])
    app.include_router(kpis_router, prefix="/api/v1", tags=["kpis"])

    if config.api.metrics_enabled:
        app.mount("/metrics", make_asgi_app())
    return app
