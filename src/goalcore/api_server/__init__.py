# src/goalcore/api_server/__init__.py
"""
HTTP API for GoalCore, built on FastAPI.

Run it with ``goalcore serve`` or any ASGI server pointed at the factory,
e.g. ``uvicorn --factory goalcore.api_server.main:create_app``.
"""

from .main import create_app

__all__ = ["create_app"]
