# tests/api_server/conftest.py
"""
Pytest configuration and fixtures for API server tests.

The application is built per test against the temporary SQLite database
and frozen clock from the top-level conftest. Entering the TestClient
context runs the lifespan, which creates the ProgressService.
"""

import pytest
from fastapi.testclient import TestClient

from goalcore.api_server.main import create_app


@pytest.fixture
def app(config, clock):
    return create_app(config=config, clock=clock)


@pytest.fixture
def client(app):
    """A test client with the application lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def progress_service(client):
    return client.app.state.progress_service


@pytest.fixture
def seeded(client):
    """
    Create a vision with month -> week -> two daily KPIs through the API.

    Returns a dict of ids keyed by ``vision``, ``month``, ``week``, ``run``
    and ``stretch``.
    """
    vision = client.post("/api/v1/visions", json={"title": "Run a marathon"}).json()
    ids = {"vision": vision["id"]}

    def add(key, level, parent=None, **fields):
        body = {"vision_id": vision["id"], "level": level, "title": key.title(), **fields}
        if parent is not None:
            body["parent_kpi_id"] = ids[parent]
        response = client.post("/api/v1/kpis", json=body)
        assert response.status_code == 201, response.text
        ids[key] = response.json()["kpi"]["id"]

    add("month", "monthly")
    add("week", "weekly", "month")
    add("run", "daily", "week", sort_order=0)
    add("stretch", "daily", "week", sort_order=1)
    return ids
