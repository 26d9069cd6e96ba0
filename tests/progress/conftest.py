# tests/progress/conftest.py
"""
Fixtures for recalculator tests: a store seeded directly (bypassing the
service's hierarchy checks) and a recalculator on a frozen clock.
"""

from typing import Optional

import pytest
import pytest_asyncio

from goalcore.models import KpiLevel, KpiNode, Vision
from goalcore.progress.recalculator import CacheRecalculator


@pytest_asyncio.fixture
async def seeded_vision(store):
    vision = Vision(id="v1", title="Vision")
    await store.save_vision(vision)
    return vision


@pytest.fixture
def put_kpi(store, seeded_vision):
    """Save a KPI straight into the store: ``await put_kpi(kpi_id, level, parent_id=None, **fields)``."""

    async def _put(kpi_id: str, level: KpiLevel, parent_id: Optional[str] = None, **fields) -> KpiNode:
        node = KpiNode(id=kpi_id, vision_id=seeded_vision.id, level=level, title=kpi_id,
                       parent_kpi_id=parent_id, **fields)
        return await store.save_kpi(node)

    return _put


@pytest.fixture
def recalculator(store, clock) -> CacheRecalculator:
    return CacheRecalculator(store, clock=clock)


@pytest_asyncio.fixture
async def chain(put_kpi):
    """quarter -> month -> week -> two days, all active and undated."""
    await put_kpi("q", KpiLevel.QUARTERLY)
    await put_kpi("m", KpiLevel.MONTHLY, "q")
    await put_kpi("w", KpiLevel.WEEKLY, "m")
    await put_kpi("d1", KpiLevel.DAILY, "w")
    await put_kpi("d2", KpiLevel.DAILY, "w")
    return ["d1", "d2", "w", "m", "q"]
