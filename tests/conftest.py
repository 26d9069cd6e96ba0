# tests/conftest.py
"""
Shared fixtures for GoalCore tests.

Every test that touches storage gets its own SQLite file under ``tmp_path``
and a frozen clock, so percentages, statuses and staleness are
deterministic.
"""

import logging
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio

# Add src to path for test discovery
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from goalcore.config import GoalCoreConfig
from goalcore.logging_config import LoggingManager
from goalcore.models import KpiLevel, KpiNode
from goalcore.service import ProgressService
from goalcore.storage.sqlite_store import SqliteKpiStore

# Friday, ISO week 24 of 2024.
FROZEN_NOW = datetime(2024, 6, 14, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """A callable clock that only moves when told to."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def today(self) -> date:
        return self.now.date()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "goalcore_test.db")


@pytest.fixture
def config(db_path: str) -> GoalCoreConfig:
    return GoalCoreConfig(storage={"type": "sqlite", "path": db_path})


@pytest_asyncio.fixture
async def store(db_path: str):
    sqlite_store = SqliteKpiStore()
    await sqlite_store.initialize({"path": db_path})
    yield sqlite_store
    await sqlite_store.close()


@pytest_asyncio.fixture
async def service(config: GoalCoreConfig, clock: FrozenClock):
    progress_service = await ProgressService.create(config=config, clock=clock)
    yield progress_service
    await progress_service.close()


@pytest_asyncio.fixture
async def vision(service: ProgressService):
    return await service.create_vision("Run a marathon", description="Finish a full marathon this year")


@pytest.fixture
def add_kpi(service: ProgressService, vision):
    """Factory creating KPIs through the service: ``await add_kpi(level, title, parent=None, **fields)``."""

    async def _add(level: KpiLevel, title: str, parent: Optional[KpiNode] = None, **fields) -> KpiNode:
        node, _ = await service.create_kpi(KpiNode(
            vision_id=vision.id,
            level=level,
            title=title,
            parent_kpi_id=parent.id if parent is not None else None,
            **fields,
        ))
        return node

    return _add


@pytest.fixture
def reset_logging_manager():
    """Remove handlers installed by LoggingManager between tests."""

    def _reset():
        root = logging.getLogger()
        for handler in (LoggingManager._console_handler, LoggingManager._file_handler):
            if handler is not None:
                root.removeHandler(handler)
                handler.close()
        LoggingManager._configured = False
        LoggingManager._log_file_path = None
        LoggingManager._console_handler = None
        LoggingManager._file_handler = None

    _reset()
    yield
    _reset()
