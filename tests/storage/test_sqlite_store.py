# tests/storage/test_sqlite_store.py
"""
Tests for the aiosqlite KPI store: CRUD, joined reads, idempotent logs,
optimistic cache writes and transaction behaviour.
"""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import aiosqlite
import pytest

from goalcore.config.models import StorageConfig
from goalcore.exceptions import (ConcurrentWriteStaleError, ConfigError,
                                 StorageError, StoreUnavailableError)
from goalcore.models import (CalculationMethod, CompletionLog, KpiLevel,
                             KpiNode, ProgressCacheEntry, ProgressStatus,
                             Vision)
from goalcore.storage.manager import StorageManager
from goalcore.storage.sqlite_store import SqliteKpiStore

CALCULATED_AT = datetime(2024, 6, 14, 12, 0, tzinfo=timezone.utc)


async def _seed(store):
    await store.save_vision(Vision(id="v1", title="Vision"))
    await store.save_kpi(KpiNode(id="q", vision_id="v1", level=KpiLevel.QUARTERLY, title="Q", quarter=2))
    await store.save_kpi(KpiNode(id="m2", vision_id="v1", level=KpiLevel.MONTHLY, title="M2",
                                 parent_kpi_id="q", sort_order=2))
    await store.save_kpi(KpiNode(id="m1", vision_id="v1", level=KpiLevel.MONTHLY, title="M1",
                                 parent_kpi_id="q", sort_order=1, due_date=date(2024, 6, 30)))
    await store.save_kpi(KpiNode(id="gone", vision_id="v1", level=KpiLevel.MONTHLY, title="Gone",
                                 parent_kpi_id="q", is_active=False))


def _entry(kpi_id: str, percentage: float = 50.0) -> ProgressCacheEntry:
    return ProgressCacheEntry(
        kpi_id=kpi_id,
        progress_percentage=percentage,
        status=ProgressStatus.IN_PROGRESS,
        child_count=2,
        completed_child_count=1,
        calculation_method=CalculationMethod.WEIGHTED_ROLLUP,
        weighted_progress=percentage,
        total_weight=2.0,
        last_calculated_at=CALCULATED_AT,
    )


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_missing_path_is_config_error(self):
        with pytest.raises(ConfigError):
            await SqliteKpiStore().initialize({})

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        store = SqliteKpiStore()
        await store.initialize({"path": ":memory:"})
        try:
            await store.save_vision(Vision(id="v", title="T"))
            assert (await store.get_vision("v")).title == "T"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        store = SqliteKpiStore()
        await store.initialize({"path": str(tmp_path / "nested" / "dir" / "kpis.db")})
        await store.close()

        assert (tmp_path / "nested" / "dir" / "kpis.db").exists()

    @pytest.mark.asyncio
    async def test_use_after_close(self, store):
        await store.close()
        with pytest.raises(StoreUnavailableError):
            await store.get_vision("v1")

    @pytest.mark.asyncio
    async def test_storage_manager_selects_backend(self, tmp_path):
        manager = StorageManager(StorageConfig(path=str(tmp_path / "m.db")))
        with pytest.raises(StorageError):
            manager.store

        store = await manager.initialize_storage()
        assert isinstance(store, SqliteKpiStore)
        assert manager.store is store
        assert await manager.initialize_storage() is store
        await manager.close_storage()


# =============================================================================
# KPIs AND JOINED READS
# =============================================================================


class TestKpis:

    @pytest.mark.asyncio
    async def test_round_trip_keeps_fields(self, store):
        await _seed(store)

        node = await store.get_kpi("m1")

        assert node.level == KpiLevel.MONTHLY
        assert node.parent_kpi_id == "q"
        assert node.due_date == date(2024, 6, 30)
        assert node.is_active is True
        assert await store.get_kpi("missing") is None

    @pytest.mark.asyncio
    async def test_kpi_requires_existing_vision(self, store):
        with pytest.raises(StoreUnavailableError):
            await store.save_kpi(KpiNode(vision_id="nope", level=KpiLevel.DAILY, title="x"))

    @pytest.mark.asyncio
    async def test_list_kpis_orders_and_filters(self, store):
        await _seed(store)

        assert [n.id for n in await store.list_kpis("v1")] == ["q", "m1", "m2"]
        assert [n.id for n in await store.list_kpis("v1", level=KpiLevel.MONTHLY)] == ["m1", "m2"]
        assert "gone" in [n.id for n in await store.list_kpis("v1", active_only=False)]

    @pytest.mark.asyncio
    async def test_joined_read_includes_cache_rows(self, store):
        await _seed(store)
        await store.upsert_cache_entry(_entry("m1", 80.0), expected_version=None)

        records = await store.list_kpis_with_progress("v1")

        assert [r.node.id for r in records] == ["q", "m1", "m2"]
        by_id = {r.node.id: r for r in records}
        assert by_id["m1"].cache.progress_percentage == 80.0
        assert by_id["m1"].cache.last_calculated_at == CALCULATED_AT
        assert by_id["m2"].cache is None
        assert by_id["m2"].progress == 0.0

    @pytest.mark.asyncio
    async def test_active_children(self, store):
        await _seed(store)

        children = await store.get_active_children("q")

        assert [c.node.id for c in children] == ["m1", "m2"]


# =============================================================================
# PROGRESS CACHE
# =============================================================================


class TestCache:

    @pytest.mark.asyncio
    async def test_insert_then_update_bumps_version(self, store):
        await _seed(store)

        first = await store.upsert_cache_entry(_entry("m1", 10.0), expected_version=None)
        second = await store.upsert_cache_entry(_entry("m1", 20.0), expected_version=first.version)

        assert first.version == 1
        assert second.version == 2
        stored = await store.get_cache_entry("m1")
        assert stored.progress_percentage == 20.0
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_insert_over_existing_row_is_stale(self, store):
        await _seed(store)
        await store.upsert_cache_entry(_entry("m1"), expected_version=None)

        with pytest.raises(ConcurrentWriteStaleError) as exc_info:
            await store.upsert_cache_entry(_entry("m1"), expected_version=None)
        assert exc_info.value.kpi_id == "m1"

    @pytest.mark.asyncio
    async def test_update_with_old_version_is_stale(self, store):
        await _seed(store)
        first = await store.upsert_cache_entry(_entry("m1", 10.0), expected_version=None)
        await store.upsert_cache_entry(_entry("m1", 20.0), expected_version=first.version)

        with pytest.raises(ConcurrentWriteStaleError):
            await store.upsert_cache_entry(_entry("m1", 30.0), expected_version=first.version)
        assert (await store.get_cache_entry("m1")).progress_percentage == 20.0


# =============================================================================
# COMPLETION LOGS
# =============================================================================


class TestLogs:

    @pytest.mark.asyncio
    async def test_log_is_idempotent_by_date(self, store):
        await _seed(store)
        day = date(2024, 6, 14)
        await store.upsert_log(CompletionLog(kpi_id="m1", log_date=day, is_completed=False, value=2))
        await store.upsert_log(CompletionLog(kpi_id="m1", log_date=day, is_completed=True, value=5, notes="redo"))

        logs = await store.get_logs("m1")

        assert len(logs) == 1
        assert logs[0].is_completed is True
        assert logs[0].value == 5
        assert logs[0].notes == "redo"

    @pytest.mark.asyncio
    async def test_range_and_completed_filters(self, store):
        await _seed(store)
        for day, done in ((1, True), (2, False), (3, True), (9, True)):
            await store.upsert_log(CompletionLog(kpi_id="m1", log_date=date(2024, 6, day), is_completed=done))

        in_range = await store.get_logs("m1", start=date(2024, 6, 2), end=date(2024, 6, 5))
        completed = await store.get_logs("m1", completed_only=True)

        assert [log.log_date.day for log in in_range] == [3, 2]
        assert [log.log_date.day for log in completed] == [9, 3, 1]

    @pytest.mark.asyncio
    async def test_delete_log(self, store):
        await _seed(store)
        await store.upsert_log(CompletionLog(kpi_id="m1", log_date=date(2024, 6, 1), is_completed=True))

        assert await store.delete_log("m1", date(2024, 6, 1)) is True
        assert await store.delete_log("m1", date(2024, 6, 1)) is False
        assert await store.get_logs("m1") == []

    @pytest.mark.asyncio
    async def test_count_completions_by_day_spans_vision(self, store):
        await _seed(store)
        day = date(2024, 6, 14)
        for kpi_id in ("m1", "m2", "gone"):
            await store.upsert_log(CompletionLog(kpi_id=kpi_id, log_date=day, is_completed=True))
        await store.upsert_log(CompletionLog(kpi_id="q", log_date=day, is_completed=False))

        counts = await store.count_completions_by_day("v1", start=day, end=day)

        assert counts == {day: 2}


# =============================================================================
# TRANSACTIONS
# =============================================================================


class TestTransactions:

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, store):
        await _seed(store)

        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.upsert_cache_entry(_entry("m1"), expected_version=None)
                raise RuntimeError("boom")

        assert await store.get_cache_entry("m1") is None

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, store):
        await _seed(store)

        async with store.transaction():
            async with store.transaction():
                await store.upsert_cache_entry(_entry("m1"), expected_version=None)
            assert (await store.get_cache_entry("m1")) is not None

        assert (await store.get_cache_entry("m1")).version == 1

    @pytest.mark.asyncio
    async def test_driver_error_becomes_store_unavailable(self, store):
        await _seed(store)

        failing = MagicMock(side_effect=aiosqlite.OperationalError("disk I/O error"))
        with patch.object(aiosqlite.Connection, "execute", new=failing):
            with pytest.raises(StoreUnavailableError, match="disk I/O error"):
                await store.get_kpi("m1")
