# src/goalcore/storage/sqlite_store.py
"""
SQLite storage for visions, KPI nodes, completion logs and the progress
cache using aiosqlite.

This module implements the BaseKpiStore interface using the aiosqlite
library for native asynchronous database operations. All work goes
through a single connection; an ``asyncio.Lock`` serializes transactions
on it so that one node's "read children, compute, write row" unit is never
interleaved with another writer's.
"""

import asyncio
import contextlib
import logging
import os
import pathlib
from contextvars import ContextVar
from datetime import date, datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite

from ..exceptions import ConcurrentWriteStaleError, ConfigError, StoreUnavailableError
from ..models import (CalculationMethod, CompletionLog, KpiLevel, KpiNode,
                      KpiWithProgress, ProgressCacheEntry, ProgressStatus,
                      Vision)
from .base_store import BaseKpiStore

logger = logging.getLogger(__name__)

# Table names
VISIONS_TABLE = "visions"
KPIS_TABLE = "kpis"
LOGS_TABLE = "kpi_logs"
CACHE_TABLE = "kpi_progress_cache"

_KPI_COLUMNS = [
    "id", "vision_id", "parent_kpi_id", "level", "title", "description", "weight",
    "is_active", "sort_order", "numeric_target", "unit", "quarter", "month",
    "start_date", "due_date", "created_at", "updated_at",
]
_CACHE_COLUMNS = [
    "kpi_id", "progress_percentage", "status", "child_count", "completed_child_count",
    "calculation_method", "manual_override_reason", "weighted_progress", "total_weight",
    "last_calculated_at", "version",
]

_LEVEL_RANK_SQL = (
    "CASE k.level WHEN 'quarterly' THEN 0 WHEN 'monthly' THEN 1 "
    "WHEN 'weekly' THEN 2 WHEN 'daily' THEN 3 ELSE 4 END"
)

_JOINED_SELECT = "SELECT {kpi_cols}, {cache_cols} FROM {kpis} k LEFT JOIN {cache} c ON c.kpi_id = k.id".format(
    kpi_cols=", ".join(f"k.{col}" for col in _KPI_COLUMNS),
    cache_cols=", ".join(f"c.{col} AS c_{col}" for col in _CACHE_COLUMNS),
    kpis=KPIS_TABLE,
    cache=CACHE_TABLE,
)

# Marks the store whose transaction the current task is inside.
_active_transaction: ContextVar[Optional["SqliteKpiStore"]] = ContextVar(
    "goalcore_sqlite_transaction", default=None
)


def _iso(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteKpiStore(BaseKpiStore):
    """
    Manages persistence of the KPI hierarchy and its progress cache in a
    SQLite database using aiosqlite.

    Tables:
        visions, kpis, kpi_logs (unique per ``(kpi_id, log_date)``) and
        kpi_progress_cache (one row per KPI with a ``version`` column used for
        optimistic concurrency checks).
    """
    _db_path: str
    _conn: Optional[aiosqlite.Connection] = None

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Open the database and create tables if they don't exist.

        Args:
            config: Configuration dictionary. Expected keys:
                    'path': Database file path, or ':memory:'.

        Raises:
            ConfigError: If 'path' is not provided.
            StoreUnavailableError: If the database cannot be opened or the schema created.
        """
        db_path_str = config.get("path")
        if not db_path_str:
            raise ConfigError("SQLite storage 'path' not specified in configuration.")

        if db_path_str == ":memory:":
            self._db_path = db_path_str
        else:
            path = pathlib.Path(os.path.expanduser(db_path_str))
            path.parent.mkdir(parents=True, exist_ok=True)
            self._db_path = str(path)

        try:
            # Autocommit mode; transactions are opened explicitly.
            self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA foreign_keys = ON;")

            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {VISIONS_TABLE} (
                    id TEXT PRIMARY KEY, title TEXT NOT NULL, description TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1, created_at TEXT NOT NULL
                )
            """)
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {KPIS_TABLE} (
                    id TEXT PRIMARY KEY,
                    vision_id TEXT NOT NULL,
                    parent_kpi_id TEXT,
                    level TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    weight REAL NOT NULL DEFAULT 1.0,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    numeric_target REAL,
                    unit TEXT,
                    quarter INTEGER,
                    month INTEGER,
                    start_date TEXT,
                    due_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (vision_id) REFERENCES {VISIONS_TABLE}(id) ON DELETE CASCADE
                )
            """)
            await self._conn.execute(f"CREATE INDEX IF NOT EXISTS idx_kpis_vision ON {KPIS_TABLE} (vision_id, is_active);")
            await self._conn.execute(f"CREATE INDEX IF NOT EXISTS idx_kpis_parent ON {KPIS_TABLE} (parent_kpi_id, is_active);")
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {LOGS_TABLE} (
                    kpi_id TEXT NOT NULL,
                    log_date TEXT NOT NULL,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    value REAL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (kpi_id, log_date),
                    FOREIGN KEY (kpi_id) REFERENCES {KPIS_TABLE}(id) ON DELETE CASCADE
                )
            """)
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {CACHE_TABLE} (
                    kpi_id TEXT PRIMARY KEY,
                    progress_percentage REAL NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    child_count INTEGER NOT NULL DEFAULT 0,
                    completed_child_count INTEGER NOT NULL DEFAULT 0,
                    calculation_method TEXT NOT NULL,
                    manual_override_reason TEXT,
                    weighted_progress REAL,
                    total_weight REAL NOT NULL DEFAULT 0,
                    last_calculated_at TEXT,
                    version INTEGER NOT NULL DEFAULT 1,
                    FOREIGN KEY (kpi_id) REFERENCES {KPIS_TABLE}(id) ON DELETE CASCADE
                )
            """)
            logger.info(f"SQLite KPI storage initialized at: {self._db_path}")
        except aiosqlite.Error as e:
            logger.error(f"Failed to initialize aiosqlite database at {self._db_path}: {e}")
            if self._conn:
                await self._conn.close()
                self._conn = None
            raise StoreUnavailableError(f"Could not initialize SQLite database: {e}") from e

    async def close(self) -> None:
        if self._conn:
            try:
                await self._conn.close()
                logger.info("aiosqlite KPI storage connection closed.")
            except aiosqlite.Error as e:
                logger.error(f"Error closing aiosqlite connection: {e}")
            finally:
                self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise StoreUnavailableError("Database connection not initialized.")
        return self._conn

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Serialize one atomic unit of work on the connection.

        Nested use from the same task joins the outer transaction.
        """
        if _active_transaction.get() is self:
            yield
            return

        conn = self._require_conn()
        async with self._lock:
            token = _active_transaction.set(self)
            try:
                await conn.execute("BEGIN IMMEDIATE;")
            except aiosqlite.Error as e:
                _active_transaction.reset(token)
                raise StoreUnavailableError(f"Could not begin transaction: {e}") from e
            try:
                yield
                await conn.commit()
            except BaseException as e:
                try:
                    await conn.rollback()
                except aiosqlite.Error as rb_e:
                    logger.error(f"Rollback failed: {rb_e}")
                if isinstance(e, aiosqlite.Error):
                    raise StoreUnavailableError(f"Transaction failed: {e}") from e
                raise
            finally:
                _active_transaction.reset(token)

    @contextlib.asynccontextmanager
    async def _session(self, write: bool) -> AsyncIterator[aiosqlite.Connection]:
        """Run one statement group, joining the caller's transaction when there is one."""
        conn = self._require_conn()
        try:
            if _active_transaction.get() is self:
                yield conn
            elif write:
                async with self.transaction():
                    yield conn
            else:
                async with self._lock:
                    yield conn
        except aiosqlite.Error as e:
            logger.error(f"aiosqlite error: {e}")
            raise StoreUnavailableError(f"Database error: {e}") from e

    # --- Row conversion ---

    @staticmethod
    def _row_to_kpi(row: Any) -> KpiNode:
        return KpiNode(
            id=row["id"],
            vision_id=row["vision_id"],
            parent_kpi_id=row["parent_kpi_id"],
            level=KpiLevel(row["level"]),
            title=row["title"],
            description=row["description"],
            weight=row["weight"],
            is_active=bool(row["is_active"]),
            sort_order=row["sort_order"],
            numeric_target=row["numeric_target"],
            unit=row["unit"],
            quarter=row["quarter"],
            month=row["month"],
            start_date=_parse_date(row["start_date"]),
            due_date=_parse_date(row["due_date"]),
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )

    @staticmethod
    def _row_to_cache(row: Any, prefix: str = "") -> Optional[ProgressCacheEntry]:
        if row[f"{prefix}kpi_id"] is None:
            return None
        return ProgressCacheEntry(
            kpi_id=row[f"{prefix}kpi_id"],
            progress_percentage=row[f"{prefix}progress_percentage"],
            status=ProgressStatus(row[f"{prefix}status"]),
            child_count=row[f"{prefix}child_count"],
            completed_child_count=row[f"{prefix}completed_child_count"],
            calculation_method=CalculationMethod(row[f"{prefix}calculation_method"]),
            manual_override_reason=row[f"{prefix}manual_override_reason"],
            weighted_progress=row[f"{prefix}weighted_progress"],
            total_weight=row[f"{prefix}total_weight"],
            last_calculated_at=_parse_datetime(row[f"{prefix}last_calculated_at"]),
            version=row[f"{prefix}version"],
        )

    def _row_to_joined(self, row: Any) -> KpiWithProgress:
        return KpiWithProgress(node=self._row_to_kpi(row), cache=self._row_to_cache(row, prefix="c_"))

    @staticmethod
    def _row_to_log(row: Any) -> CompletionLog:
        return CompletionLog(
            kpi_id=row["kpi_id"],
            log_date=date.fromisoformat(row["log_date"]),
            is_completed=bool(row["is_completed"]),
            value=row["value"],
            notes=row["notes"],
            created_at=_parse_datetime(row["created_at"]),
        )

    # --- Visions ---

    async def save_vision(self, vision: Vision) -> Vision:
        async with self._session(write=True) as conn:
            await conn.execute(f"""
                INSERT INTO {VISIONS_TABLE} (id, title, description, is_active, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title, description = excluded.description,
                    is_active = excluded.is_active
            """, (vision.id, vision.title, vision.description, 1 if vision.is_active else 0, vision.created_at.isoformat()))
        logger.debug(f"Vision '{vision.id}' saved.")
        return vision

    async def get_vision(self, vision_id: str) -> Optional[Vision]:
        async with self._session(write=False) as conn:
            async with conn.execute(f"SELECT * FROM {VISIONS_TABLE} WHERE id = ?", (vision_id,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return Vision(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            created_at=_parse_datetime(row["created_at"]),
        )

    # --- KPI nodes ---

    async def save_kpi(self, kpi: KpiNode) -> KpiNode:
        values = (
            kpi.id, kpi.vision_id, kpi.parent_kpi_id, kpi.level.value, kpi.title, kpi.description,
            kpi.weight, 1 if kpi.is_active else 0, kpi.sort_order, kpi.numeric_target, kpi.unit,
            kpi.quarter, kpi.month, _iso(kpi.start_date), _iso(kpi.due_date),
            kpi.created_at.isoformat(), kpi.updated_at.isoformat(),
        )
        placeholders = ", ".join("?" for _ in _KPI_COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _KPI_COLUMNS if col not in ("id", "created_at"))
        async with self._session(write=True) as conn:
            await conn.execute(
                f"INSERT INTO {KPIS_TABLE} ({', '.join(_KPI_COLUMNS)}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                values,
            )
        logger.debug(f"KPI '{kpi.id}' ({kpi.level.value}) saved.")
        return kpi

    async def get_kpi(self, kpi_id: str) -> Optional[KpiNode]:
        async with self._session(write=False) as conn:
            async with conn.execute(f"SELECT * FROM {KPIS_TABLE} WHERE id = ?", (kpi_id,)) as cursor:
                row = await cursor.fetchone()
        return self._row_to_kpi(row) if row else None

    async def list_kpis(
        self,
        vision_id: str,
        level: Optional[KpiLevel] = None,
        active_only: bool = True,
    ) -> List[KpiNode]:
        query = f"SELECT * FROM {KPIS_TABLE} k WHERE k.vision_id = ?"
        params: List[Any] = [vision_id]
        if level is not None:
            query += " AND k.level = ?"
            params.append(KpiLevel(level).value)
        if active_only:
            query += " AND k.is_active = 1"
        query += f" ORDER BY {_LEVEL_RANK_SQL}, k.sort_order, k.created_at"
        async with self._session(write=False) as conn:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_kpi(row) for row in rows]

    async def list_kpis_with_progress(self, vision_id: str) -> List[KpiWithProgress]:
        query = (
            f"{_JOINED_SELECT} WHERE k.vision_id = ? AND k.is_active = 1 "
            f"ORDER BY {_LEVEL_RANK_SQL}, k.sort_order, k.created_at"
        )
        async with self._session(write=False) as conn:
            async with conn.execute(query, (vision_id,)) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_joined(row) for row in rows]

    async def get_active_children(self, kpi_id: str) -> List[KpiWithProgress]:
        query = f"{_JOINED_SELECT} WHERE k.parent_kpi_id = ? AND k.is_active = 1 ORDER BY k.sort_order, k.created_at"
        async with self._session(write=False) as conn:
            async with conn.execute(query, (kpi_id,)) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_joined(row) for row in rows]

    # --- Progress cache ---

    async def get_cache_entry(self, kpi_id: str) -> Optional[ProgressCacheEntry]:
        async with self._session(write=False) as conn:
            async with conn.execute(f"SELECT * FROM {CACHE_TABLE} WHERE kpi_id = ?", (kpi_id,)) as cursor:
                row = await cursor.fetchone()
        return self._row_to_cache(row) if row else None

    async def upsert_cache_entry(
        self,
        entry: ProgressCacheEntry,
        expected_version: Optional[int],
    ) -> ProgressCacheEntry:
        row_values = (
            entry.progress_percentage, entry.status.value, entry.child_count,
            entry.completed_child_count, entry.calculation_method.value,
            entry.manual_override_reason, entry.weighted_progress, entry.total_weight,
            _iso(entry.last_calculated_at),
        )
        async with self._session(write=True) as conn:
            if expected_version is None:
                new_version = 1
                cursor = await conn.execute(f"""
                    INSERT OR IGNORE INTO {CACHE_TABLE} (
                        progress_percentage, status, child_count, completed_child_count,
                        calculation_method, manual_override_reason, weighted_progress,
                        total_weight, last_calculated_at, kpi_id, version
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, row_values + (entry.kpi_id, new_version))
            else:
                new_version = expected_version + 1
                cursor = await conn.execute(f"""
                    UPDATE {CACHE_TABLE} SET
                        progress_percentage = ?, status = ?, child_count = ?,
                        completed_child_count = ?, calculation_method = ?,
                        manual_override_reason = ?, weighted_progress = ?,
                        total_weight = ?, last_calculated_at = ?, version = ?
                    WHERE kpi_id = ? AND version = ?
                """, row_values + (new_version, entry.kpi_id, expected_version))
            written = cursor.rowcount
            await cursor.close()
        if written == 0:
            raise ConcurrentWriteStaleError(kpi_id=entry.kpi_id)
        logger.debug(f"Cache row for KPI '{entry.kpi_id}' written at version {new_version}.")
        return entry.model_copy(update={"version": new_version})

    # --- Completion logs ---

    async def upsert_log(self, log: CompletionLog) -> CompletionLog:
        async with self._session(write=True) as conn:
            await conn.execute(f"""
                INSERT INTO {LOGS_TABLE} (kpi_id, log_date, is_completed, value, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(kpi_id, log_date) DO UPDATE SET
                    is_completed = excluded.is_completed, value = excluded.value,
                    notes = excluded.notes
            """, (log.kpi_id, log.log_date.isoformat(), 1 if log.is_completed else 0,
                  log.value, log.notes, log.created_at.isoformat()))
        logger.debug(f"Log for KPI '{log.kpi_id}' on {log.log_date} saved (completed={log.is_completed}).")
        return log

    async def delete_log(self, kpi_id: str, log_date: date) -> bool:
        async with self._session(write=True) as conn:
            cursor = await conn.execute(
                f"DELETE FROM {LOGS_TABLE} WHERE kpi_id = ? AND log_date = ?",
                (kpi_id, log_date.isoformat()),
            )
            deleted = cursor.rowcount > 0
            await cursor.close()
        return deleted

    async def get_logs(
        self,
        kpi_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        completed_only: bool = False,
    ) -> List[CompletionLog]:
        query = f"SELECT * FROM {LOGS_TABLE} WHERE kpi_id = ?"
        params: List[Any] = [kpi_id]
        if start is not None:
            query += " AND log_date >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND log_date <= ?"
            params.append(end.isoformat())
        if completed_only:
            query += " AND is_completed = 1"
        query += " ORDER BY log_date DESC"
        async with self._session(write=False) as conn:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_log(row) for row in rows]

    async def count_completions_by_day(
        self,
        vision_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[date, int]:
        query = (
            f"SELECT l.log_date AS log_date, COUNT(*) AS actions FROM {LOGS_TABLE} l "
            f"JOIN {KPIS_TABLE} k ON k.id = l.kpi_id "
            "WHERE k.vision_id = ? AND k.is_active = 1 AND l.is_completed = 1"
        )
        params: List[Any] = [vision_id]
        if start is not None:
            query += " AND l.log_date >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND l.log_date <= ?"
            params.append(end.isoformat())
        query += " GROUP BY l.log_date"
        async with self._session(write=False) as conn:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return {date.fromisoformat(row["log_date"]): row["actions"] for row in rows}
