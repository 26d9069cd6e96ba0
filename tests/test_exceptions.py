# tests/test_exceptions.py
"""
Tests for the goalcore.exceptions module.

Covers the hierarchy, carried attributes and message formatting.
"""

import pytest

from goalcore.exceptions import (ConcurrentWriteStaleError, ConfigError,
                                 GoalCoreError, InvalidHierarchyError,
                                 NotFoundError, RecalculationError,
                                 StorageError, StoreUnavailableError)


class TestHierarchy:

    @pytest.mark.parametrize("exc_cls", [
        ConfigError, NotFoundError, InvalidHierarchyError, StorageError,
        StoreUnavailableError, ConcurrentWriteStaleError, RecalculationError,
    ])
    def test_all_derive_from_base(self, exc_cls):
        assert issubclass(exc_cls, GoalCoreError)
        assert issubclass(exc_cls, Exception)

    def test_storage_subclasses(self):
        assert issubclass(StoreUnavailableError, StorageError)
        assert issubclass(ConcurrentWriteStaleError, StorageError)
        assert not issubclass(RecalculationError, StorageError)

    def test_catch_all_with_base(self):
        with pytest.raises(GoalCoreError):
            raise InvalidHierarchyError("bad level")


class TestMessages:

    def test_base_default_message(self):
        assert "unspecified error" in str(GoalCoreError()).lower()

    def test_not_found(self):
        error = NotFoundError("Vision", "v-42")

        assert error.entity == "Vision"
        assert error.entity_id == "v-42"
        assert str(error) == "Vision not found: 'v-42'"
        assert str(NotFoundError("KPI", "k", message="custom")) == "custom"

    def test_invalid_hierarchy_carries_kpi(self):
        error = InvalidHierarchyError("cycle", kpi_id="k1")

        assert error.kpi_id == "k1"
        assert str(error) == "cycle"

    def test_concurrent_write_stale(self):
        error = ConcurrentWriteStaleError(kpi_id="k1")

        assert error.kpi_id == "k1"
        assert "modified concurrently" in str(error)
        assert "'k1'" in str(error)

    def test_recalculation_error_reports_written_rows(self):
        cause = StoreUnavailableError("disk full")
        try:
            try:
                raise cause
            except StoreUnavailableError as e:
                raise RecalculationError(kpi_id="m", written=["d", "w"]) from e
        except RecalculationError as error:
            assert error.kpi_id == "m"
            assert error.written == ["d", "w"]
            assert "after writing 2 row(s)" in str(error)
            assert error.__cause__ is cause

    def test_recalculation_error_copies_written(self):
        written = ["d"]
        error = RecalculationError(kpi_id="w", written=written)
        written.append("x")

        assert error.written == ["d"]
        assert RecalculationError().written == []
