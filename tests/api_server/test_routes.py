# tests/api_server/test_routes.py
"""
Tests for the GoalCore HTTP API: every route against a real SQLite store,
plus the error-to-status mapping.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from goalcore.api_server.main import create_app, error_response, status_for
from goalcore.api_server.models import KpiCreate, KpiUpdate, OverrideRequest
from goalcore.exceptions import (ConcurrentWriteStaleError, ConfigError,
                                 InvalidHierarchyError, NotFoundError,
                                 RecalculationError, StoreUnavailableError)

API = "/api/v1"


# =============================================================================
# REQUEST MODELS
# =============================================================================


class TestRequestModels:

    def test_kpi_create_rejects_extra_fields(self):
        with pytest.raises(ValueError, match="Extra inputs are not permitted"):
            KpiCreate(vision_id="v", level="daily", title="Run", colour="red")

    def test_kpi_create_to_node(self):
        node = KpiCreate(vision_id="v", level="weekly", title="W", weight=2).to_node()

        assert node.level.value == "weekly"
        assert node.weight == 2
        assert node.id

    def test_kpi_update_tracks_explicit_parent(self):
        assert KpiUpdate(parent_kpi_id=None).moves_parent is True
        assert KpiUpdate(weight=2).moves_parent is False

    @pytest.mark.parametrize("payload", [
        {"percentage": 101, "reason": "x"},
        {"percentage": -1, "reason": "x"},
        {"percentage": 50, "reason": ""},
    ])
    def test_override_request_validation(self, payload):
        with pytest.raises(ValueError):
            OverrideRequest(**payload)


# =============================================================================
# ERROR MAPPING
# =============================================================================


class TestErrorMapping:

    @pytest.mark.parametrize("exc, code", [
        (NotFoundError("KPI", "k1"), 404),
        (InvalidHierarchyError("bad level"), 422),
        (ValueError("bad value"), 422),
        (ConcurrentWriteStaleError(kpi_id="k1"), 409),
        (StoreUnavailableError("disk gone"), 503),
        (ConfigError("broken"), 500),
        (RuntimeError("boom"), 500),
    ])
    def test_status_for(self, exc, code):
        assert status_for(exc) == code

    def test_recalculation_error_takes_status_of_cause(self):
        exc = RecalculationError(kpi_id="w", written=["d1"])
        exc.__cause__ = StoreUnavailableError("disk gone")

        assert status_for(exc) == 503
        assert status_for(RecalculationError(kpi_id="w")) == 500

    def test_retryable_errors_carry_retry_after(self):
        response = error_response(ConcurrentWriteStaleError(kpi_id="k1"))

        assert response.status_code == 409
        assert response.headers["retry-after"] == "1"
        assert json.loads(response.body)["retryable"] is True

    def test_recalculation_error_body(self):
        exc = RecalculationError(kpi_id="w", written=["d1"])
        exc.__cause__ = StoreUnavailableError("disk gone")

        body = json.loads(error_response(exc).body)

        assert body["failed_kpi_id"] == "w"
        assert body["written"] == ["d1"]
        assert body["retryable"] is True

    def test_internal_errors_hide_details(self):
        response = error_response(RuntimeError("secret stack detail"))

        assert response.status_code == 500
        assert json.loads(response.body) == {"detail": "An internal error occurred."}
        assert "retry-after" not in response.headers


# =============================================================================
# APPLICATION FACTORY
# =============================================================================


class TestAppFactory:

    def test_import_builds_no_application(self):
        import goalcore.api_server.main as main_module

        assert not hasattr(main_module, "app")

    def test_explicit_config_skips_loading(self, config):
        broken = MagicMock(side_effect=ConfigError("bad file"))
        with patch("goalcore.api_server.main.load_config", new=broken):
            app = create_app(config=config)

        broken.assert_not_called()
        assert app.title == "GoalCore API"

    def test_config_errors_surface_when_building(self, monkeypatch):
        monkeypatch.setenv("GOALCORE_CONFIG", "/nonexistent/goalcore.toml")

        with pytest.raises(ConfigError, match="not found"):
            create_app()


# =============================================================================
# HEALTH
# =============================================================================


class TestHealth:

    def test_health_with_service(self, client):
        for path in ("/health", f"{API}/health"):
            data = client.get(path).json()
            assert data["status"] == "healthy"
            assert data["storage"] == "sqlite"
            assert "version" in data

    def test_metrics_endpoint(self, client, seeded):
        response = client.get("/metrics/")

        assert response.status_code == 200
        assert "goalcore_cache_rows_written_total" in response.text
        assert "goalcore_recalculation_duration_seconds_bucket" in response.text

    def test_metrics_can_be_disabled(self, config, clock):
        config.api.metrics_enabled = False

        with TestClient(create_app(config=config, clock=clock)) as client:
            assert client.get("/metrics/").status_code == 404

    def test_health_before_startup(self, app):
        data = TestClient(app).get("/health").json()

        assert data["status"] == "initializing"
        assert data["storage"] is None

    def test_routes_unavailable_before_startup(self, app):
        response = TestClient(app).get(f"{API}/visions/v1/tree")

        assert response.status_code == 503


# =============================================================================
# VISIONS
# =============================================================================


class TestVisionRoutes:

    def test_create_vision(self, client):
        response = client.post(f"{API}/visions", json={"title": "Learn Spanish"})

        assert response.status_code == 201
        assert response.json()["title"] == "Learn Spanish"

    def test_create_vision_validation(self, client):
        assert client.post(f"{API}/visions", json={"title": ""}).status_code == 422
        assert client.post(f"{API}/visions", json={"title": "x", "owner": "me"}).status_code == 422

    def test_tree(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        response = client.get(f"{API}/visions/{seeded['vision']}/tree")

        assert response.status_code == 200
        data = response.json()
        assert data["total_kpis"] == 4
        month = data["tree"][0]
        assert month["progress"] == 50.0
        assert month["children"][0]["child_count"] == 2
        assert [c["title"] for c in month["children"][0]["children"]] == ["Run", "Stretch"]
        assert data["last_calculated"] is not None

    def test_tree_unknown_vision(self, client):
        response = client.get(f"{API}/visions/missing/tree")

        assert response.status_code == 404
        assert "missing" in response.json()["detail"]

    def test_summary(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        response = client.get(f"{API}/visions/{seeded['vision']}/summary")

        assert response.status_code == 200
        data = response.json()
        assert data["total_kpis"] == 4
        assert data["status_counts"] == {"not_started": 1, "in_progress": 2, "completed": 1, "at_risk": 0}
        assert [lv["level"] for lv in data["levels"]] == ["monthly", "weekly", "daily"]
        assert data["vision_progress"] == pytest.approx(50.0)

    def test_summary_unknown_vision(self, client):
        assert client.get(f"{API}/visions/nope/summary").status_code == 404

    def test_stale(self, client, seeded, clock):
        clock.advance(days=15)

        response = client.get(f"{API}/visions/{seeded['vision']}/stale", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 2
        assert all(goal["days_since_activity"] == 15 for goal in data)
        assert client.get(f"{API}/visions/{seeded['vision']}/stale", params={"threshold_days": 0}).status_code == 422

    def test_recalculate(self, client, seeded):
        response = client.post(f"{API}/visions/{seeded['vision']}/recalculate")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 4
        assert data["rows"][-1]["kpi_id"] == seeded["month"]

    def test_link(self, client):
        vision_id = client.post(f"{API}/visions", json={"title": "Dated"}).json()["id"]
        month = client.post(f"{API}/kpis", json={
            "vision_id": vision_id, "level": "monthly", "title": "June",
            "start_date": "2024-06-01", "due_date": "2024-06-30",
        }).json()["kpi"]
        week = client.post(f"{API}/kpis", json={
            "vision_id": vision_id, "level": "weekly", "title": "Week 24",
            "start_date": "2024-06-10", "due_date": "2024-06-16",
        }).json()["kpi"]

        response = client.post(f"{API}/visions/{vision_id}/link")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["linked"] == [{"child_id": week["id"], "parent_id": month["id"]}]


# =============================================================================
# KPIS
# =============================================================================


class TestKpiRoutes:

    def test_create_kpi_returns_recalculation(self, client, seeded):
        response = client.post(f"{API}/kpis", json={
            "vision_id": seeded["vision"], "level": "daily", "title": "Swim", "parent_kpi_id": seeded["week"],
        })

        assert response.status_code == 201
        data = response.json()
        assert data["kpi"]["parent_kpi_id"] == seeded["week"]
        assert data["recalculation"]["ancestors_updated"] == [seeded["week"], seeded["month"]]

    def test_create_kpi_errors(self, client, seeded):
        wrong_level = client.post(f"{API}/kpis", json={
            "vision_id": seeded["vision"], "level": "daily", "title": "x", "parent_kpi_id": seeded["month"],
        })
        missing_parent = client.post(f"{API}/kpis", json={
            "vision_id": seeded["vision"], "level": "daily", "title": "x", "parent_kpi_id": "nope",
        })
        bad_level = client.post(f"{API}/kpis", json={"vision_id": seeded["vision"], "level": "hourly", "title": "x"})

        assert wrong_level.status_code == 422
        assert missing_parent.status_code == 404
        assert bad_level.status_code == 422

    def test_patch_weight_and_title(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        response = client.patch(f"{API}/kpis/{seeded['stretch']}", json={"weight": 3, "title": "Long stretch"})

        assert response.status_code == 200
        data = response.json()
        assert data["kpi"]["title"] == "Long stretch"
        assert data["recalculations"][0]["ancestors_updated"] == [seeded["week"], seeded["month"]]
        formula = client.get(f"{API}/kpis/{seeded['week']}/formula").json()
        assert formula["summary"]["result_percentage"] == pytest.approx(25.0)

    def test_patch_explicit_null_parent_moves_to_top(self, client, seeded):
        response = client.patch(f"{API}/kpis/{seeded['week']}", json={"parent_kpi_id": None})

        assert response.status_code == 200
        assert response.json()["kpi"]["parent_kpi_id"] is None
        tree = client.get(f"{API}/visions/{seeded['vision']}/tree").json()
        assert [n["title"] for n in tree["tree"]] == ["Month", "Week"]
        assert tree["tree"][0]["child_count"] == 0

    def test_patch_without_parent_keeps_it(self, client, seeded):
        response = client.patch(f"{API}/kpis/{seeded['week']}", json={"description": "Base building"})

        assert response.json()["kpi"]["parent_kpi_id"] == seeded["month"]
        assert response.json()["recalculations"] == []

    def test_patch_explicit_null_clears_due_date(self, client, seeded):
        run = seeded["run"]
        client.post(f"{API}/kpis/{run}/logs", json={"log_date": "2024-06-13"})
        dated = client.patch(f"{API}/kpis/{run}", json={"due_date": "2024-06-13", "description": "Easy pace"})
        assert dated.json()["kpi"]["due_date"] == "2024-06-13"
        assert client.get(f"{API}/kpis/{run}/formula").json()["summary"]["result_percentage"] == 100.0

        response = client.patch(f"{API}/kpis/{run}", json={"due_date": None})

        assert response.status_code == 200
        kpi = response.json()["kpi"]
        assert kpi["due_date"] is None
        assert kpi["description"] == "Easy pace"
        assert client.get(f"{API}/kpis/{run}/formula").json()["summary"]["result_percentage"] == 0.0

    def test_patch_cycle_rejected(self, client, seeded):
        response = client.patch(f"{API}/kpis/{seeded['week']}", json={"parent_kpi_id": seeded["week"]})

        assert response.status_code == 422

    def test_deactivate(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        response = client.delete(f"{API}/kpis/{seeded['stretch']}")

        assert response.status_code == 200
        data = response.json()
        assert data["is_active"] is False
        assert data["parent_recalculation"]["cache_row"]["progress_percentage"] == 100.0
        assert client.get(f"{API}/kpis/{seeded['stretch']}/formula").status_code == 404

    def test_formula(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        data = client.get(f"{API}/kpis/{seeded['week']}/formula").json()

        assert data["formula"]["formula"] == "(100×1 + 0×1) / 2 = 50%"
        assert [c["kpi_id"] for c in data["formula"]["components"]] == [seeded["run"], seeded["stretch"]]
        assert data["summary"]["total_children"] == 2

    def test_progress_read_and_refresh(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        read = client.get(f"{API}/kpis/{seeded['week']}/progress")
        assert read.status_code == 200
        assert read.json()["cached"] is True
        assert read.json()["progress"]["progress_percentage"] == pytest.approx(50.0)

        client.post(f"{API}/kpis/{seeded['week']}/override", json={"percentage": 80, "reason": "Ahead"})
        skipped = client.post(f"{API}/kpis/{seeded['week']}/progress").json()
        forced = client.post(f"{API}/kpis/{seeded['week']}/progress", params={"force": "true"}).json()

        assert skipped["skipped"] is True
        assert skipped["progress"]["progress_percentage"] == 80.0
        assert forced["skipped"] is False
        assert forced["progress"]["calculation_method"] == "weighted_rollup"
        assert forced["recalculation"]["ancestors_updated"] == [seeded["month"]]

    def test_progress_unknown_kpi(self, client):
        assert client.get(f"{API}/kpis/nope/progress").status_code == 404
        assert client.post(f"{API}/kpis/nope/progress").status_code == 404

    def test_logs_round_trip(self, client, seeded):
        run = seeded["run"]
        created = client.post(f"{API}/kpis/{run}/logs", json={"log_date": "2024-06-13", "notes": "easy"})
        client.post(f"{API}/kpis/{run}/logs", json={"log_date": "2024-06-14"})

        assert created.status_code == 200
        logs = client.get(f"{API}/kpis/{run}/logs").json()
        assert [log["log_date"] for log in logs] == ["2024-06-14", "2024-06-13"]
        bounded = client.get(f"{API}/kpis/{run}/logs", params={"start": "2024-06-14"}).json()
        assert len(bounded) == 1

        deleted = client.delete(f"{API}/kpis/{run}/logs/2024-06-14")
        assert deleted.status_code == 200
        assert deleted.json()["cache_row"]["progress_percentage"] == 0.0
        assert client.delete(f"{API}/kpis/{run}/logs/2024-06-14").status_code == 404

    def test_log_extra_field_rejected(self, client, seeded):
        response = client.post(f"{API}/kpis/{seeded['run']}/logs", json={"mood": "great"})

        assert response.status_code == 422

    def test_override_set_and_clear(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        response = client.post(f"{API}/kpis/{seeded['week']}/override", json={"percentage": 40, "reason": "Sick week"})

        assert response.status_code == 200
        row = response.json()["cache_row"]
        assert row["progress_percentage"] == 40.0
        assert row["calculation_method"] == "manual_override"
        assert row["manual_override_reason"] == "Sick week"

        cleared = client.delete(f"{API}/kpis/{seeded['week']}/override").json()
        assert cleared["cache_row"]["progress_percentage"] == 50.0
        assert cleared["ancestors_updated"] == [seeded["month"]]

    @pytest.mark.parametrize("payload", [
        {"percentage": 150, "reason": "too much"},
        {"percentage": 50},
        {"percentage": 50, "reason": ""},
    ])
    def test_override_validation(self, client, seeded, payload):
        response = client.post(f"{API}/kpis/{seeded['week']}/override", json=payload)

        assert response.status_code == 422

    def test_streak(self, client, seeded):
        client.post(f"{API}/kpis/{seeded['run']}/logs", json={"log_date": "2024-06-13"})

        response = client.get(f"{API}/kpis/{seeded['run']}/streak", params={"period": "week"})

        assert response.status_code == 200
        data = response.json()
        assert data["streak"]["current_streak"] == 1
        assert data["at_risk"] is True
        assert data["rate_period"] == "week"
        assert client.get(f"{API}/kpis/{seeded['run']}/streak", params={"period": "decade"}).status_code == 422


# =============================================================================
# FAILURE RESPONSES
# =============================================================================


class TestFailureResponses:

    def test_stale_write_is_409_and_retryable(self, client, seeded, progress_service):
        stale = AsyncMock(side_effect=ConcurrentWriteStaleError(kpi_id=seeded["run"]))
        with patch.object(progress_service.recalculator, "recalculate", new=stale):
            response = client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        assert response.status_code == 409
        assert response.json()["retryable"] is True
        assert response.headers["retry-after"] == "1"

    def test_partial_chain_failure_reports_written_rows(self, client, seeded, progress_service):
        failure = RecalculationError(kpi_id=seeded["month"], written=[seeded["run"], seeded["week"]])
        failure.__cause__ = StoreUnavailableError("database is locked")
        with patch.object(progress_service.recalculator, "recalculate", new=AsyncMock(side_effect=failure)):
            response = client.post(f"{API}/kpis/{seeded['run']}/logs", json={})

        assert response.status_code == 503
        data = response.json()
        assert data["failed_kpi_id"] == seeded["month"]
        assert data["written"] == [seeded["run"], seeded["week"]]
