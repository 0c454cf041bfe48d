from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import Depends, Request
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from licensing.api.app import create_app
from licensing.api.dependencies import require_action
from licensing.cache import BotStatusCache
from licensing.db import get_db_session
from licensing.models import ActionKind


@pytest.fixture
def status_events():
    return []


@pytest.fixture
def client(session_factory, clock, fake_redis, status_events):
    app = create_app(
        bot_status_cache=BotStatusCache(client=fake_redis),
        on_status_change=lambda principal_id, snapshot: status_events.append(snapshot.status.value),
        clock=clock,
    )

    def override_db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_db_session

    @app.middleware("http")
    async def fake_auth(request: Request, call_next):
        principal_id = request.headers.get("X-Principal-Id")
        if principal_id:
            request.state.principal_id = principal_id
        return await call_next(request)

    return TestClient(app)


def _as(principal_id: str) -> dict:
    return {"X-Principal-Id": principal_id}


class TestAuthentication:
    def test_missing_principal_is_401(self, client):
        response = client.get("/bot/status")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"


class TestBotRoutes:
    def test_start_stop_flow(self, client, make_license, status_events):
        make_license("p-1")

        started = client.post("/bot/start", headers=_as("p-1"))
        assert started.status_code == 200
        assert started.json()["data"]["status"] == "running"

        again = client.post("/bot/start", headers=_as("p-1"))
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ALREADY_RUNNING"

        stopped = client.post("/bot/stop", headers=_as("p-1"), json={"error_message": None})
        assert stopped.status_code == 200
        assert stopped.json()["data"]["status"] == "stopped"
        assert status_events == ["running", "stopped"]

    def test_stop_when_stopped_is_409(self, client, make_license):
        make_license("p-1")
        response = client.post("/bot/stop", headers=_as("p-1"))
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "NOT_RUNNING"

    def test_start_with_expired_license_is_403(self, client, make_license, clock):
        make_license("p-1", expires_at=clock.now - timedelta(seconds=1))
        response = client.post("/bot/start", headers=_as("p-1"))
        assert response.status_code == 403
        body = response.json()["error"]
        assert body["code"] == "LICENSE_EXPIRED"
        assert body["details"]["reason"] == "LICENSE_EXPIRED"

    def test_emergency_stop_ignores_license(self, client, make_license, licenses):
        make_license("p-1")
        client.post("/bot/start", headers=_as("p-1"))
        licenses.deactivate_license("p-1")

        response = client.post("/bot/emergency-stop", headers=_as("p-1"))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "stopped"

    def test_pause_resume_and_status(self, client, make_license):
        make_license("p-1")
        client.post("/bot/start", headers=_as("p-1"), json={"settings": {"mode": "connect_only"}})
        assert client.post("/bot/pause", headers=_as("p-1")).json()["data"]["status"] == "paused"
        assert client.post("/bot/resume", headers=_as("p-1")).json()["data"]["status"] == "running"
        status = client.get("/bot/status", headers=_as("p-1")).json()["data"]
        assert status["is_active"] is True


class TestSettingsRoutes:
    def test_limits_created_then_reused(self, client, make_license):
        make_license("p-1", tier="basic")
        first = client.get("/settings/limits", headers=_as("p-1")).json()
        second = client.get("/settings/limits", headers=_as("p-1")).json()
        assert first["created"] is True
        assert second["created"] is False
        assert first["data"]["max_connections"] == 15

    def test_limits_update_clamped(self, client, make_license):
        make_license("p-1", tier="trial")
        response = client.put("/settings/limits", headers=_as("p-1"), json={"max_connections": 40})
        assert response.status_code == 200
        assert response.json()["data"]["max_connections"] == 5

    def test_limits_validation_is_400_with_fields(self, client, make_license):
        make_license("p-1")
        response = client.put("/settings/limits", headers=_as("p-1"), json={"max_profile_views": 2})
        assert response.status_code == 400
        errors = response.json()["error"]["details"]["errors"]
        assert errors[0]["field"] == "max_profile_views"

    def test_warmup_reports_current_phase(self, client, make_license, clock):
        make_license("p-1")
        clock.advance(days=10)
        data = client.get("/settings/warmup", headers=_as("p-1")).json()["data"]
        assert data["current_phase"] == "week2"
        assert data["override_warmup"] is False
        assert data["days_until_next_phase"] == 5
        assert data["next_phase_starts_at"] == (clock.now + timedelta(days=5)).isoformat()

    def test_warmup_update(self, client, make_license):
        make_license("p-1")
        response = client.put("/settings/warmup", headers=_as("p-1"), json={"phase": "week4plus"})
        assert response.status_code == 200
        assert response.json()["data"]["current_phase"] == "week4plus"
        assert response.json()["data"]["next_phase_starts_at"] is None

    @pytest.mark.parametrize(
        "path, body",
        [("/settings/limits", {"max_connections": 3}), ("/settings/warmup", {"override_warmup": True})],
    )
    def test_updates_need_a_valid_license(self, client, make_license, licenses, clock, path, body):
        make_license("p-expired", expires_at=clock.now - timedelta(seconds=1))
        make_license("p-inactive")
        licenses.deactivate_license("p-inactive")

        expired = client.put(path, headers=_as("p-expired"), json=body)
        inactive = client.put(path, headers=_as("p-inactive"), json=body)
        unknown = client.put(path, headers=_as("ghost"), json=body)

        assert expired.status_code == 403
        assert expired.json()["error"]["code"] == "LICENSE_EXPIRED"
        assert inactive.json()["error"]["code"] == "LICENSE_INACTIVE"
        assert unknown.status_code == 403


class TestRequireAction:
    @pytest.fixture
    def gated_client(self, client):
        @client.app.get("/exports/activity")
        def export_activity(principal_id: str = Depends(require_action(ActionKind.EXPORT_DATA))):
            return {"success": True, "data": {"principal_id": principal_id}}

        return client

    def test_trial_is_denied_export(self, gated_client, make_license):
        make_license("p-1", tier="trial")
        response = gated_client.get("/exports/activity", headers=_as("p-1"))
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "PERMISSION_DENIED"
        assert error["details"] == {"reason": "PERMISSION_DENIED", "action": "export_data"}

    def test_basic_may_export(self, gated_client, make_license):
        make_license("p-1", tier="basic")
        response = gated_client.get("/exports/activity", headers=_as("p-1"))
        assert response.status_code == 200
        assert response.json()["data"]["principal_id"] == "p-1"

    def test_record_flag_is_also_required(self, gated_client, make_license):
        make_license("p-1", tier="premium", can_export_data=False)
        response = gated_client.get("/exports/activity", headers=_as("p-1"))
        assert response.status_code == 403

    def test_rejects_unknown_action_at_definition(self):
        with pytest.raises(ValueError):
            require_action("teleport")


class TestLicenseRoutes:
    def test_info(self, client, make_license):
        make_license("p-1", tier="premium")
        data = client.get("/license/info", headers=_as("p-1")).json()["data"]
        assert data["tier"] == "premium"
        assert data["is_valid"] is True
        assert data["days_remaining"] == 365

    def test_info_unknown_principal_is_404(self, client):
        response = client.get("/license/info", headers=_as("ghost"))
        assert response.status_code == 404

    def test_check_permission(self, client, make_license):
        make_license("p-1", tier="trial")
        allowed = client.post("/license/check-permission", headers=_as("p-1"), json={"action": "message"})
        denied = client.post("/license/check-permission", headers=_as("p-1"), json={"action": "export_data"})
        assert allowed.json()["data"] == {"allowed": True}
        assert denied.json()["data"] == {"allowed": False, "reason": "PERMISSION_DENIED"}

    def test_check_permission_rejects_unknown_action(self, client, make_license):
        make_license("p-1")
        response = client.post("/license/check-permission", headers=_as("p-1"), json={"action": "teleport"})
        assert response.status_code == 422

    def test_effective_limits_include_warmup(self, client, make_license):
        make_license("p-1", tier="enterprise")
        data = client.get("/license/limits", headers=_as("p-1")).json()["data"]
        assert data["max_daily_connections"] == 100
        assert data["warmup_phase"] == "week1"
        assert data["warmup_cap"] == 2

    def test_usage_reports_remaining_under_enforced_caps(self, client, make_license):
        make_license("p-1", connections_used=3, messages_used=1)
        usage = client.get("/license/usage", headers=_as("p-1")).json()["data"]
        assert usage["usage"]["connections_used"] == 3
        # week-one warm-up allows 2 connections a day, below the trial tier's 5
        assert usage["remaining"]["connections"] == 0
        assert usage["remaining"]["messages"] == 2
        assert usage["today_activity"]["connections"] == 0

    def test_usage_unknown_principal_is_404(self, client):
        assert client.get("/license/usage", headers=_as("ghost")).status_code == 404

    @pytest.mark.parametrize("tier", ["premium", "enterprise"])
    def test_reset_usage_for_paid_tiers(self, client, make_license, tier):
        make_license("p-1", tier=tier, connections_used=2, total_sessions=4)
        response = client.post("/license/reset-usage", headers=_as("p-1"))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["connections_used"] == 0
        assert data["total_sessions"] == 4

    @pytest.mark.parametrize("tier", ["trial", "basic"])
    def test_reset_usage_denied_below_premium(self, client, make_license, tier):
        make_license("p-1", tier=tier, connections_used=5)
        before = client.post("/license/check-permission", headers=_as("p-1"), json={"action": "connection"})
        assert before.json()["data"]["allowed"] is False

        response = client.post("/license/reset-usage", headers=_as("p-1"))

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "PERMISSION_DENIED"
        assert error["details"]["action"] == "reset_usage"
        after = client.post("/license/check-permission", headers=_as("p-1"), json={"action": "connection"})
        assert after.json()["data"]["allowed"] is False
        assert client.get("/license/usage", headers=_as("p-1")).json()["data"]["usage"]["connections_used"] == 5

    def test_reset_usage_unknown_principal_is_404(self, client):
        response = client.post("/license/reset-usage", headers=_as("ghost"))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_reset_usage_needs_a_valid_license(self, client, make_license, clock):
        make_license("p-1", tier="enterprise", expires_at=clock.now - timedelta(days=1))
        response = client.post("/license/reset-usage", headers=_as("p-1"))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "LICENSE_EXPIRED"

    def test_upgrade_rejects_unknown_tier(self, client, make_license):
        make_license("p-1", tier="basic")
        response = client.post("/license/upgrade", headers=_as("p-1"), json={"tier": "platinum"})
        assert response.status_code == 422
        assert client.get("/license/info", headers=_as("p-1")).json()["data"]["tier"] == "basic"

    def test_upgrade_and_extend(self, client, make_license, clock):
        make_license("p-1")
        upgraded = client.post("/license/upgrade", headers=_as("p-1"), json={"tier": "basic", "duration_days": 30})
        assert upgraded.json()["data"]["tier"] == "basic"
        assert upgraded.json()["data"]["days_remaining"] == 30

        extended = client.post("/license/extend", headers=_as("p-1"), json={"days": 5})
        assert extended.json()["data"]["days_remaining"] == 35

    def test_storage_outage_fails_closed_with_503(self, client, make_license, monkeypatch):
        make_license("p-1")

        def broken(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(Session, "get", broken)

        response = client.post("/license/check-permission", headers=_as("p-1"), json={"action": "message"})

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "LICENSING_UNAVAILABLE"
        assert "connection refused" not in response.text
