from __future__ import annotations

import re
from datetime import timedelta

import pytest

from licensing.errors import AuthorizationDeniedError, LicenseAlreadyExistsError, LicenseNotFoundError
from licensing.ledger import UsageLedger
from licensing.models import ActionKind


class TestCreate:
    def test_trial_defaults(self, licenses, clock):
        license = licenses.create_license("p-1", "alice", "alice@example.com")

        assert license.tier == "trial"
        assert license.is_active is True
        assert license.activated_at == clock.now
        assert license.expires_at == clock.now + timedelta(days=30)
        assert license.permissions.max_daily_connections == 5
        assert license.permissions.can_use_api is False
        assert re.fullmatch(r"LIC-[0-9A-F]{32}", license.license_key)

    def test_trial_duration_is_configurable(self, licenses, clock, monkeypatch):
        monkeypatch.setenv("TRIAL_DURATION_DAYS", "14")
        license = licenses.create_license("p-1", "alice", "alice@example.com")
        assert license.expires_at == clock.now + timedelta(days=14)

    def test_paid_tier_runs_a_year(self, licenses, clock):
        license = licenses.create_license("p-1", "alice", "alice@example.com", tier="premium")
        assert license.expires_at == clock.now + timedelta(days=365)
        assert license.permissions.can_use_api is True

    def test_unknown_tier_becomes_trial(self, licenses):
        assert licenses.create_license("p-1", "alice", "alice@example.com", tier="platinum").tier == "trial"

    def test_duplicate_principal_rejected(self, licenses):
        licenses.create_license("p-1", "alice", "alice@example.com")
        with pytest.raises(LicenseAlreadyExistsError):
            licenses.create_license("p-1", "alice2", "alice2@example.com")

    def test_duplicate_email_rejected(self, licenses):
        licenses.create_license("p-1", "alice", "alice@example.com")
        with pytest.raises(LicenseAlreadyExistsError):
            licenses.create_license("p-2", "bob", "alice@example.com")


class TestLifecycle:
    def test_upgrade_rederives_permissions_and_reactivates(self, licenses, make_license, clock):
        make_license("p-1", is_active=False)

        upgraded = licenses.upgrade_license("p-1", "premium", duration_days=90)

        assert upgraded.tier == "premium"
        assert upgraded.is_active is True
        assert upgraded.expires_at == clock.now + timedelta(days=90)
        assert upgraded.permissions.max_daily_connections == 50
        assert upgraded.permissions.can_use_api is True

    def test_upgrade_unknown_principal(self, licenses):
        with pytest.raises(LicenseNotFoundError):
            licenses.upgrade_license("ghost", "basic")

    def test_extend_adds_to_current_expiry(self, licenses, make_license):
        license = make_license("p-1")
        extended = licenses.extend_license("p-1", 10)
        assert extended.expires_at == license.expires_at + timedelta(days=10)

    def test_extend_requires_positive_days(self, licenses, make_license):
        make_license("p-1")
        with pytest.raises(ValueError):
            licenses.extend_license("p-1", 0)

    def test_deactivate_keeps_the_record(self, licenses, make_license):
        make_license("p-1")
        licenses.deactivate_license("p-1")
        info = licenses.get_license_info("p-1")
        assert info["is_active"] is False
        assert info["is_valid"] is False

    def test_record_login_updates_metadata(self, licenses, make_license, clock):
        make_license("p-1")
        clock.advance(hours=2)
        license = licenses.record_login("p-1", device_id="dev-1", ip="10.0.0.1", user_agent="pytest")
        assert license.last_login_at == clock.now
        assert license.last_device_id == "dev-1"
        assert license.last_ip == "10.0.0.1"

    def test_license_info_fields(self, licenses, make_license, clock):
        make_license("p-1")
        clock.advance(days=20, hours=1)
        info = licenses.get_license_info("p-1")
        assert info["is_valid"] is True
        assert info["is_expired"] is False
        assert info["days_remaining"] == 10

    def test_find_by_license_key_only_returns_active(self, licenses, make_license):
        license = make_license("p-1")
        assert licenses.find_by_license_key(license.license_key).principal_id == "p-1"
        licenses.deactivate_license("p-1")
        assert licenses.find_by_license_key(license.license_key) is None
        assert licenses.find_by_license_key("LIC-NOPE") is None


class TestExpiryAndStatistics:
    def test_deactivate_expired(self, licenses, make_license, clock):
        make_license("old", expires_at=clock.now - timedelta(seconds=1))
        make_license("fresh")

        assert licenses.deactivate_expired() == ["old"]
        assert licenses.get_license_info("old")["is_active"] is False
        assert licenses.get_license_info("fresh")["is_active"] is True
        assert licenses.deactivate_expired() == []

    def test_statistics(self, licenses, make_license, clock):
        make_license("t-1")
        make_license("t-2", expires_at=clock.now - timedelta(days=1))
        make_license("b-1", tier="basic", is_active=False)

        stats = licenses.get_statistics()

        assert stats["total"] == 3
        assert stats["active"] == 2
        assert stats["expired"] == 1
        assert stats["by_tier"]["trial"] == {"count": 2, "active": 2, "expired": 1}
        assert stats["by_tier"]["basic"] == {"count": 1, "active": 0, "expired": 0}

    def test_lifetime_counters_survive_upgrade(self, licenses, make_license, store):
        make_license("p-1")
        UsageLedger(store).record_usage("p-1", ActionKind.SESSION)
        upgraded = licenses.upgrade_license("p-1", "basic")
        assert upgraded.usage.total_sessions == 1


class TestResetUsage:
    def test_premium_reset_keeps_lifetime_counters(self, licenses, make_license):
        make_license("p-1", tier="premium", connections_used=7, searches_used=2, total_connections=40)

        usage = licenses.reset_usage("p-1")

        assert usage.connections_used == 0
        assert usage.searches_used == 0
        assert usage.total_connections == 40

    @pytest.mark.parametrize("tier", ["trial", "basic"])
    def test_lower_tiers_are_denied(self, licenses, make_license, tier):
        make_license("p-1", tier=tier, messages_used=3)

        with pytest.raises(AuthorizationDeniedError) as exc_info:
            licenses.reset_usage("p-1")

        assert exc_info.value.error_code == "PERMISSION_DENIED"
        assert licenses.store.get_license("p-1").usage.messages_used == 3

    def test_inactive_license_is_denied(self, licenses, make_license):
        make_license("p-1", tier="enterprise")
        licenses.deactivate_license("p-1")
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            licenses.reset_usage("p-1")
        assert exc_info.value.error_code == "LICENSE_INACTIVE"

    def test_unknown_principal(self, licenses):
        with pytest.raises(LicenseNotFoundError):
            licenses.reset_usage("ghost")
