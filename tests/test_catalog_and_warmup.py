from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from licensing import catalog, warmup
from licensing.models import DEFAULT_PHASE_LIMITS, PhaseCaps, WarmupState

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "tier, connections, messages, keywords, advanced, export, api",
    [
        ("trial", 5, 3, 3, False, False, False),
        ("basic", 15, 10, 10, True, True, False),
        ("premium", 50, 25, 25, True, True, True),
        ("enterprise", 100, 50, 50, True, True, True),
    ],
)
def test_catalog_table(tier, connections, messages, keywords, advanced, export, api):
    entitlement = catalog.limits_for(tier)
    assert entitlement.max_daily_connections == connections
    assert entitlement.max_daily_messages == messages
    assert entitlement.max_search_keywords == keywords
    assert entitlement.can_use_advanced_features is advanced
    assert entitlement.can_export_data is export
    assert entitlement.can_use_api is api


@pytest.mark.parametrize("tier", ["gold", "", None, "PREMIUM-PLUS"])
def test_unknown_tier_falls_back_to_trial(tier):
    assert catalog.limits_for(tier) == catalog.limits_for("trial")
    assert catalog.normalize_tier(tier) == "trial"


def test_tier_lookup_is_case_insensitive():
    assert catalog.limits_for(" Premium ").tier == "premium"


def test_known_tiers():
    assert catalog.is_known_tier(" Enterprise ") is True
    assert catalog.is_known_tier("gold") is False
    assert catalog.is_known_tier(None) is False


def test_only_premium_and_enterprise_reset_usage():
    assert [tier for tier, entry in catalog.TIER_ENTITLEMENTS.items() if entry.can_reset_usage] == [
        "premium",
        "enterprise",
    ]


def test_durations():
    assert catalog.license_duration_days("trial") == 30
    assert catalog.license_duration_days("basic") == 365
    assert catalog.license_duration_days("enterprise") == 365


def test_permission_set_mirrors_catalog():
    permissions = catalog.limits_for("basic").permission_set()
    assert permissions.max_daily_connections == 15
    assert permissions.can_export_data is True
    assert permissions.can_use_api is False


@pytest.mark.parametrize(
    "elapsed, phase",
    [
        (timedelta(0), "week1"),
        (timedelta(days=1), "week1"),
        (timedelta(days=7), "week1"),
        (timedelta(days=7, hours=1), "week2"),
        (timedelta(days=10), "week2"),
        (timedelta(days=14), "week2"),
        (timedelta(days=20), "week3"),
        (timedelta(days=21), "week3"),
        (timedelta(days=22), "week4plus"),
        (timedelta(days=400), "week4plus"),
    ],
)
def test_current_phase(elapsed, phase):
    assert warmup.current_phase(START, START + elapsed) == phase


def test_current_phase_uses_absolute_distance():
    # a start date in the future (clock skew) is measured the same way
    assert warmup.current_phase(START + timedelta(days=10), START) == "week2"


def test_current_limits_defaults():
    assert warmup.current_limits("week1") == PhaseCaps(daily=2, weekly=10)
    assert warmup.current_limits("week4plus") == PhaseCaps(daily=5, weekly=25)


def test_current_limits_custom_table_falls_back_per_phase():
    table = {"week1": PhaseCaps(daily=1, weekly=3)}
    assert warmup.current_limits("week1", table).daily == 1
    assert warmup.current_limits("week2", table) == DEFAULT_PHASE_LIMITS["week2"]


@pytest.mark.parametrize(
    "enabled, override, expected",
    [(True, False, True), (True, True, False), (False, False, False), (False, True, False)],
)
def test_should_respect_warmup(enabled, override, expected):
    state = WarmupState(principal_id="p", account_start_date=START, enabled=enabled, override_warmup=override)
    assert warmup.should_respect_warmup(state) is expected


def test_override_defaults_to_false():
    state = WarmupState(principal_id="p", account_start_date=START)
    assert state.override_warmup is False
    assert warmup.should_respect_warmup(state) is True


def test_manual_phase_wins_over_computed():
    state = WarmupState(principal_id="p", account_start_date=START, phase="week3")
    assert warmup.effective_phase(state, START + timedelta(days=1)) == "week3"
    assert warmup.days_until_next_phase(state, START + timedelta(days=1)) is None


def test_invalid_phase_rejected():
    with pytest.raises(ValueError):
        WarmupState(principal_id="p", account_start_date=START, phase="week9")


@pytest.mark.parametrize(
    "elapsed_days, remaining",
    [(1, 7), (7, 1), (8, 7), (21, 1), (22, None)],
)
def test_days_until_next_phase(elapsed_days, remaining):
    state = WarmupState(principal_id="p", account_start_date=START)
    assert warmup.days_until_next_phase(state, START + timedelta(days=elapsed_days)) == remaining


def test_phase_is_recomputed_not_cached():
    state = WarmupState(principal_id="p", account_start_date=START)
    assert warmup.effective_phase(state, START + timedelta(days=3)) == "week1"
    assert warmup.effective_phase(state, START + timedelta(days=30)) == "week4plus"


def test_next_phase_starts_at():
    state = WarmupState(principal_id="p", account_start_date=START)
    now = START + timedelta(days=10)
    assert warmup.next_phase_starts_at(state, now) == now + timedelta(days=5)
    assert warmup.next_phase_starts_at(state, START + timedelta(days=30)) is None
    pinned = WarmupState(principal_id="p", account_start_date=START, phase="week2")
    assert warmup.next_phase_starts_at(pinned, now) is None
