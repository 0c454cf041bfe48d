"""
Pure authorization decision.

decide() looks only at the records it is handed and the supplied clock
value; it never reads storage and never mutates anything. Checks run in a
fixed order and the first failure wins:

1. license missing / inactive -> LICENSE_INACTIVE, expired -> LICENSE_EXPIRED
2. feature actions need the tier flag AND the record flag -> PERMISSION_DENIED
3. quota actions: used >= min(settings cap, tier ceiling) -> DAILY_LIMIT_EXCEEDED
4. connections under active warm-up: used >= phase daily cap -> WARMUP_LIMIT_EXCEEDED

bot_control and session stop after step 1.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from licensing import catalog, warmup
from licensing.models import (
    FEATURE_ACTIONS,
    QUOTA_ACTIONS,
    ActionKind,
    DailyLimits,
    Decision,
    DenyReason,
    EffectiveLimits,
    LicenseRecord,
    WarmupState,
)


def tier_ceiling(license: LicenseRecord, action: ActionKind) -> int:
    """
    Hard per-day maximum for a quota action.

    The stored permission can drift from the catalog after manual edits; the
    lower of the two wins.
    """
    entitlement = catalog.limits_for(license.tier)
    if action == ActionKind.CONNECTION:
        return min(entitlement.max_daily_connections, license.permissions.max_daily_connections)
    if action == ActionKind.MESSAGE:
        return min(entitlement.max_daily_messages, license.permissions.max_daily_messages)
    if action == ActionKind.SEARCH:
        return entitlement.max_daily_searches
    if action == ActionKind.PROFILE_VIEW:
        return entitlement.max_daily_profile_views
    raise ValueError(f"{action.value} has no tier ceiling")


def effective_cap(license: LicenseRecord, limits: Optional[DailyLimits], action: ActionKind) -> int:
    ceiling = tier_ceiling(license, action)
    if limits is None:
        return ceiling
    return min(limits.cap_for(action), ceiling)


def feature_granted(license: LicenseRecord, action: ActionKind) -> bool:
    entitlement = catalog.limits_for(license.tier)
    if action == ActionKind.EXPORT_DATA:
        return entitlement.can_export_data and license.permissions.can_export_data
    if action == ActionKind.API_ACCESS:
        return entitlement.can_use_api and license.permissions.can_use_api
    if action == ActionKind.ADVANCED_FEATURES:
        return entitlement.can_use_advanced_features and license.permissions.can_use_advanced_features
    raise ValueError(f"{action.value} is not a feature action")


def warmup_applies(limits: Optional[DailyLimits], state: Optional[WarmupState]) -> bool:
    if state is None:
        return False
    respect = limits.respect_warmup if limits is not None else True
    return respect and warmup.should_respect_warmup(state)


def warmup_daily_cap(
    limits: Optional[DailyLimits],
    state: Optional[WarmupState],
    now: datetime,
) -> Optional[int]:
    """Phase daily cap for connections, or None when warm-up is not enforced."""
    if not warmup_applies(limits, state):
        return None
    phase = warmup.effective_phase(state, now)
    return warmup.current_limits(phase, state.phase_limits).daily


def decide(
    *,
    license: Optional[LicenseRecord],
    action: ActionKind,
    now: datetime,
    limits: Optional[DailyLimits] = None,
    warmup_state: Optional[WarmupState] = None,
) -> Decision:
    action = ActionKind(action)

    if license is None or not license.is_active:
        return Decision.deny(action, DenyReason.LICENSE_INACTIVE)
    if license.is_expired(now):
        return Decision.deny(action, DenyReason.LICENSE_EXPIRED)

    if action in FEATURE_ACTIONS:
        if not feature_granted(license, action):
            return Decision.deny(action, DenyReason.PERMISSION_DENIED)
        return Decision.allow(action)

    if action not in QUOTA_ACTIONS:
        return Decision.allow(action)

    used = license.usage.used_for(action)
    if used >= effective_cap(license, limits, action):
        return Decision.deny(action, DenyReason.DAILY_LIMIT_EXCEEDED)

    if action == ActionKind.CONNECTION:
        cap = warmup_daily_cap(limits, warmup_state, now)
        if cap is not None and used >= cap:
            return Decision.deny(action, DenyReason.WARMUP_LIMIT_EXCEEDED)

    return Decision.allow(action)


def remaining_quota(
    *,
    license: Optional[LicenseRecord],
    action: ActionKind,
    now: datetime,
    limits: Optional[DailyLimits] = None,
    warmup_state: Optional[WarmupState] = None,
) -> int:
    """
    Occurrences of a quota action left today under the caps decide() enforces.

    Zero whenever the license gate would deny, so remaining == 0 exactly when
    decide() denies the action.
    """
    action = ActionKind(action)
    if action not in QUOTA_ACTIONS:
        raise ValueError(f"{action.value} is not a quota action")
    if license is None or not license.is_active or license.is_expired(now):
        return 0

    cap = effective_cap(license, limits, action)
    if action == ActionKind.CONNECTION:
        phase_cap = warmup_daily_cap(limits, warmup_state, now)
        if phase_cap is not None:
            cap = min(cap, phase_cap)
    return max(0, cap - license.usage.used_for(action))


def effective_limits(
    *,
    license: LicenseRecord,
    now: datetime,
    limits: Optional[DailyLimits] = None,
    warmup_state: Optional[WarmupState] = None,
) -> EffectiveLimits:
    """Caps the next decision will enforce, for display."""
    if warmup_state is not None:
        phase = warmup.effective_phase(warmup_state, now)
    else:
        phase = "week4plus"
    return EffectiveLimits(
        max_daily_connections=effective_cap(license, limits, ActionKind.CONNECTION),
        max_daily_messages=effective_cap(license, limits, ActionKind.MESSAGE),
        max_profile_views=effective_cap(license, limits, ActionKind.PROFILE_VIEW),
        max_searches=effective_cap(license, limits, ActionKind.SEARCH),
        warmup_phase=phase,
        warmup_cap=warmup_daily_cap(limits, warmup_state, now),
    )
