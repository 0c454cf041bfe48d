"""
Warm-up pacing for new accounts.

All functions are pure. The phase is always recomputed from the account start
date and the caller's clock; it is never cached.

    days  = ceil(|now - start| / 1 day)
    week  = ceil(days / 7)
    phase = week1 (<=1) | week2 (<=2) | week3 (<=3) | week4plus
"""

import math
from datetime import datetime, timedelta
from typing import Mapping, Optional

from licensing.models import DEFAULT_PHASE_LIMITS, PhaseCaps, WarmupState

SECONDS_PER_DAY = 24 * 60 * 60


def elapsed_days(account_start_date: datetime, now: datetime) -> int:
    seconds = abs((now - account_start_date).total_seconds())
    return math.ceil(seconds / SECONDS_PER_DAY)


def current_phase(account_start_date: datetime, now: datetime) -> str:
    """Phase name for an account started at account_start_date."""
    week = math.ceil(elapsed_days(account_start_date, now) / 7)
    if week <= 1:
        return "week1"
    if week <= 2:
        return "week2"
    if week <= 3:
        return "week3"
    return "week4plus"


def current_limits(phase: str, table: Optional[Mapping[str, PhaseCaps]] = None) -> PhaseCaps:
    limits = table if table is not None else DEFAULT_PHASE_LIMITS
    caps = limits.get(phase)
    if caps is None:
        caps = DEFAULT_PHASE_LIMITS[phase]
    return caps


def should_respect_warmup(state: WarmupState) -> bool:
    return state.enabled and not state.override_warmup


def effective_phase(state: WarmupState, now: datetime) -> str:
    """Manual phase when one is pinned, otherwise the computed phase."""
    if state.phase != "auto":
        return state.phase
    return current_phase(state.account_start_date, now)


def days_until_next_phase(state: WarmupState, now: datetime) -> Optional[int]:
    """Days left in the current auto phase; None once week4plus or when pinned."""
    if state.phase != "auto":
        return None
    days = elapsed_days(state.account_start_date, now)
    if days > 21:
        return None
    week = max(1, math.ceil(days / 7))
    return week * 7 + 1 - days


def next_phase_starts_at(state: WarmupState, now: datetime) -> Optional[datetime]:
    remaining = days_until_next_phase(state, now)
    if remaining is None:
        return None
    return now + timedelta(days=remaining)
