"""
License, quota and bot-control engine.

This package provides:
- catalog: fixed tier -> entitlement table (unknown tiers resolve to trial)
- ledger.UsageLedger: atomic daily counters and the nightly reset
- warmup: pure warm-up phase computation for new accounts
- engine.decide: pure authorization decision, first failure wins
- service.AuthorizationService: facade loading records and recording usage
- bot_control.BotControl: start / stop / pause / resume / emergency stop
- license_service.LicenseService: license lifecycle and statistics
- settings.SettingsService: lazily created Daily Limits and Warm-up settings
- activity.ActivityLog: append-only automation event log
"""

from licensing.errors import (
    AuthorizationDeniedError,
    BotStateConflictError,
    LicenseAlreadyExistsError,
    LicenseNotFoundError,
    LicensingError,
    LicensingUnavailableError,
    SettingsValidationError,
)
from licensing.models import (
    ActionKind,
    ActivityType,
    BotState,
    DailyLimits,
    Decision,
    DenyReason,
    EffectiveLimits,
    LicenseRecord,
    Materialized,
    StatusSnapshot,
    WarmupState,
)

__all__ = [
    "ActionKind",
    "ActivityType",
    "AuthorizationDeniedError",
    "BotState",
    "BotStateConflictError",
    "DailyLimits",
    "Decision",
    "DenyReason",
    "EffectiveLimits",
    "LicenseAlreadyExistsError",
    "LicenseNotFoundError",
    "LicenseRecord",
    "LicensingError",
    "LicensingUnavailableError",
    "Materialized",
    "SettingsValidationError",
    "StatusSnapshot",
    "WarmupState",
]
